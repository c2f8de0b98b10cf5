"""Document-understanding client and extraction prompts."""

from .client import ExtractionClient, parse_json_object, strip_code_fences
from .prompts import STRICT_JSON_SUFFIX, build_prompt, generic_extraction_prompt

__all__ = [
    "ExtractionClient",
    "parse_json_object",
    "strip_code_fences",
    "STRICT_JSON_SUFFIX",
    "build_prompt",
    "generic_extraction_prompt",
]
