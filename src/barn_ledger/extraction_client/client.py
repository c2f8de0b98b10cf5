"""Document-understanding client (Anthropic Messages API over httpx).

One call per parse attempt: the PDF goes up as a base64 document block with
the extraction prompt beside it, and the first text block of the reply must
hold a single JSON object. There are no retries inside a call; a failed
call fails the parse.

Privacy Constraints:
- Never log prompts or document content at INFO level
"""

from __future__ import annotations

import base64
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from ..errors import ExtractionServiceError, MissingApiCredential, ModelResponseMalformed

if TYPE_CHECKING:
    from ..config import ExtractionConfig

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (``` or ```json)."""
    trimmed = text.strip()
    if trimmed.startswith("```") and trimmed.endswith("```") and len(trimmed) >= 6:
        body = trimmed[3:-3]
        first_newline = body.find("\n")
        # Drop the language tag on the opening fence line
        if first_newline != -1 and body[:first_newline].strip().isalpha():
            body = body[first_newline + 1 :]
        elif body[:4].lower() == "json":
            body = body[4:]
        return body.strip()
    return trimmed


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse model text into a JSON object.

    Raises:
        ModelResponseMalformed: Not JSON, or JSON that is not an object
    """
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ModelResponseMalformed(f"Extraction response is not valid JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ModelResponseMalformed(
            f"Extraction response must be a JSON object, got {type(parsed).__name__}"
        )
    return parsed


class ExtractionClient:
    """Client for the document-understanding service.

    Usage:
        with ExtractionClient(config.extraction) as client:
            payload = client.extract(pdf_bytes, prompt)
    """

    def __init__(self, config: ExtractionConfig) -> None:
        """Initialize the client.

        Args:
            config: Extraction settings (endpoint, key, model, limits).
        """
        self.config = config
        self._client = httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
        )

    def _headers(self) -> dict[str, str]:
        if not self.config.api_key:
            raise MissingApiCredential("ANTHROPIC_API_KEY is not configured")
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.config.anthropic_version,
            "content-type": "application/json",
        }

    def build_request(self, document_bytes: bytes, prompt: str) -> dict[str, Any]:
        """Messages API request body for one PDF and prompt."""
        return {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": 0,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "document",
                            "source": {
                                "type": "base64",
                                "media_type": "application/pdf",
                                "data": base64.b64encode(document_bytes).decode("ascii"),
                            },
                        },
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        }

    def extract(self, document_bytes: bytes, prompt: str) -> dict[str, Any]:
        """Run one extraction call.

        Args:
            document_bytes: PDF content.
            prompt: Extraction prompt (already carrying the strict-JSON suffix).

        Returns:
            The raw extraction payload (a JSON object).

        Raises:
            MissingApiCredential: No API key configured.
            ExtractionServiceError: Timeout, HTTP error status or transport failure.
            ModelResponseMalformed: No text block, or the text is not a JSON object.
        """
        headers = self._headers()
        body = self.build_request(document_bytes, prompt)
        logger.debug(
            "Calling extraction model %s (%d document bytes)", self.config.model, len(document_bytes)
        )

        try:
            response = self._client.post(self.config.api_url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise ExtractionServiceError(
                f"Extraction request timed out after {self.config.timeout_seconds}s"
            ) from e
        except httpx.HTTPStatusError as e:
            logger.error("Extraction API error %s", e.response.status_code)
            raise ExtractionServiceError(
                f"Extraction API returned HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise ExtractionServiceError(f"Extraction request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise ModelResponseMalformed("Extraction API returned a non-JSON body") from e

        text = self._first_text_block(data)
        if text is None:
            raise ModelResponseMalformed("Extraction response had no text payload")
        logger.debug("Extraction model returned %d chars", len(text))
        return parse_json_object(text)

    @staticmethod
    def _first_text_block(data: Any) -> str | None:
        if not isinstance(data, dict):
            return None
        for block in data.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str):
                    return text
        return None

    def close(self) -> None:
        """Close HTTP client."""
        self._client.close()

    def __enter__(self) -> ExtractionClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()
