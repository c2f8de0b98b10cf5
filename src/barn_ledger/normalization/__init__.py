"""
Extraction payload normalization.

- payload: canonical field names and shapes
- currency: USD conversion with a fixed fallback rate table
"""

from .currency import DEFAULT_RATES, RateTable, convert_to_usd
from .payload import (
    find_missing_fields,
    get_raw_line_items,
    normalize_line_item,
    normalize_payload,
    pick_number,
    pick_string,
)

__all__ = [
    "DEFAULT_RATES",
    "RateTable",
    "convert_to_usd",
    "find_missing_fields",
    "get_raw_line_items",
    "normalize_line_item",
    "normalize_payload",
    "pick_number",
    "pick_string",
]
