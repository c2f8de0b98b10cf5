"""Extraction prompt templates.

A provider may carry its own extraction prompt; otherwise a generic prompt
for the bill's category is used. Every prompt ends with the strict-JSON
instruction.
"""

from __future__ import annotations

STRICT_JSON_SUFFIX = "Return strict JSON."

GENERIC_PROMPT = (
    "Extract invoice data as strict JSON with invoice_number, invoice_date, "
    "provider_name, account_number, original_currency, original_total, "
    "exchange_rate, invoice_total_usd, and line_items[]."
)

CATEGORY_PROMPT_EXTENSIONS: dict[str, str] = {
    "stabling": "For each line item also return horse_name (if present) and stabling_subcategory.",
    "travel": "For each line item return amount_original and amount_usd when available.",
    "housing": "For each line item return amount_original and amount_usd when available.",
    "feed-bedding": "For each line item return description, quantity, unit_price and amount.",
    "bodywork": (
        "For each line item return horse_name with every horse treated, and "
        "return the practitioner's name as contact_name."
    ),
    "veterinary": "For each line item also return horse_name (the patient).",
    "farrier": "For each line item also return horse_name.",
}


def generic_extraction_prompt(category_slug: str | None = None) -> str:
    """Category-aware default prompt."""
    extension = CATEGORY_PROMPT_EXTENSIONS.get(category_slug or "")
    if extension:
        return f"{GENERIC_PROMPT} {extension}"
    return GENERIC_PROMPT


def build_prompt(provider_prompt: str | None, category_slug: str | None) -> str:
    """Final prompt text sent with the document."""
    base = provider_prompt or generic_extraction_prompt(category_slug)
    return f"{base}\n\n{STRICT_JSON_SUFFIX}"
