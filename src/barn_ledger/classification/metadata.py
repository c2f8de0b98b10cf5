"""
Category metadata stored beside a parsed bill.

- travel / housing: subcategory slug
- stabling: per-line-item horse assignment scaffolding
- provider contact patch for providers we know nothing about yet
"""

from __future__ import annotations

from typing import Any, Optional

from ..categories import (
    HOUSING_SUBCATEGORIES,
    TRAVEL_SUBCATEGORIES,
    needs_approval,
    slugify,
)
from ..schemas.bill import BillStatus
from ..schemas.invoice import NormalizedInvoice
from ..schemas.registry import Provider

SUBCATEGORY_KEYS: dict[str, tuple[str, ...]] = {
    "travel": ("travel_subcategory", "subcategory"),
    "housing": ("housing_subcategory", "subcategory"),
}
SUBCATEGORY_SETS: dict[str, frozenset[str]] = {
    "travel": TRAVEL_SUBCATEGORIES,
    "housing": HOUSING_SUBCATEGORIES,
}


def derive_subcategory(
    category_slug: str,
    invoice: NormalizedInvoice,
    provider_slug_or_name: Optional[str],
) -> str:
    """Parsed subcategory if known, else the provider slug if known, else the category."""
    allowed = SUBCATEGORY_SETS[category_slug]
    parsed: Optional[str] = invoice.subcategory
    if not parsed:
        for key in SUBCATEGORY_KEYS[category_slug]:
            value = invoice.extras.get(key)
            if isinstance(value, str) and value.strip():
                parsed = value
                break

    parsed_slug = slugify(parsed or "")
    if parsed_slug in allowed:
        return parsed_slug
    provider_slug = slugify(provider_slug_or_name or "")
    if provider_slug in allowed:
        return provider_slug
    return category_slug


def horse_assignments(invoice: NormalizedInvoice) -> list[dict[str, Any]]:
    """One open assignment slot per line item."""
    return [
        {
            "line_item_index": index,
            "horse_name": item.horse_name_raw,
            "horse_id": item.horse_id,
        }
        for index, item in enumerate(invoice.line_items)
    ]


def build_category_metadata(
    category_slug: str,
    invoice: NormalizedInvoice,
    provider_slug_or_name: Optional[str] = None,
) -> dict[str, Any]:
    """Category-specific metadata for a freshly parsed bill."""
    if category_slug in SUBCATEGORY_SETS:
        return {"subcategory": derive_subcategory(category_slug, invoice, provider_slug_or_name)}
    if category_slug == "stabling":
        return {"horse_assignments": horse_assignments(invoice), "split_line_items": []}
    return {}


def initial_status(category_slug: str) -> BillStatus:
    """Status a successfully parsed bill lands in."""
    return BillStatus.PENDING if needs_approval(category_slug) else BillStatus.DONE


def provider_contact_patch(
    provider: Optional[Provider],
    invoice: NormalizedInvoice,
) -> Optional[dict[str, str]]:
    """Contact fields to store on the provider, or None.

    Only providers without a full name are patched, and only fields they
    do not have yet are filled.
    """
    if provider is None or provider.full_name:
        return None
    patch = {}
    for key, value in invoice.contact.to_dict().items():
        if value is not None and not getattr(provider, key):
            patch[key] = value
    return patch or None
