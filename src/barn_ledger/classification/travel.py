"""
Travel rules: rental-car agreement enrichment.

Rental agreements name the driver rather than a line-item person and are
always settled in USD on the business card, whatever currency the document
prints. When a rental vendor is recognized:

- the driver becomes the invoice-level suggested person and fills every
  line item's person name that the extraction left empty
- the currency is forced to USD and the invoice re-normalized from the
  document's own amounts
- the subcategory defaults to rental-car
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..normalization.currency import BASE_CURRENCY, convert_to_usd
from ..schemas.amounts import non_negative_usd, round2
from ..schemas.invoice import NormalizedInvoice
from .base import CategoryRules, RuleContext

logger = logging.getLogger(__name__)

RENTAL_FIELD_SIGNATURES: tuple[str, ...] = ("rental_agreement_number", "rental_agreement", "driver_name")
DRIVER_NAME_KEYS: tuple[str, ...] = ("driver_name", "driver", "renter_name", "renter")
RENTAL_SUBCATEGORY = "rental-car"


def is_rental_agreement(invoice: NormalizedInvoice, context: RuleContext) -> bool:
    """Provider matches a rental vendor, or the payload has rental-only fields."""
    provider_text = context.provider_text()
    if invoice.provider_name:
        provider_text = f"{provider_text} {invoice.provider_name.lower()}"
    if any(signature in provider_text for signature in context.rental_signatures):
        return True
    return any(invoice.extras.get(key) for key in RENTAL_FIELD_SIGNATURES)


def driver_name(extras: dict[str, Any]) -> Optional[str]:
    for key in DRIVER_NAME_KEYS:
        value = extras.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def force_usd(invoice: NormalizedInvoice) -> NormalizedInvoice:
    """Treat the document's own amounts as USD and re-run conversion."""
    result = invoice.copy()
    if result.original_currency not in (None, BASE_CURRENCY):
        logger.info(
            "Rental agreement billed in %s, treating amounts as USD",
            result.original_currency,
        )
    for item in result.line_items:
        if item.amount_original is not None:
            item.amount_usd = non_negative_usd(item.amount_original)
    if result.original_total is not None:
        result.invoice_total_usd = round2(result.original_total)
    result.original_currency = BASE_CURRENCY
    result.exchange_rate = None
    return convert_to_usd(result)


class TravelRules(CategoryRules):
    """Rules for the travel category."""

    slug = "travel"

    def normalize(self, invoice: NormalizedInvoice, context: RuleContext) -> NormalizedInvoice:
        if not is_rental_agreement(invoice, context):
            return invoice.copy()

        result = force_usd(invoice)
        driver = driver_name(result.extras)
        if driver:
            result.suggested_person_name = driver
            for item in result.line_items:
                if not item.person_name_raw:
                    item.person_name_raw = driver
        if not result.subcategory:
            result.subcategory = RENTAL_SUBCATEGORY
        logger.debug("Rental agreement enrichment applied (driver=%s)", driver)
        return result
