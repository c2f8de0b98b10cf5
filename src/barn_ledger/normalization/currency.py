"""
Currency conversion to USD (SSOT for exchange rates).

Core Invariants:
- USD (or missing currency): exchange_rate == 1 and every item's
  amount_original == amount_usd. Idempotent.
- Non-USD: one rate for the whole invoice. invoice_total_usd and every
  item's amount_usd are round2(original * rate); originals are retained.
- Conversion always starts from the original amounts, so running it twice
  yields the same result.
- An unknown currency is never converted at a rate of 1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

from ..errors import MissingExchangeRate, MissingOriginalTotal
from ..schemas.amounts import non_negative_usd, round2, to_decimal
from ..schemas.invoice import NormalizedInvoice

logger = logging.getLogger(__name__)

BASE_CURRENCY = "USD"

# Fallback currency -> USD rates, used only when the document declares none
DEFAULT_RATES: dict[str, Decimal] = {
    "CAD": Decimal("0.72"),
    "EUR": Decimal("1.08"),
    "GBP": Decimal("1.26"),
}


@dataclass(frozen=True)
class RateTable:
    """Fixed currency -> USD rate table (injected configuration)."""

    rates: Mapping[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_RATES))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> "RateTable":
        """Build from config values (floats or strings); invalid entries are dropped."""
        rates: dict[str, Decimal] = {}
        for code, value in mapping.items():
            rate = to_decimal(value)
            if rate is None or rate <= 0:
                logger.warning("Ignoring invalid exchange rate for %s: %r", code, value)
                continue
            rates[str(code).strip().upper()] = rate
        return cls(rates=rates)

    def lookup(self, currency: str) -> Decimal | None:
        """Rate for a currency code, or None if not in the table."""
        return self.rates.get(currency.strip().upper())


def convert_to_usd(invoice: NormalizedInvoice, rates: RateTable | None = None) -> NormalizedInvoice:
    """Return a copy of the invoice with guaranteed-USD monetary fields.

    Args:
        invoice: Normalized invoice (not modified)
        rates: Fallback rate table (defaults to DEFAULT_RATES)

    Returns:
        Converted copy

    Raises:
        MissingExchangeRate: Non-USD currency with no declared or table rate
        MissingOriginalTotal: Non-USD invoice without an original total
    """
    rates = rates or RateTable()
    result = invoice.copy()
    currency = (result.original_currency or "").strip().upper()

    if not currency or currency == BASE_CURRENCY:
        result.original_currency = BASE_CURRENCY
        result.exchange_rate = Decimal("1")
        for item in result.line_items:
            item.amount_original = item.amount_usd
        if result.original_total is None:
            result.original_total = result.invoice_total_usd
        return result

    declared = result.exchange_rate
    rate = declared if declared is not None and declared > 0 else rates.lookup(currency)
    if rate is None:
        raise MissingExchangeRate(currency)

    original_total = result.original_total
    if original_total is None:
        original_total = result.stated_total
    if original_total is None:
        raise MissingOriginalTotal(currency)

    result.original_currency = currency
    result.exchange_rate = rate
    result.original_total = round2(original_total)
    result.invoice_total_usd = round2(result.original_total * rate)

    for index, item in enumerate(result.line_items):
        if item.amount_original is None:
            logger.debug("Line item %d has no original amount, keeping declared USD", index)
            continue
        item.amount_usd = non_negative_usd(item.amount_original * rate)

    logger.debug(
        "Converted %s %s at %s -> USD %s",
        result.original_total,
        currency,
        rate,
        result.invoice_total_usd,
    )
    return result
