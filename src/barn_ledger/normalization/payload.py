"""
Raw payload normalizer.

Maps an untyped extraction payload onto NormalizedInvoice. For each canonical
field an ordered list of candidate raw keys is scanned and the first
non-empty value wins. Unknown keys are kept in `extras` so category rules
can read vendor-specific fields later.

This module has no side effects and makes no external calls.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from ..schemas.amounts import non_negative_usd, round2, to_decimal
from ..schemas.invoice import LineItem, NormalizedInvoice, ProviderContact

logger = logging.getLogger(__name__)

# Canonical invoice field -> candidate raw keys, in priority order
INVOICE_STRING_FIELDS: dict[str, tuple[str, ...]] = {
    "invoice_number": (
        "invoice_number",
        "invoiceNumber",
        "invoice_no",
        "invoice_id",
        "bill_number",
        "reference_number",
        "receipt_number",
    ),
    "invoice_date": ("invoice_date", "invoiceDate", "date", "bill_date", "issue_date"),
    "due_date": ("due_date", "dueDate", "payment_due_date", "payment_due"),
    "provider_name": (
        "provider_name",
        "providerName",
        "vendor_name",
        "vendor",
        "clinic_name",
        "company_name",
        "supplier",
    ),
    "original_currency": ("original_currency", "originalCurrency", "currency", "currency_code"),
    "suggested_person_name": (
        "person_name",
        "personName",
        "rider_name",
        "traveler_name",
        "guest_name",
    ),
}

INVOICE_NUMERIC_FIELDS: dict[str, tuple[str, ...]] = {
    "original_total": (
        "original_total",
        "originalTotal",
        "invoice_total_original",
        "total_original",
    ),
    "exchange_rate": ("exchange_rate", "exchangeRate", "exchange_rate_used", "fx_rate"),
    "invoice_total_usd": ("invoice_total_usd", "invoiceTotalUsd", "total_usd", "totalUsd"),
    # Currency-neutral totals: in the document's own currency
    "stated_total": (
        "invoice_total",
        "invoiceTotal",
        "total",
        "total_amount",
        "amount_due",
        "total_due",
        "grand_total",
        "balance_due",
    ),
}

CONTACT_FIELDS: dict[str, tuple[str, ...]] = {
    "full_name": ("provider_full_name", "provider_name", "clinic_name", "client_name"),
    "primary_contact_name": ("primary_contact_name", "contact_name", "provider_contact_name"),
    "primary_contact_phone": ("primary_contact_phone", "contact_phone"),
    "address": ("provider_address", "address"),
    "phone": ("provider_phone", "phone"),
    "email": ("provider_email", "email"),
    "account_number": ("account_number", "account"),
}

LINE_ITEM_ARRAY_KEYS: tuple[str, ...] = ("line_items", "lineItems", "items", "charges", "services")

LINE_ITEM_STRING_FIELDS: dict[str, tuple[str, ...]] = {
    "description": ("description", "desc", "item", "service", "details", "memo", "name"),
    "horse_name_raw": ("horse_name", "horseName", "horse", "patient_name", "patient"),
    "person_name_raw": ("person_name", "personName", "rider_name", "rider", "employee_name"),
    "subcategory": ("subcategory", "stabling_subcategory", "feed_subcategory"),
    "suggested_category": ("suggested_category", "suggestedCategory"),
}

LINE_ITEM_NUMERIC_FIELDS: dict[str, tuple[str, ...]] = {
    "quantity": ("quantity", "qty", "units"),
    "unit_price": ("unit_price", "unitPrice", "price_each", "rate"),
    "amount_usd": ("amount_usd", "amountUsd", "total_usd", "totalUsd"),
    "amount_original": ("amount_original", "amountOriginal", "original_amount", "total_original"),
    "amount": ("amount", "total", "line_total", "lineTotal", "price", "cost"),
}


def _all_keys(*groups: dict[str, tuple[str, ...]]) -> set[str]:
    keys: set[str] = set()
    for group in groups:
        for candidates in group.values():
            keys.update(candidates)
    return keys


_KNOWN_INVOICE_KEYS = _all_keys(INVOICE_STRING_FIELDS, INVOICE_NUMERIC_FIELDS, CONTACT_FIELDS) | set(
    LINE_ITEM_ARRAY_KEYS
)
_KNOWN_ITEM_KEYS = _all_keys(LINE_ITEM_STRING_FIELDS, LINE_ITEM_NUMERIC_FIELDS)


def pick_string(source: dict[str, Any], keys: tuple[str, ...] | list[str]) -> str | None:
    """First non-empty trimmed string among candidate keys."""
    for key in keys:
        value = source.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # Invoice numbers and account numbers arrive as numbers sometimes
            return str(value)
    return None


def pick_number(source: dict[str, Any], keys: tuple[str, ...] | list[str]) -> Decimal | None:
    """First numeric (or numeric-looking string) value among candidate keys."""
    for key in keys:
        value = to_decimal(source.get(key))
        if value is not None:
            return value
    return None


def get_raw_line_items(raw: dict[str, Any]) -> list[dict[str, Any]]:
    """Line item rows from whichever array key is present."""
    for key in LINE_ITEM_ARRAY_KEYS:
        value = raw.get(key)
        if isinstance(value, list):
            return [row for row in value if isinstance(row, dict)]
    return []


def normalize_line_item(row: dict[str, Any]) -> LineItem:
    """Normalize one raw line item row."""
    strings = {field: pick_string(row, keys) for field, keys in LINE_ITEM_STRING_FIELDS.items()}
    numbers = {field: pick_number(row, keys) for field, keys in LINE_ITEM_NUMERIC_FIELDS.items()}

    quantity = numbers["quantity"]
    unit_price = numbers["unit_price"]
    generic = numbers["amount"]
    if generic is None and quantity is not None and unit_price is not None:
        generic = round2(quantity * unit_price)

    usd = numbers["amount_usd"] if numbers["amount_usd"] is not None else generic
    original = numbers["amount_original"] if numbers["amount_original"] is not None else generic

    return LineItem(
        description=strings["description"] or "",
        quantity=quantity,
        unit_price=unit_price,
        amount_original=round2(original) if original is not None else None,
        amount_usd=non_negative_usd(usd),
        horse_name_raw=strings["horse_name_raw"],
        person_name_raw=strings["person_name_raw"],
        subcategory=strings["subcategory"],
        suggested_category=strings["suggested_category"],
        extras={k: v for k, v in row.items() if k not in _KNOWN_ITEM_KEYS},
    )


def normalize_payload(raw: dict[str, Any]) -> NormalizedInvoice:
    """
    Canonicalize an extraction payload.

    invoice_total_usd is the first of: an explicit USD total, a stated
    document total, or the sum of line-item amounts (only if positive).

    Args:
        raw: JSON object returned by the document-understanding call

    Returns:
        New NormalizedInvoice (raw is not modified)
    """
    if not isinstance(raw, dict):
        raw = {}

    strings = {field: pick_string(raw, keys) for field, keys in INVOICE_STRING_FIELDS.items()}
    numbers = {field: pick_number(raw, keys) for field, keys in INVOICE_NUMERIC_FIELDS.items()}
    contact = ProviderContact(
        **{field: pick_string(raw, keys) for field, keys in CONTACT_FIELDS.items()}
    )

    line_items = [normalize_line_item(row) for row in get_raw_line_items(raw)]

    currency = strings["original_currency"]
    invoice = NormalizedInvoice(
        invoice_number=strings["invoice_number"],
        invoice_date=strings["invoice_date"],
        due_date=strings["due_date"],
        provider_name=strings["provider_name"],
        original_currency=currency.upper() if currency else None,
        original_total=numbers["original_total"],
        exchange_rate=numbers["exchange_rate"],
        stated_total=numbers["stated_total"],
        line_items=line_items,
        contact=contact,
        suggested_person_name=strings["suggested_person_name"],
        extras={k: v for k, v in raw.items() if k not in _KNOWN_INVOICE_KEYS},
    )

    total = numbers["invoice_total_usd"]
    if total is None:
        total = numbers["stated_total"]
    if total is None:
        items_sum = invoice.line_items_total_usd()
        total = items_sum if items_sum > 0 else None
    invoice.invoice_total_usd = round2(total) if total is not None else None

    logger.debug(
        "Normalized payload: %d line items, total=%s %s",
        len(line_items),
        invoice.invoice_total_usd,
        invoice.original_currency or "USD",
    )
    return invoice


def find_missing_fields(
    raw: dict[str, Any],
    invoice: NormalizedInvoice,
    expected_fields: list[str],
) -> list[str]:
    """
    Provider-declared required fields absent after normalization.

    A field counts as present if the raw payload or the normalized invoice
    carries a non-empty value. "horse_name" is satisfied by any line item
    with a horse name rather than a top-level field.
    """
    normalized = invoice.to_dict()
    missing: list[str] = []
    for field_name in expected_fields:
        if field_name == "horse_name":
            if not any(item.horse_name_raw for item in invoice.line_items):
                missing.append(field_name)
            continue
        value = raw.get(field_name)
        if value is None or value == "":
            value = normalized.get(field_name)
        if value is None or value == "" or value == []:
            missing.append(field_name)
    return missing
