"""
Canonical normalized invoice (SSOT).

This is THE shape every pipeline stage consumes and produces, and the JSON
stored as a bill's extracted data. No other module may invent another
invoice schema.

Downstream compatibility:
- to_dict() writes each canonical field under its snake_case key AND its
  common aliasing spellings (camelCase, legacy total_usd).
- from_dict() accepts any of those spellings.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .amounts import ZERO, sum_amounts, to_decimal, to_json_number


class MatchConfidence(str, Enum):
    """
    How a name match was obtained.

    EXACT:  normalized name equality
    ALIAS:  static/learned alias or unique containment/token heuristic
    FUZZY:  Levenshtein within threshold (surfaced, not trusted)
    NONE:   unmatched
    MANUAL: resolved by a human
    """

    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"
    NONE = "none"
    MANUAL = "manual"

    @property
    def is_auto_trusted(self) -> bool:
        """Automatic match that may be applied without review."""
        return self in (MatchConfidence.EXACT, MatchConfidence.ALIAS)

    @property
    def is_resolved(self) -> bool:
        """Counts as resolved for the approval gate."""
        return self is not MatchConfidence.NONE


# canonical key -> alternate spellings written alongside it
LINE_ITEM_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "unit_price": ("unitPrice",),
    "amount_original": ("amountOriginal",),
    "amount_usd": ("amountUsd", "total_usd"),
    "horse_name": ("horseName",),
    "horse_name_matched": ("horseNameMatched",),
    "horse_id": ("horseId",),
    "horse_match_confidence": ("horseMatchConfidence",),
    "person_name": ("personName",),
    "person_name_matched": ("personNameMatched",),
    "person_id": ("personId",),
    "person_match_confidence": ("personMatchConfidence",),
    "suggested_category": ("suggestedCategory",),
    "confirmed_category": ("confirmedCategory",),
    "auto_detected": ("autoDetected",),
    "original_horse_name": ("originalHorseName",),
    "original_person_name": ("originalPersonName",),
}

INVOICE_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "invoice_number": ("invoiceNumber",),
    "invoice_date": ("invoiceDate",),
    "due_date": ("dueDate",),
    "provider_name": ("providerName",),
    "original_currency": ("originalCurrency",),
    "original_total": ("originalTotal",),
    "exchange_rate": ("exchangeRate",),
    "invoice_total_usd": ("invoiceTotalUsd",),
    "line_items": ("lineItems",),
    "suggested_person_name": ("suggestedPersonName",),
    "suggested_person_matched": ("suggestedPersonMatched",),
    "suggested_person_id": ("suggestedPersonId",),
    "suggested_person_confidence": ("suggestedPersonConfidence",),
}


def _with_aliases(data: dict[str, Any], aliases: dict[str, tuple[str, ...]]) -> dict[str, Any]:
    for key, alternates in aliases.items():
        if key in data:
            for alternate in alternates:
                data[alternate] = data[key]
    return data


def _read(data: dict[str, Any], key: str, aliases: dict[str, tuple[str, ...]]) -> Any:
    for candidate in (key, *aliases.get(key, ())):
        if candidate in data and data[candidate] is not None:
            return data[candidate]
    return None


def _confidence(value: Any, default: Optional[MatchConfidence]) -> Optional[MatchConfidence]:
    if value is None:
        return default
    try:
        return MatchConfidence(str(value))
    except ValueError:
        return default


@dataclass
class LineItem:
    """One billable row extracted from an invoice."""

    description: str = ""
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    amount_original: Optional[Decimal] = None
    amount_usd: Decimal = ZERO

    # Horse attribution
    horse_name_raw: Optional[str] = None
    horse_name_matched: Optional[str] = None
    horse_id: Optional[int] = None
    horse_match_confidence: MatchConfidence = MatchConfidence.NONE

    # Person attribution
    person_name_raw: Optional[str] = None
    person_name_matched: Optional[str] = None
    person_id: Optional[int] = None
    person_match_confidence: Optional[MatchConfidence] = None

    # Classification
    subcategory: Optional[str] = None
    suggested_category: Optional[str] = None
    confirmed_category: Optional[str] = None
    reclassified: bool = False
    auto_detected: bool = False

    # Audit trail written by manual resolution
    original_horse_name: Optional[str] = None
    original_person_name: Optional[str] = None

    # Raw keys the normalizer did not recognize
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the extracted-data JSON blob."""
        data = dict(self.extras)
        data.update(
            {
                "description": self.description,
                "quantity": to_json_number(self.quantity),
                "unit_price": to_json_number(self.unit_price),
                "amount_original": to_json_number(self.amount_original),
                "amount_usd": to_json_number(self.amount_usd),
                "horse_name": self.horse_name_raw,
                "horse_name_matched": self.horse_name_matched,
                "horse_id": self.horse_id,
                "horse_match_confidence": self.horse_match_confidence.value,
                "person_name": self.person_name_raw,
                "person_name_matched": self.person_name_matched,
                "person_id": self.person_id,
                "person_match_confidence": (
                    self.person_match_confidence.value if self.person_match_confidence else None
                ),
                "subcategory": self.subcategory,
                "suggested_category": self.suggested_category,
                "confirmed_category": self.confirmed_category,
                "reclassified": self.reclassified,
                "auto_detected": self.auto_detected,
                "original_horse_name": self.original_horse_name,
                "original_person_name": self.original_person_name,
            }
        )
        return _with_aliases(data, LINE_ITEM_KEY_ALIASES)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        """Deserialize from either casing."""
        known = {"description", "quantity", "subcategory", "reclassified"}
        for key, alternates in LINE_ITEM_KEY_ALIASES.items():
            known.add(key)
            known.update(alternates)

        def read(key: str) -> Any:
            return _read(data, key, LINE_ITEM_KEY_ALIASES)

        return cls(
            description=str(data.get("description") or ""),
            quantity=to_decimal(data.get("quantity")),
            unit_price=to_decimal(read("unit_price")),
            amount_original=to_decimal(read("amount_original")),
            amount_usd=to_decimal(read("amount_usd")) or ZERO,
            horse_name_raw=read("horse_name"),
            horse_name_matched=read("horse_name_matched"),
            horse_id=read("horse_id"),
            horse_match_confidence=_confidence(
                read("horse_match_confidence"), MatchConfidence.NONE
            ),
            person_name_raw=read("person_name"),
            person_name_matched=read("person_name_matched"),
            person_id=read("person_id"),
            person_match_confidence=_confidence(read("person_match_confidence"), None),
            subcategory=data.get("subcategory"),
            suggested_category=read("suggested_category"),
            confirmed_category=read("confirmed_category"),
            reclassified=bool(data.get("reclassified", False)),
            auto_detected=bool(read("auto_detected") or False),
            original_horse_name=read("original_horse_name"),
            original_person_name=read("original_person_name"),
            extras={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class ProviderContact:
    """Provider contact details discoverable from an invoice."""

    full_name: Optional[str] = None
    primary_contact_name: Optional[str] = None
    primary_contact_phone: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    account_number: Optional[str] = None

    def is_empty(self) -> bool:
        """True when nothing was discovered."""
        return all(value is None for value in self.__dict__.values())

    def to_dict(self) -> dict[str, Optional[str]]:
        """Serialize as a plain mapping."""
        return dict(self.__dict__)


@dataclass
class NormalizedInvoice:
    """
    CANONICAL normalized invoice (SSOT).

    Monetary fields are Decimal, quantized to cents once the currency
    converter has run. original_total is in original_currency;
    invoice_total_usd is always USD after conversion.
    """

    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    provider_name: Optional[str] = None

    original_currency: Optional[str] = None
    original_total: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    invoice_total_usd: Optional[Decimal] = None
    # Currency-neutral "total" as stated on the document, pre-conversion
    stated_total: Optional[Decimal] = None

    line_items: list[LineItem] = field(default_factory=list)

    contact: ProviderContact = field(default_factory=ProviderContact)

    # Invoice-level person (e.g. rental-car driver)
    suggested_person_name: Optional[str] = None
    suggested_person_matched: Optional[str] = None
    suggested_person_id: Optional[int] = None
    suggested_person_confidence: Optional[MatchConfidence] = None

    subcategory: Optional[str] = None

    extras: dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "NormalizedInvoice":
        """Deep copy, so transforms never mutate their input."""
        return copy.deepcopy(self)

    def line_items_total_usd(self) -> Decimal:
        """Rounded sum of line-item USD amounts."""
        return sum_amounts([item.amount_usd for item in self.line_items])

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON storage (both casings)."""
        data = dict(self.extras)
        data.update(
            {
                "invoice_number": self.invoice_number,
                "invoice_date": self.invoice_date,
                "due_date": self.due_date,
                "provider_name": self.provider_name,
                "original_currency": self.original_currency,
                "original_total": to_json_number(self.original_total),
                "exchange_rate": to_json_number(self.exchange_rate),
                "invoice_total_usd": to_json_number(self.invoice_total_usd),
                "stated_total": to_json_number(self.stated_total),
                "line_items": [item.to_dict() for item in self.line_items],
                "suggested_person_name": self.suggested_person_name,
                "suggested_person_matched": self.suggested_person_matched,
                "suggested_person_id": self.suggested_person_id,
                "suggested_person_confidence": (
                    self.suggested_person_confidence.value
                    if self.suggested_person_confidence
                    else None
                ),
                "subcategory": self.subcategory,
                "provider_contact": self.contact.to_dict(),
            }
        )
        return _with_aliases(data, INVOICE_KEY_ALIASES)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NormalizedInvoice":
        """Deserialize from either casing."""
        known = {"stated_total", "subcategory", "provider_contact"}
        for key, alternates in INVOICE_KEY_ALIASES.items():
            known.add(key)
            known.update(alternates)

        def read(key: str) -> Any:
            return _read(data, key, INVOICE_KEY_ALIASES)

        raw_items = read("line_items")
        items = [
            LineItem.from_dict(row)
            for row in (raw_items if isinstance(raw_items, list) else [])
            if isinstance(row, dict)
        ]
        contact_data = data.get("provider_contact") or {}

        return cls(
            invoice_number=read("invoice_number"),
            invoice_date=read("invoice_date"),
            due_date=read("due_date"),
            provider_name=read("provider_name"),
            original_currency=read("original_currency"),
            original_total=to_decimal(read("original_total")),
            exchange_rate=to_decimal(read("exchange_rate")),
            invoice_total_usd=to_decimal(read("invoice_total_usd")),
            stated_total=to_decimal(data.get("stated_total")),
            line_items=items,
            contact=ProviderContact(
                **{k: contact_data.get(k) for k in ProviderContact().__dict__}
            ),
            suggested_person_name=read("suggested_person_name"),
            suggested_person_matched=read("suggested_person_matched"),
            suggested_person_id=read("suggested_person_id"),
            suggested_person_confidence=_confidence(read("suggested_person_confidence"), None),
            subcategory=data.get("subcategory"),
            extras={k: v for k, v in data.items() if k not in known},
        )
