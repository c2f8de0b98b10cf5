"""
Persisted bill records.

A bill owns one stored document and, once parsed, its NormalizedInvoice as
extracted_data. Derivative bills created by reclassification point back at
their source through source_bill_id; the source keeps forward links.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .invoice import NormalizedInvoice


class BillStatus(str, Enum):
    """Bill lifecycle."""

    UPLOADING = "uploading"
    PARSING = "parsing"
    PENDING = "pending"  # Parsed, waiting for explicit approval
    DONE = "done"
    ERROR = "error"


@dataclass
class BillLink:
    """Forward link from a source bill to one derivative bill."""

    derivative_bill_id: int
    target_category: str
    amount: Decimal
    item_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "derivative_bill_id": self.derivative_bill_id,
            "target_category": self.target_category,
            "amount": float(self.amount),
            "item_count": self.item_count,
        }


@dataclass
class Bill:
    """A bill as stored in the state store."""

    id: int
    category: str
    status: BillStatus = BillStatus.UPLOADING
    provider_slug: Optional[str] = None
    file_ref: Optional[str] = None
    file_name: Optional[str] = None
    billing_period: Optional[str] = None
    error_message: Optional[str] = None

    extracted_data: Optional[dict[str, Any]] = None
    unmatched_names: list[str] = field(default_factory=list)
    has_unmatched_horses: bool = False

    # Category metadata (subcategory, assignment scaffolding, assigned person)
    metadata: dict[str, Any] = field(default_factory=dict)

    is_approved: bool = False
    approved_at: Optional[str] = None
    source_bill_id: Optional[int] = None
    links: list[BillLink] = field(default_factory=list)

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def invoice(self) -> Optional[NormalizedInvoice]:
        """Parsed invoice, or None before a successful parse."""
        if self.extracted_data is None:
            return None
        return NormalizedInvoice.from_dict(self.extracted_data)

    @property
    def is_derivative(self) -> bool:
        return self.source_bill_id is not None
