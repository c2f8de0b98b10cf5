"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
"""

from .amounts import (
    CURRENCY_PRECISION,
    ZERO,
    AmountValidationError,
    non_negative_usd,
    round2,
    split_evenly,
    sum_amounts,
    to_decimal,
)
from .bill import Bill, BillLink, BillStatus
from .invoice import (
    LineItem,
    MatchConfidence,
    NormalizedInvoice,
    ProviderContact,
)
from .registry import (
    AliasRecord,
    EntityType,
    Horse,
    Person,
    PersonRole,
    Provider,
    RegistrySnapshot,
)

__all__ = [
    # Amounts
    "CURRENCY_PRECISION",
    "ZERO",
    "AmountValidationError",
    "non_negative_usd",
    "round2",
    "split_evenly",
    "sum_amounts",
    "to_decimal",
    # Invoice (canonical pipeline shape)
    "LineItem",
    "MatchConfidence",
    "NormalizedInvoice",
    "ProviderContact",
    # Bills
    "Bill",
    "BillLink",
    "BillStatus",
    # Registry
    "AliasRecord",
    "EntityType",
    "Horse",
    "Person",
    "PersonRole",
    "Provider",
    "RegistrySnapshot",
]
