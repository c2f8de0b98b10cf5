"""Tiered horse/person name matching against the canonical registry."""

from barn_ledger.matching.engine import (
    EntityMatcher,
    InvoiceMatcher,
    MatchResult,
    fuzzy_threshold,
    levenshtein,
    normalize_alias_key,
)

__all__ = [
    "EntityMatcher",
    "InvoiceMatcher",
    "MatchResult",
    "fuzzy_threshold",
    "levenshtein",
    "normalize_alias_key",
]
