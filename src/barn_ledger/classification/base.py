"""
Category rule interface.

Each expense category may carry its own rules for tidying an invoice after
currency conversion. Rules are pure transforms: every hook returns a new
NormalizedInvoice and never mutates its input.

Hook order (see registry.apply_category_rules):
1. normalize                  vendor-specific field repairs
2. classify                   per-item subcategories, splits
3. suggest_reclassification   advisory target categories
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from ..schemas.invoice import NormalizedInvoice

# Provider slugs / name fragments identifying rental-car agreements
DEFAULT_RENTAL_SIGNATURES: tuple[str, ...] = (
    "hertz",
    "avis",
    "enterprise",
    "budget",
    "sixt",
    "alamo",
    "national car",
    "europcar",
    "thrifty",
)


@dataclass
class RuleContext:
    """Per-bill inputs the category rules may consult."""

    provider_slug: Optional[str] = None
    provider_name: Optional[str] = None
    # Horse names recognized inside free-text bodywork descriptions
    bodywork_horse_names: tuple[str, ...] = ()
    rental_signatures: tuple[str, ...] = field(default=DEFAULT_RENTAL_SIGNATURES)

    def provider_text(self) -> str:
        """Lowercased provider slug and name, for signature checks."""
        return " ".join(part for part in (self.provider_slug, self.provider_name) if part).lower()


class CategoryRules:
    """
    Pass-through rules; categories without specific rules use this directly.

    Subclasses override only the hooks they need.
    """

    slug: str = ""

    def normalize(self, invoice: NormalizedInvoice, context: RuleContext) -> NormalizedInvoice:
        """Vendor-specific repairs of the normalized invoice."""
        return invoice.copy()

    def classify(self, invoice: NormalizedInvoice, context: RuleContext) -> NormalizedInvoice:
        """Assign subcategories (and split items where the category requires it)."""
        return invoice.copy()

    def suggest_reclassification(self, invoice: NormalizedInvoice) -> NormalizedInvoice:
        """Advisory per-item target categories. Default: none."""
        return invoice.copy()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(slug={self.slug!r})"


SHORT_KEYWORD_LENGTH = 3


def keyword_pattern(keyword: str) -> str:
    """Regex for one keyword: a word prefix, or a whole word if short.

    Short keywords are too likely to start unrelated words ("vet" in
    "Vetwrap"), so they only match on their own or with a plural "s".
    """
    escaped = re.escape(keyword)
    if len(keyword) <= SHORT_KEYWORD_LENGTH:
        return r"\b" + escaped + r"s?\b"
    return r"\b" + escaped


def matches_any(text: str, keywords: tuple[str, ...]) -> bool:
    """True if any keyword matches a word in text (case-insensitive).

    "pellet" matches "pellets", "fee" does not match "coffee" and "vet"
    does not match "Vetwrap".
    """
    lowered = text.lower()
    for keyword in keywords:
        if re.search(keyword_pattern(keyword), lowered):
            return True
    return False
