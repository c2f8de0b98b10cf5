"""
Advisory reclassification suggestions.

Stabling, show-expenses and feed-bedding invoices often carry charges that
belong to another category (a farrier visit billed through the barn, a vet
call on a show bill). Each line item without a suggestion gets one from
keyword buckets checked in priority order. The current category means
"no suggestion". A human decision at approval time always wins.
"""

from __future__ import annotations

from ..schemas.invoice import NormalizedInvoice
from .base import CategoryRules, matches_any

# (target category, keywords), highest priority first
SUGGESTION_BUCKETS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "farrier",
        ("farrier", "shoe", "shoeing", "reset", "trim", "hoof", "pads", "clips"),
    ),
    (
        "veterinary",
        (
            "vet",
            "veterinary",
            "vaccin",
            "exam",
            "injection",
            "dental",
            "float",
            "x-ray",
            "radiograph",
            "ultrasound",
            "coggins",
            "deworm",
            "medication",
            "sedation",
        ),
    ),
    (
        "supplies",
        (
            "supplies",
            "fly spray",
            "blanket",
            "bucket",
            "halter",
            "lead rope",
            "saddle pad",
            "bandage",
            "vetwrap",
            "wrap",
            "tack",
            "grooming supplies",
        ),
    ),
    (
        "feed-bedding",
        (
            "shavings",
            "bedding",
            "straw",
            "sawdust",
            "hay",
            "haylage",
            "grain",
            "alfalfa",
            "oats",
            "beet pulp",
            "supplement",
            "pellet",
            "feed",
        ),
    ),
    (
        "stabling",
        ("board", "stall", "stabling", "paddock", "turnout", "day rate", "night check"),
    ),
)


def suggest_category(description: str, current_category: str) -> str:
    """First bucket whose keywords appear in the description, else the current category."""
    for category, keywords in SUGGESTION_BUCKETS:
        if matches_any(description, keywords):
            return category
    return current_category


class SuggestingRules(CategoryRules):
    """Rules base for categories that support cross-category reclassification."""

    def suggest_reclassification(self, invoice: NormalizedInvoice) -> NormalizedInvoice:
        result = invoice.copy()
        for item in result.line_items:
            if item.suggested_category:
                continue
            item.suggested_category = suggest_category(item.description, self.slug)
        return result


class StablingRules(SuggestingRules):
    slug = "stabling"


class ShowExpensesRules(SuggestingRules):
    slug = "show-expenses"
