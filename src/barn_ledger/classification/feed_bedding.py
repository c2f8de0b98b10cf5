"""
Feed & bedding rules.

Every line item gets one of three subcategories by keyword priority on its
description: bedding beats feed beats admin. Anything unrecognized is feed.
"""

from __future__ import annotations

import logging

from ..schemas.invoice import NormalizedInvoice
from .base import RuleContext, matches_any
from .suggestions import SuggestingRules

logger = logging.getLogger(__name__)

BEDDING_KEYWORDS: tuple[str, ...] = ("shavings", "bedding", "straw", "sawdust")
FEED_KEYWORDS: tuple[str, ...] = (
    "timothy",
    "hay",
    "haylage",
    "grain",
    "alfalfa",
    "oats",
    "beet pulp",
    "supplement",
    "vitamin",
    "pellet",
    "mash",
    "feed",
)
ADMIN_KEYWORDS: tuple[str, ...] = (
    "delivery",
    "charge",
    "fee",
    "surcharge",
    "handling",
    "admin",
    "service",
)

FEED_SUBCATEGORIES = frozenset({"bedding", "feed", "admin"})


def feed_subcategory(description: str) -> str:
    """Subcategory for one description."""
    if matches_any(description, BEDDING_KEYWORDS):
        return "bedding"
    if matches_any(description, FEED_KEYWORDS):
        return "feed"
    if matches_any(description, ADMIN_KEYWORDS):
        return "admin"
    return "feed"


class FeedBeddingRules(SuggestingRules):
    """Rules for the feed-bedding category."""

    slug = "feed-bedding"

    def classify(self, invoice: NormalizedInvoice, context: RuleContext) -> NormalizedInvoice:
        result = invoice.copy()
        for item in result.line_items:
            existing = (item.subcategory or "").strip().lower()
            if existing in FEED_SUBCATEGORIES:
                item.subcategory = existing
                continue
            item.subcategory = feed_subcategory(item.description)
        logger.debug(
            "Feed/bedding subcategories: %s",
            [item.subcategory for item in result.line_items],
        )
        return result
