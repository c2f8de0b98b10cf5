"""
Category slug -> rules lookup, and the rule pipeline.

Categories without dedicated rules get the pass-through CategoryRules.
"""

from __future__ import annotations

import logging

from ..schemas.invoice import NormalizedInvoice
from .base import CategoryRules, RuleContext
from .bodywork import BodyworkRules
from .feed_bedding import FeedBeddingRules
from .suggestions import ShowExpensesRules, StablingRules
from .travel import TravelRules

logger = logging.getLogger(__name__)

RULES: dict[str, CategoryRules] = {
    rules.slug: rules
    for rules in (
        FeedBeddingRules(),
        BodyworkRules(),
        TravelRules(),
        StablingRules(),
        ShowExpensesRules(),
    )
}

_PASS_THROUGH = CategoryRules()


def rules_for(slug: str | None) -> CategoryRules:
    """Rules for a category slug (pass-through when none are registered)."""
    return RULES.get(slug or "", _PASS_THROUGH)


def apply_category_rules(
    slug: str | None,
    invoice: NormalizedInvoice,
    context: RuleContext | None = None,
) -> NormalizedInvoice:
    """Run normalize -> classify -> suggest_reclassification for one category.

    Args:
        slug: Category slug of the bill
        invoice: Currency-normalized invoice (not modified)
        context: Provider and dictionary inputs

    Returns:
        New invoice with category rules applied
    """
    context = context or RuleContext()
    rules = rules_for(slug)
    result = rules.normalize(invoice, context)
    result = rules.classify(result, context)
    result = rules.suggest_reclassification(result)
    logger.debug("Applied %r to %d line items", rules, len(result.line_items))
    return result
