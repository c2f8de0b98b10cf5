"""
Category-specific classification.

Rules are looked up by category slug; see registry.apply_category_rules.
"""

from .base import DEFAULT_RENTAL_SIGNATURES, CategoryRules, RuleContext
from .bodywork import detect_horse_names, looks_like_legal_entity, strip_names
from .feed_bedding import feed_subcategory
from .metadata import (
    build_category_metadata,
    derive_subcategory,
    initial_status,
    provider_contact_patch,
)
from .registry import RULES, apply_category_rules, rules_for
from .suggestions import suggest_category

__all__ = [
    "DEFAULT_RENTAL_SIGNATURES",
    "CategoryRules",
    "RuleContext",
    "RULES",
    "apply_category_rules",
    "rules_for",
    "detect_horse_names",
    "looks_like_legal_entity",
    "strip_names",
    "feed_subcategory",
    "suggest_category",
    "build_category_metadata",
    "derive_subcategory",
    "initial_status",
    "provider_contact_patch",
]
