"""
Expense category catalogue (SSOT).

All category slugs and the category groupings that drive matching,
approval and reclassification are defined here; no other module should
compare against ad-hoc category strings.
"""

import re

CATEGORIES: dict[str, str] = {
    "veterinary": "Veterinary",
    "feed-bedding": "Feed & Bedding",
    "stabling": "Stabling",
    "farrier": "Farrier",
    "bodywork": "Bodywork",
    "therapeutic-care": "Therapeutic Care",
    "travel": "Travel",
    "housing": "Housing",
    "riding-training": "Riding & Training",
    "commissions": "Commissions",
    "horse-purchases": "Horse Purchases",
    "supplies": "Supplies",
    "marketing": "Marketing",
    "dues-registrations": "Dues & Registrations",
    "admin": "Admin",
    "horse-transport": "Horse Transport",
    "show-expenses": "Show Expenses",
    "salaries": "Salaries",
}

# Line items are attributed to horses; unmatched horse names block approval
HORSE_BASED_CATEGORIES = frozenset(
    {
        "veterinary",
        "farrier",
        "stabling",
        "bodywork",
        "therapeutic-care",
        "horse-transport",
        "riding-training",
        "show-expenses",
        "horse-purchases",
    }
)

# Line items (and the invoice as a whole) are attributed to people
PERSON_BASED_CATEGORIES = frozenset({"travel", "housing", "salaries"})

# Approval may split line items out into derivative bills
RECLASSIFIABLE_CATEGORIES = frozenset({"stabling", "show-expenses", "feed-bedding"})

# Parsed bills land in "pending" and wait for an explicit approval
APPROVAL_CATEGORIES = frozenset({"travel", "housing", "stabling"})

TRAVEL_SUBCATEGORIES = frozenset({"flights", "trains", "rental-car", "gas", "meals", "hotels"})
HOUSING_SUBCATEGORIES = frozenset({"rider-housing", "groom-housing"})


def slugify(value: str) -> str:
    """Lowercase slug: runs of non-alphanumerics become single hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower().strip())
    return slug.strip("-")


def is_known_category(slug: str | None) -> bool:
    """True if the slug names a category in the catalogue."""
    return bool(slug) and slug in CATEGORIES


def is_horse_based(slug: str | None) -> bool:
    return slug in HORSE_BASED_CATEGORIES


def is_person_based(slug: str | None) -> bool:
    return slug in PERSON_BASED_CATEGORIES


def needs_approval(slug: str | None) -> bool:
    return slug in APPROVAL_CATEGORIES
