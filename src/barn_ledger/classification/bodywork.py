"""
Bodywork rules.

Bodywork practitioners often bill several horses on one line
("Massage - Ben & Ziggy  $180"). Horse names from the configured dictionary
are detected in the line text; a line with N > 1 names and a positive amount
becomes N lines, one per horse.

Core Invariants:
- Split amounts are whole cents and sum exactly to the amount they were split
  from; the last split carries the remainder.
- On a converted invoice each split USD amount is its original-currency share
  times the exchange rate, so USD splits may drift from the pre-split USD
  amount by a cent.
- Detected names are removed from the description.
- A single detected name rewrites the line in place (no split).
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Optional

from ..schemas.amounts import ZERO, non_negative_usd, split_evenly
from ..schemas.invoice import LineItem, NormalizedInvoice
from .base import CategoryRules, RuleContext

logger = logging.getLogger(__name__)

LEGAL_ENTITY_SUFFIXES: tuple[str, ...] = ("inc", "llc", "ltd", "corp", "co", "gmbh", "bv")

_LEGAL_SUFFIX_RE = re.compile(
    r"\b(" + "|".join(LEGAL_ENTITY_SUFFIXES) + r")\b\.?", re.IGNORECASE
)
_LEADING_DIGITS_RE = re.compile(r"^\s*\d{5,}")
# Joiners left behind once names are removed ("Ben & Ziggy" -> "&")
_SEPARATOR_WORDS = frozenset({"and", "plus", "for"})
_SEPARATOR_CHARS = " &+/,-:;|"
_EMPTY_GROUP_RE = re.compile(r"\(\s*[&+/,\s]*(?:and\s*)?\)", re.IGNORECASE)

DEFAULT_DESCRIPTION = "Bodywork"


def looks_like_legal_entity(name: Optional[str]) -> bool:
    """Company-style name: a legal suffix word or a long leading digit run."""
    if not name:
        return False
    return bool(_LEGAL_SUFFIX_RE.search(name) or _LEADING_DIGITS_RE.match(name))


def detect_horse_names(text: str, dictionary: tuple[str, ...]) -> list[str]:
    """Dictionary names found in text, in order of appearance, deduplicated.

    Longer names are tried first so "Coopers Hill" is not also reported
    as "Cooper".
    """
    found: list[tuple[int, str]] = []
    taken: list[tuple[int, int]] = []
    for name in sorted({n.strip() for n in dictionary if n and n.strip()}, key=len, reverse=True):
        pattern = re.compile(r"\b" + re.escape(name) + r"\b", re.IGNORECASE)
        for match in pattern.finditer(text):
            span = match.span()
            if any(span[0] < end and start < span[1] for start, end in taken):
                continue
            taken.append(span)
            found.append((span[0], name))
            break
    found.sort()
    return [name for _, name in found]


def strip_names(description: str, names: list[str]) -> str:
    """Remove detected names (and the separators joining them) from a description."""
    cleaned = description
    for name in names:
        cleaned = re.sub(r"\b" + re.escape(name) + r"\b", " ", cleaned, flags=re.IGNORECASE)
    cleaned = _EMPTY_GROUP_RE.sub(" ", cleaned)

    tokens = cleaned.split()
    while tokens and _is_separator(tokens[0]):
        tokens.pop(0)
    while tokens and _is_separator(tokens[-1]):
        tokens.pop()
    return " ".join(tokens) or DEFAULT_DESCRIPTION


def _is_separator(token: str) -> bool:
    return token.lower() in _SEPARATOR_WORDS or not token.strip(_SEPARATOR_CHARS)


def split_line_item(
    item: LineItem, names: list[str], exchange_rate: Optional[Decimal] = None
) -> list[LineItem]:
    """One line item per detected horse, amounts divided evenly in cents.

    With an exchange rate the original amount is split and each share is
    converted on its own, matching how every other line item gets its USD
    amount.
    """
    description = strip_names(item.description, names)
    if item.amount_original is None:
        original_shares: list[Optional[Decimal]] = [None] * len(names)
        usd_shares = split_evenly(item.amount_usd, len(names))
    else:
        original_shares = list(split_evenly(item.amount_original, len(names)))
        if exchange_rate is not None and exchange_rate > 0:
            usd_shares = [non_negative_usd(share * exchange_rate) for share in original_shares]
        else:
            usd_shares = split_evenly(item.amount_usd, len(names))

    splits: list[LineItem] = []
    for name, usd, original in zip(names, usd_shares, original_shares):
        split = LineItem(
            description=description,
            amount_original=original,
            amount_usd=usd,
            horse_name_raw=name,
            subcategory=item.subcategory,
            suggested_category=item.suggested_category,
            extras=dict(item.extras),
        )
        splits.append(split)
    return splits


class BodyworkRules(CategoryRules):
    """Rules for the bodywork category."""

    slug = "bodywork"

    def normalize(self, invoice: NormalizedInvoice, context: RuleContext) -> NormalizedInvoice:
        """Prefer the practitioner's name over a company-style provider name."""
        result = invoice.copy()
        contact_name = result.contact.primary_contact_name
        if contact_name and looks_like_legal_entity(result.provider_name):
            logger.debug(
                "Using contact name '%s' instead of provider '%s'",
                contact_name,
                result.provider_name,
            )
            result.provider_name = contact_name
        return result

    def classify(self, invoice: NormalizedInvoice, context: RuleContext) -> NormalizedInvoice:
        result = invoice.copy()
        if not context.bodywork_horse_names:
            return result

        items: list[LineItem] = []
        for item in result.line_items:
            text = " ".join(part for part in (item.horse_name_raw, item.description) if part)
            names = detect_horse_names(text, context.bodywork_horse_names)

            if len(names) > 1 and item.amount_usd > ZERO:
                splits = split_line_item(item, names, result.exchange_rate)
                logger.info(
                    "Split bodywork line '%s' (%s) across %d horses",
                    item.description,
                    item.amount_usd,
                    len(splits),
                )
                items.extend(splits)
            elif len(names) == 1:
                item.horse_name_raw = names[0]
                item.description = strip_names(item.description, names)
                items.append(item)
            else:
                items.append(item)

        result.line_items = items
        return result
