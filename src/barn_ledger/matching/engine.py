"""Entity matching engine for resolving free-text horse/person names.

Resolves a raw name from an invoice against the canonical registry using
strict tier precedence; the first satisfied tier wins and a weaker tier can
never override a stronger one:

1. exact            normalized name equality                 -> EXACT
2. static alias     compiled alias dictionary                -> ALIAS
3. dynamic alias    learned alias store                      -> ALIAS
4. partial          unique containment                       -> ALIAS
5. single token     unique whole-token equality              -> ALIAS
6. fuzzy            Levenshtein within length threshold      -> FUZZY
7. none                                                      -> NONE

Ambiguity (two or more candidates in tiers 4-5) is never guessed; the tier
simply falls through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Protocol, Sequence

from ..categories import is_horse_based, is_person_based
from ..schemas.invoice import MatchConfidence, NormalizedInvoice
from ..schemas.registry import EntityType, RegistrySnapshot
from .static_aliases import HORSE_ALIASES, PERSON_ALIASES

logger = logging.getLogger(__name__)


class NamedEntity(Protocol):
    """Anything with an id and a name (Horse, Person)."""

    id: int
    name: str


def normalize_alias_key(value: str | None) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    if not value:
        return ""
    return " ".join(value.strip().lower().split())


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert/delete/substitute, unit costs)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def fuzzy_threshold(length: int) -> int:
    """Maximum accepted edit distance for a raw name of this length."""
    if length <= 4:
        return 1
    if length <= 8:
        return 2
    return 3


@dataclass
class MatchResult:
    """Result of resolving one raw name."""

    matched_name: str | None
    matched_id: int | None
    confidence: MatchConfidence

    @classmethod
    def no_match(cls) -> "MatchResult":
        return cls(matched_name=None, matched_id=None, confidence=MatchConfidence.NONE)

    @property
    def is_match(self) -> bool:
        return self.confidence is not MatchConfidence.NONE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "matched_name": self.matched_name,
            "matched_id": self.matched_id,
            "confidence": self.confidence.value,
        }


class EntityMatcher:
    """Tiered name matcher, parameterized by entity type.

    The static alias dictionary is injected so tests and deployments can
    substitute their own; keys are normalized on construction.
    """

    def __init__(
        self,
        entity_type: EntityType,
        static_aliases: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the matcher.

        Args:
            entity_type: HORSE or PERSON (used for logging and defaults).
            static_aliases: {raw variant: canonical name}. Defaults to the
                compiled-in dictionary for the entity type.
        """
        self.entity_type = entity_type
        if static_aliases is None:
            static_aliases = HORSE_ALIASES if entity_type == EntityType.HORSE else PERSON_ALIASES
        self.static_aliases = {
            normalize_alias_key(raw): canonical for raw, canonical in static_aliases.items()
        }

    def match(
        self,
        raw_name: str | None,
        entities: Sequence[NamedEntity],
        dynamic_aliases: Mapping[str, str] | None = None,
    ) -> MatchResult:
        """Resolve a raw name against canonical entities.

        Args:
            raw_name: Free text from the invoice.
            entities: Active canonical entities.
            dynamic_aliases: Learned {alias_key: canonical name}.

        Returns:
            MatchResult from the first satisfied tier.
        """
        cleaned = normalize_alias_key(raw_name)
        if not cleaned or not entities:
            return MatchResult.no_match()

        keyed = [(normalize_alias_key(entity.name), entity) for entity in entities]

        for key, entity in keyed:
            if key == cleaned:
                return self._result(entity, MatchConfidence.EXACT)

        for aliases in (self.static_aliases, dynamic_aliases or {}):
            entity = self._alias_target(cleaned, aliases, keyed)
            if entity is not None:
                return self._result(entity, MatchConfidence.ALIAS)

        partial = [
            entity
            for key, entity in keyed
            if cleaned in key or key.split(" ")[0] in cleaned
        ]
        if len(partial) == 1:
            return self._result(partial[0], MatchConfidence.ALIAS)

        token = [entity for key, entity in keyed if cleaned in key.split(" ")]
        if len(token) == 1:
            return self._result(token[0], MatchConfidence.ALIAS)

        return self._fuzzy(cleaned, keyed)

    def _alias_target(
        self,
        cleaned: str,
        aliases: Mapping[str, str],
        keyed: list[tuple[str, NamedEntity]],
    ) -> NamedEntity | None:
        """Entity an alias points at, if the target is registered and active."""
        target = aliases.get(cleaned)
        if not target:
            return None
        target_key = normalize_alias_key(target)
        for key, entity in keyed:
            if key == target_key:
                return entity
        logger.debug("%s alias '%s' targets unknown name '%s'", self.entity_type.value, cleaned, target)
        return None

    def _fuzzy(self, cleaned: str, keyed: list[tuple[str, NamedEntity]]) -> MatchResult:
        """Minimum edit distance over every full name and every name token."""
        best: NamedEntity | None = None
        best_distance: int | None = None
        for key, entity in keyed:
            for candidate in (key, *key.split(" ")):
                distance = levenshtein(cleaned, candidate)
                if best_distance is None or distance < best_distance:
                    best_distance = distance
                    best = entity

        if best is not None and best_distance is not None:
            if best_distance <= fuzzy_threshold(len(cleaned)):
                return self._result(best, MatchConfidence.FUZZY)
        return MatchResult.no_match()

    @staticmethod
    def _result(entity: NamedEntity, confidence: MatchConfidence) -> MatchResult:
        return MatchResult(matched_name=entity.name, matched_id=entity.id, confidence=confidence)


class InvoiceMatcher:
    """Applies horse/person matching to every line item of an invoice."""

    def __init__(
        self,
        horse_matcher: EntityMatcher | None = None,
        person_matcher: EntityMatcher | None = None,
    ) -> None:
        self.horse_matcher = horse_matcher or EntityMatcher(EntityType.HORSE)
        self.person_matcher = person_matcher or EntityMatcher(EntityType.PERSON)

    def match_invoice(
        self,
        invoice: NormalizedInvoice,
        category_slug: str,
        registry: RegistrySnapshot,
    ) -> NormalizedInvoice:
        """Return a copy of the invoice with match fields filled in.

        Horse names are matched for horse-based categories, person names for
        person-based categories (plus the invoice-level suggested person).
        auto_detected is set only for EXACT/ALIAS, never for FUZZY.
        """
        result = invoice.copy()
        horse_based = is_horse_based(category_slug)
        person_based = is_person_based(category_slug)

        horses = registry.entities(EntityType.HORSE)
        people = registry.entities(EntityType.PERSON)

        for item in result.line_items:
            if horse_based:
                match = self.horse_matcher.match(
                    item.horse_name_raw, horses, registry.aliases(EntityType.HORSE)
                )
                item.horse_name_matched = match.matched_name
                item.horse_id = match.matched_id
                item.horse_match_confidence = match.confidence
                item.auto_detected = match.confidence.is_auto_trusted
            if person_based:
                match = self.person_matcher.match(
                    item.person_name_raw, people, registry.aliases(EntityType.PERSON)
                )
                item.person_name_matched = match.matched_name
                item.person_id = match.matched_id
                item.person_match_confidence = match.confidence
                item.auto_detected = match.confidence.is_auto_trusted

        if person_based and result.suggested_person_name:
            match = self.person_matcher.match(
                result.suggested_person_name, people, registry.aliases(EntityType.PERSON)
            )
            result.suggested_person_matched = match.matched_name
            result.suggested_person_id = match.matched_id
            result.suggested_person_confidence = match.confidence

        logger.debug(
            "Matched %d line items for category %s (horse=%s, person=%s)",
            len(result.line_items),
            category_slug,
            horse_based,
            person_based,
        )
        return result
