"""
Unmatched entity tracking and the approval gate.

After matching, the raw names of line items at confidence "none" form the
bill's unmatched list. For horse-based categories a non-empty list blocks
approval until every such item is resolved by hand, either to an existing
canonical entity or to a newly created one.

Core Invariants:
- The unmatched list is deduplicated by normalized key, keeping the first
  spelling and the original order.
- has_unmatched_horses is only ever true for horse-based categories.
- Resolution touches only items still at confidence "none" whose raw name
  normalizes to the resolved name; the raw text is kept in the audit field.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..categories import is_horse_based, is_person_based
from ..errors import BarnLedgerError, InvalidAlias, UnresolvedEntities
from ..matching.engine import normalize_alias_key
from ..schemas.bill import Bill
from ..schemas.invoice import MatchConfidence, NormalizedInvoice
from ..schemas.registry import AliasRecord, EntityType, Horse, Person
from ..state_store import BillDataUpdate, StateStore
from .alias_learning import AliasLearner

logger = logging.getLogger(__name__)


def collect_unmatched_names(
    invoice: NormalizedInvoice,
    entity_type: EntityType = EntityType.HORSE,
) -> list[str]:
    """Raw names of items at confidence "none", deduplicated by normalized key."""
    names: list[str] = []
    seen: set[str] = set()
    for item in invoice.line_items:
        if entity_type == EntityType.HORSE:
            raw, confidence = item.horse_name_raw, item.horse_match_confidence
        else:
            raw, confidence = item.person_name_raw, item.person_match_confidence
        if confidence is not MatchConfidence.NONE:
            continue
        key = normalize_alias_key(raw)
        if not key or key in seen:
            continue
        seen.add(key)
        names.append(raw.strip())
    return names


def unmatched_for_category(invoice: NormalizedInvoice, category_slug: str) -> tuple[list[str], bool]:
    """(unmatched names, has_unmatched_horses) for a bill of this category.

    Person-based categories report unmatched person names but never set the
    horse flag.
    """
    if is_horse_based(category_slug):
        names = collect_unmatched_names(invoice, EntityType.HORSE)
        return names, bool(names)
    if is_person_based(category_slug):
        return collect_unmatched_names(invoice, EntityType.PERSON), False
    return [], False


def ensure_approvable(bill: Bill) -> None:
    """
    Approval gate.

    Raises:
        UnresolvedEntities: Horse-based bill with unresolved horse names
    """
    if bill.has_unmatched_horses and is_horse_based(bill.category):
        raise UnresolvedEntities(bill.unmatched_names)


def rewrite_unmatched(
    invoice: NormalizedInvoice,
    entity_type: EntityType,
    raw_name: str,
    entity: Horse | Person,
) -> tuple[NormalizedInvoice, list[int]]:
    """Point every still-unmatched item named raw_name at the entity.

    Returns:
        (new invoice, indices of rewritten items)
    """
    result = invoice.copy()
    target_key = normalize_alias_key(raw_name)
    rewritten: list[int] = []
    for index, item in enumerate(result.line_items):
        if entity_type == EntityType.HORSE:
            if (
                item.horse_match_confidence is MatchConfidence.NONE
                and normalize_alias_key(item.horse_name_raw) == target_key
            ):
                item.original_horse_name = item.horse_name_raw
                item.horse_id = entity.id
                item.horse_name_matched = entity.name
                item.horse_match_confidence = MatchConfidence.MANUAL
                rewritten.append(index)
        elif (
            item.person_match_confidence is MatchConfidence.NONE
            and normalize_alias_key(item.person_name_raw) == target_key
        ):
            item.original_person_name = item.person_name_raw
            item.person_id = entity.id
            item.person_name_matched = entity.name
            item.person_match_confidence = MatchConfidence.MANUAL
            rewritten.append(index)
    return result, rewritten


@dataclass
class ResolutionResult:
    """Outcome of one manual resolution."""

    bill_id: int
    entity_id: int
    entity_name: str
    rewritten_items: list[int]
    unmatched_names: list[str]
    has_unmatched_horses: bool
    alias: Optional[AliasRecord] = None


class UnmatchedResolver:
    """
    Manual resolution of unmatched names on a parsed bill.

    Both paths (link an existing entity, create a new one) rewrite the
    matching items, recompute the unmatched list and learn an alias.
    """

    def __init__(self, state_store: StateStore, learner: Optional[AliasLearner] = None):
        self.store = state_store
        self.learner = learner or AliasLearner(state_store)

    def resolve_with_existing(self, bill_id: int, raw_name: str, horse_id: int) -> ResolutionResult:
        """Link an unmatched horse name to an existing horse."""
        horse = self.store.get_entity(EntityType.HORSE, horse_id)
        return self._resolve(bill_id, raw_name, EntityType.HORSE, horse)

    def resolve_with_new_entity(self, bill_id: int, raw_name: str, new_name: str) -> ResolutionResult:
        """Create a horse and link the unmatched name to it."""
        bill = self.store.get_bill(bill_id)
        self._require_invoice(bill)
        horse = self.store.add_horse(new_name)
        logger.info("Created horse %d '%s' from bill %d", horse.id, horse.name, bill_id)
        return self._resolve(bill_id, raw_name, EntityType.HORSE, horse)

    def resolve_person_with_existing(
        self, bill_id: int, raw_name: str, person_id: int
    ) -> ResolutionResult:
        """Link an unmatched person name to an existing person."""
        person = self.store.get_entity(EntityType.PERSON, person_id)
        return self._resolve(bill_id, raw_name, EntityType.PERSON, person)

    def resolve_person_with_new_entity(
        self, bill_id: int, raw_name: str, new_name: str, role: str = "freelance"
    ) -> ResolutionResult:
        """Create a person and link the unmatched name to it."""
        bill = self.store.get_bill(bill_id)
        self._require_invoice(bill)
        person = self.store.add_person(new_name, role=role)
        logger.info("Created person %d '%s' from bill %d", person.id, person.name, bill_id)
        return self._resolve(bill_id, raw_name, EntityType.PERSON, person)

    @staticmethod
    def _require_invoice(bill: Bill) -> NormalizedInvoice:
        invoice = bill.invoice
        if invoice is None:
            raise BarnLedgerError(f"Bill {bill.id} has no extracted data to resolve")
        return invoice

    def _resolve(
        self,
        bill_id: int,
        raw_name: str,
        entity_type: EntityType,
        entity: Horse | Person,
    ) -> ResolutionResult:
        rewritten: list[int] = []

        def apply(bill: Bill) -> BillDataUpdate:
            invoice, indices = rewrite_unmatched(
                self._require_invoice(bill), entity_type, raw_name, entity
            )
            rewritten.extend(indices)
            names, flag = unmatched_for_category(invoice, bill.category)

            metadata = None
            if entity_type == EntityType.HORSE and "horse_assignments" in bill.metadata:
                metadata = dict(bill.metadata)
                metadata["horse_assignments"] = [
                    {**slot, "horse_id": entity.id}
                    if slot.get("line_item_index") in indices
                    else slot
                    for slot in bill.metadata["horse_assignments"]
                ]
            return BillDataUpdate(invoice.to_dict(), names, flag, metadata)

        bill = self.store.rewrite_bill_data(bill_id, apply)
        names, flag = bill.unmatched_names, bill.has_unmatched_horses
        logger.info(
            "Resolved '%s' -> %s %d on bill %d (%d item(s), %d name(s) left)",
            raw_name,
            entity_type.value,
            entity.id,
            bill_id,
            len(rewritten),
            len(names),
        )

        alias = None
        try:
            alias = self.learner.learn(entity_type, raw_name, entity.id, entity.name)
        except InvalidAlias as e:
            logger.warning("Resolution applied without alias: %s", e)

        return ResolutionResult(
            bill_id=bill_id,
            entity_id=entity.id,
            entity_name=entity.name,
            rewritten_items=rewritten,
            unmatched_names=names,
            has_unmatched_horses=flag,
            alias=alias,
        )
