"""
Alias learning writeback.

Human corrections become aliases so the next invoice spelling the name the
same way resolves at "alias" confidence.

Triggers:
- manual resolution of an unmatched name (services.unmatched)
- assigning a whole, non-split invoice to one person when the extracted
  top-level name differs from the canonical name

Core Invariants:
- alias keys are normalized (trim, lowercase, collapsed whitespace)
- keys shorter than 2 characters are rejected
- one key maps to one entity at a time; the last write wins
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..categories import is_person_based
from ..errors import BarnLedgerError, InvalidAlias, InvalidAssignment
from ..matching.engine import normalize_alias_key
from ..schemas.bill import Bill
from ..schemas.invoice import MatchConfidence, NormalizedInvoice
from ..schemas.registry import AliasRecord, EntityType
from ..state_store import BillDataUpdate, StateStore

logger = logging.getLogger(__name__)

MIN_ALIAS_LENGTH = 2


class AliasLearner:
    """Writes learned aliases to the state store."""

    def __init__(self, state_store: StateStore) -> None:
        self.store = state_store

    def learn(
        self,
        entity_type: EntityType,
        raw_name: Optional[str],
        entity_id: int,
        canonical_name: str,
    ) -> Optional[AliasRecord]:
        """Upsert an alias from raw text to a canonical entity.

        Args:
            entity_type: Alias namespace.
            raw_name: Text as it appeared on the invoice.
            entity_id: Canonical entity id.
            canonical_name: Canonical entity name.

        Returns:
            The stored record, or None when the raw text already is the
            canonical name.

        Raises:
            InvalidAlias: Normalized key shorter than 2 characters.
        """
        key = normalize_alias_key(raw_name)
        if len(key) < MIN_ALIAS_LENGTH:
            raise InvalidAlias(
                f"Alias '{raw_name}' is too short (minimum {MIN_ALIAS_LENGTH} characters)"
            )
        if key == normalize_alias_key(canonical_name):
            return None

        record = self.store.upsert_alias(entity_type, key, entity_id, canonical_name)
        logger.info("Learned %s alias '%s' -> %s", entity_type.value, key, canonical_name)
        return record


@dataclass
class PersonAssignment:
    """Result of assigning a whole invoice to one person."""

    bill_id: int
    person_id: int
    person_name: str
    alias: Optional[AliasRecord]


def assigned_person_ids(invoice: NormalizedInvoice) -> set[int]:
    """Distinct people the line items were assigned to by hand."""
    return {
        item.person_id
        for item in invoice.line_items
        if item.person_match_confidence is MatchConfidence.MANUAL and item.person_id is not None
    }


def assign_single_person(
    state_store: StateStore,
    bill_id: int,
    person_id: int,
    learner: Optional[AliasLearner] = None,
) -> PersonAssignment:
    """Assign every line item of a person-based bill to one person.

    The bill's unmatched person names are recomputed in the same write, so
    a fully assigned bill has none left. The extracted top-level person name
    is learned as an alias when it differs from the assigned person's name.

    Raises:
        BillNotFound: No such bill.
        EntityNotFound: No such person.
        InvalidAssignment: The category is not person-based, or the items
            are already split between several people.
        BarnLedgerError: The bill has not been parsed yet.
    """
    from .unmatched import unmatched_for_category

    learner = learner or AliasLearner(state_store)
    person = state_store.get_entity(EntityType.PERSON, person_id)
    extracted: list[Optional[str]] = []

    def assign(bill: Bill) -> BillDataUpdate:
        if not is_person_based(bill.category):
            raise InvalidAssignment(
                f"Bill {bill.id} is a {bill.category} bill; only person-based bills "
                "can be assigned to one person"
            )
        invoice = bill.invoice
        if invoice is None:
            raise BarnLedgerError(f"Bill {bill.id} has no extracted data to assign")
        split_between = assigned_person_ids(invoice)
        if len(split_between) > 1:
            raise InvalidAssignment(
                f"Bill {bill.id} is split between {len(split_between)} people"
            )

        extracted.append(invoice.suggested_person_name)
        person_key = normalize_alias_key(person.name)
        for item in invoice.line_items:
            if item.person_name_raw and normalize_alias_key(item.person_name_raw) != person_key:
                item.original_person_name = item.person_name_raw
            item.person_id = person.id
            item.person_name_matched = person.name
            item.person_match_confidence = MatchConfidence.MANUAL
        invoice.suggested_person_matched = person.name
        invoice.suggested_person_id = person.id
        invoice.suggested_person_confidence = MatchConfidence.MANUAL

        names, flag = unmatched_for_category(invoice, bill.category)
        metadata = dict(bill.metadata)
        metadata["assigned_person_id"] = person.id
        metadata["assigned_person_name"] = person.name
        return BillDataUpdate(invoice.to_dict(), names, flag, metadata)

    state_store.rewrite_bill_data(bill_id, assign)
    logger.info("Assigned bill %d to person %d '%s'", bill_id, person.id, person.name)

    extracted_name = extracted[0]
    alias = None
    if extracted_name:
        try:
            alias = learner.learn(EntityType.PERSON, extracted_name, person.id, person.name)
        except InvalidAlias as e:
            logger.warning("Not learning person alias for bill %d: %s", bill_id, e)

    return PersonAssignment(
        bill_id=bill_id, person_id=person.id, person_name=person.name, alias=alias
    )
