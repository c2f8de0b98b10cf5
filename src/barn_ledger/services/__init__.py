"""Bill parsing, manual resolution, alias learning and approval services."""

from barn_ledger.services.alias_learning import AliasLearner, assign_single_person
from barn_ledger.services.bill_parsing import BillParser, ParseOutcome, ParseReport, process_payload
from barn_ledger.services.reclassification import (
    ApprovalResult,
    ReclassificationService,
    plan_reclassification,
)
from barn_ledger.services.unmatched import (
    UnmatchedResolver,
    collect_unmatched_names,
    ensure_approvable,
)

__all__ = [
    "AliasLearner",
    "assign_single_person",
    "BillParser",
    "ParseOutcome",
    "ParseReport",
    "process_payload",
    "ApprovalResult",
    "ReclassificationService",
    "plan_reclassification",
    "UnmatchedResolver",
    "collect_unmatched_names",
    "ensure_approvable",
]
