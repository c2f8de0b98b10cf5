"""
Reclassification / split engine.

At approval time, line items of a stabling, show-expenses or feed-bedding
bill may be moved into derivative bills of other categories. Per item the
target is the human decision, else the advisory suggestion; "keep" or the
source category means the item stays.

Core Invariants:
- One derivative bill per non-empty target group, totalled as the rounded
  sum of its items' USD amounts.
- kept total + sum(derivative totals) == pre-split total (to the cent).
- Split and approval happen in one transaction, exactly once.
- A target category missing from the catalogue keeps its items on the
  source; approval of the remainder still completes.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Mapping, Optional

from ..categories import RECLASSIFIABLE_CATEGORIES
from ..errors import AlreadyApproved, BarnLedgerError
from ..schemas.amounts import ZERO, round2, sum_amounts
from ..schemas.bill import BillLink
from ..schemas.invoice import LineItem, NormalizedInvoice
from ..state_store.sqlite_store import DerivativeSpec
from .unmatched import ensure_approvable

if TYPE_CHECKING:
    from ..document_store import DocumentStore
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

KEEP = "keep"


@dataclass
class ReclassificationPlan:
    """Partition of an invoice's line items."""

    source_category: str
    kept: list[LineItem] = field(default_factory=list)
    # target category -> items, in first-seen order
    moved: dict[str, list[LineItem]] = field(default_factory=dict)

    @property
    def moved_count(self) -> int:
        return sum(len(items) for items in self.moved.values())


def _target(
    decision: Optional[str], suggestion: Optional[str], source_category: str
) -> Optional[str]:
    choice = decision or suggestion
    if not choice:
        return None
    choice = choice.strip().lower()
    if choice in (KEEP, source_category):
        return None
    return choice


def plan_reclassification(
    invoice: NormalizedInvoice,
    source_category: str,
    decisions: Mapping[int, Optional[str]] | None = None,
) -> ReclassificationPlan:
    """Partition line items into kept and moved groups.

    Args:
        invoice: Parsed invoice of the source bill (not modified)
        source_category: Category slug of the source bill
        decisions: {line item index: category slug | "keep" | None}

    Returns:
        ReclassificationPlan; moved items carry reclassified=True and their
        confirmed_category
    """
    decisions = decisions or {}
    plan = ReclassificationPlan(source_category=source_category)
    for index, original in enumerate(invoice.line_items):
        item = copy.deepcopy(original)
        decision = decisions.get(index)
        target = _target(decision, item.suggested_category, source_category)
        if target is None:
            if decision:
                item.confirmed_category = source_category
            plan.kept.append(item)
            continue
        item.reclassified = True
        item.confirmed_category = target
        plan.moved.setdefault(target, []).append(item)
    return plan


def derivative_invoice(source: NormalizedInvoice, items: list[LineItem]) -> NormalizedInvoice:
    """Invoice for one derivative bill: source header, subset of items."""
    derivative = source.copy()
    derivative.line_items = items
    derivative.invoice_total_usd = sum_amounts([item.amount_usd for item in items])
    originals = [item.amount_original for item in items]
    derivative.original_total = (
        sum_amounts(originals) if all(value is not None for value in originals) else None
    )
    derivative.stated_total = None
    return derivative


@dataclass
class ApprovalResult:
    """Outcome of an approval."""

    bill_id: int
    links: list[BillLink]
    kept_total: Optional[Decimal]
    skipped_categories: list[str] = field(default_factory=list)

    @property
    def derivative_ids(self) -> list[int]:
        return [link.derivative_bill_id for link in self.links]


class ReclassificationService:
    """Approval with cross-category split, and cascading bill deletion."""

    def __init__(self, state_store: StateStore, document_store: Optional[DocumentStore] = None):
        self.store = state_store
        self.documents = document_store

    def approve_with_reclassification(
        self,
        bill_id: int,
        decisions: Mapping[int, Optional[str]] | None = None,
    ) -> ApprovalResult:
        """
        Approve a bill, splitting moved items into derivative bills.

        Bills outside the reclassifiable categories are approved as is.

        Raises:
            BillNotFound: No such bill
            AlreadyApproved: The bill was approved before
            UnresolvedEntities: Horse names still unmatched
        """
        bill = self.store.get_bill(bill_id)
        if bill.is_approved:
            raise AlreadyApproved(f"Bill {bill_id} is already approved")
        ensure_approvable(bill)

        invoice = bill.invoice
        if bill.category not in RECLASSIFIABLE_CATEGORIES or invoice is None:
            self.store.approve_bill(bill_id)
            total = invoice.invoice_total_usd if invoice else None
            logger.info("Approved bill %d without reclassification", bill_id)
            return ApprovalResult(bill_id=bill_id, links=[], kept_total=total)

        plan = plan_reclassification(invoice, bill.category, decisions)

        skipped: list[str] = []
        for category in list(plan.moved):
            if not self.store.category_exists(category):
                logger.warning(
                    "Unknown target category '%s' on bill %d, keeping %d item(s)",
                    category,
                    bill_id,
                    len(plan.moved[category]),
                )
                for item in plan.moved.pop(category):
                    item.reclassified = False
                    item.confirmed_category = None
                    plan.kept.append(item)
                skipped.append(category)

        specs = []
        for category, items in plan.moved.items():
            derivative = derivative_invoice(invoice, items)
            specs.append(
                DerivativeSpec(
                    category=category,
                    extracted_data=derivative.to_dict(),
                    amount=derivative.invoice_total_usd,
                    item_count=len(items),
                )
            )

        kept_invoice = invoice.copy()
        kept_invoice.line_items = plan.kept
        moved_total = sum_amounts([spec.amount for spec in specs])
        pre_split_total = invoice.invoice_total_usd
        if specs and pre_split_total is not None:
            # Any unitemized remainder of the stated total stays on the source
            kept_invoice.invoice_total_usd = round2(pre_split_total - moved_total)
        elif specs:
            kept_invoice.invoice_total_usd = kept_invoice.line_items_total_usd()
        if specs and invoice.original_total is not None:
            moved_original = sum_amounts(
                [
                    item.amount_original or ZERO
                    for items in plan.moved.values()
                    for item in items
                ]
            )
            kept_invoice.original_total = round2(invoice.original_total - moved_original)

        links = self.store.apply_reclassification(bill_id, kept_invoice.to_dict(), specs)
        logger.info(
            "Approved bill %d: %d item(s) kept, %d derivative bill(s) created",
            bill_id,
            len(plan.kept),
            len(links),
        )
        return ApprovalResult(
            bill_id=bill_id,
            links=links,
            kept_total=kept_invoice.invoice_total_usd,
            skipped_categories=skipped,
        )

    def delete_bill(self, bill_id: int) -> list[str]:
        """
        Delete a bill and its derivatives, then their stored documents.

        Returns:
            File references removed

        Raises:
            BillNotFound: No such bill
        """
        refs = self.store.delete_bill(bill_id)
        if self.documents is not None:
            for ref in refs:
                try:
                    self.documents.delete(ref)
                except OSError as e:
                    raise BarnLedgerError(
                        f"Bill {bill_id} deleted but document {ref} was not: {e}"
                    ) from e
        return refs
