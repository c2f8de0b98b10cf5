"""
Bill parsing pipeline.

One parse is one unit of work:

    fetch document -> extraction call -> normalize -> required fields
    -> USD conversion -> category rules -> entity matching
    -> unmatched tracking -> one atomic save

The registry snapshot is read once at the start of each parse. Any failure
moves the bill to "error" with the exception message stored verbatim and
re-raises; nothing partial is written. Re-parsing is a full re-run.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from ..classification import (
    RuleContext,
    apply_category_rules,
    build_category_metadata,
    initial_status,
    provider_contact_patch,
)
from ..errors import MissingExpectedField
from ..extraction_client import build_prompt
from ..matching import EntityMatcher, InvoiceMatcher
from ..normalization import convert_to_usd, find_missing_fields, normalize_payload
from ..schemas.bill import BillStatus
from ..schemas.invoice import NormalizedInvoice
from ..schemas.registry import EntityType, Provider, RegistrySnapshot
from .unmatched import unmatched_for_category

if TYPE_CHECKING:
    from ..config import Config
    from ..document_store import DocumentStore
    from ..extraction_client import ExtractionClient
    from ..state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class ParseOutcome:
    """Everything a successful parse writes back to the bill."""

    invoice: NormalizedInvoice
    unmatched_names: list[str]
    has_unmatched_horses: bool
    metadata: dict[str, Any]
    status: BillStatus
    provider_patch: Optional[dict[str, str]] = None


@dataclass
class ParseReport:
    """Per-bill result of a batch parse."""

    bill_id: int
    status: BillStatus
    error: Optional[str] = None
    unmatched_names: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None


def process_payload(
    raw: dict[str, Any],
    category_slug: str,
    provider: Optional[Provider],
    registry: RegistrySnapshot,
    config: Config,
) -> ParseOutcome:
    """
    Run the synchronous part of the pipeline on an extraction payload.

    Args:
        raw: JSON object returned by the extraction call
        category_slug: Category of the bill being parsed
        provider: Provider record of the bill, if any
        registry: Snapshot of active entities and learned aliases
        config: Application configuration

    Returns:
        ParseOutcome ready to be saved

    Raises:
        MissingExpectedField: A provider-declared field is absent
        MissingExchangeRate: Non-USD currency without any rate
        MissingOriginalTotal: Non-USD invoice without an original total
    """
    invoice = normalize_payload(raw)

    if provider is not None and provider.expected_fields:
        missing = find_missing_fields(raw, invoice, provider.expected_fields)
        if missing:
            raise MissingExpectedField(missing)

    invoice = convert_to_usd(invoice, config.currency.rate_table())

    bodywork_names = config.matching.bodywork_horse_names or [
        horse.name for horse in registry.entities(EntityType.HORSE)
    ]
    context = RuleContext(
        provider_slug=provider.slug if provider else None,
        provider_name=provider.name if provider else None,
        bodywork_horse_names=tuple(bodywork_names),
        rental_signatures=tuple(config.matching.rental_signatures),
    )
    invoice = apply_category_rules(category_slug, invoice, context)

    matcher = InvoiceMatcher(
        horse_matcher=EntityMatcher(EntityType.HORSE, config.matching.horse_aliases),
        person_matcher=EntityMatcher(EntityType.PERSON, config.matching.person_aliases),
    )
    invoice = matcher.match_invoice(invoice, category_slug, registry)

    names, flag = unmatched_for_category(invoice, category_slug)
    provider_key = provider.slug if provider else invoice.provider_name
    return ParseOutcome(
        invoice=invoice,
        unmatched_names=names,
        has_unmatched_horses=flag,
        metadata=build_category_metadata(category_slug, invoice, provider_key),
        status=initial_status(category_slug),
        provider_patch=provider_contact_patch(provider, invoice),
    )


class BillParser:
    """Parses stored bills through the extraction service and the engine."""

    def __init__(
        self,
        state_store: StateStore,
        document_store: DocumentStore,
        extraction_client: ExtractionClient,
        config: Config,
    ) -> None:
        self.store = state_store
        self.documents = document_store
        self.extraction = extraction_client
        self.config = config

    def parse_bill(self, bill_id: int) -> ParseOutcome:
        """
        Parse one bill and persist the result.

        Raises:
            BillNotFound: No such bill (the bill is not touched)
            ParseError: Any parse-time failure, after the bill was moved to
                "error" with the message stored
        """
        bill = self.store.get_bill(bill_id)
        self.store.set_bill_status(bill_id, BillStatus.PARSING)
        logger.info("Parsing bill %d (%s)", bill_id, bill.category)

        try:
            registry = self.store.registry_snapshot()
            provider = self.store.get_provider(bill.provider_slug)
            document = self.documents.fetch(bill.file_ref)
            prompt = build_prompt(
                provider.extraction_prompt if provider else None, bill.category
            )
            logger.debug("Prompt for bill %d: %s", bill_id, prompt)
            raw = self.extraction.extract(document, prompt)

            outcome = process_payload(raw, bill.category, provider, registry, self.config)

            patch = None
            if provider is not None and outcome.provider_patch:
                patch = (provider.id, outcome.provider_patch)
            self.store.save_parse_result(
                bill_id,
                outcome.invoice.to_dict(),
                unmatched_names=outcome.unmatched_names,
                has_unmatched_horses=outcome.has_unmatched_horses,
                metadata=outcome.metadata,
                status=outcome.status,
                provider_patch=patch,
            )
        except Exception as e:
            logger.error("Failed to parse bill %d: %s", bill_id, e)
            self.store.mark_bill_error(bill_id, str(e))
            raise

        logger.info(
            "Parsed bill %d: %d line item(s), total %s USD, %d unmatched, status %s",
            bill_id,
            len(outcome.invoice.line_items),
            outcome.invoice.invoice_total_usd,
            len(outcome.unmatched_names),
            outcome.status.value,
        )
        return outcome

    def _report(self, bill_id: int) -> ParseReport:
        try:
            outcome = self.parse_bill(bill_id)
        except Exception as e:
            return ParseReport(bill_id=bill_id, status=BillStatus.ERROR, error=str(e))
        return ParseReport(
            bill_id=bill_id,
            status=outcome.status,
            unmatched_names=outcome.unmatched_names,
        )

    def parse_bills(self, bill_ids: list[int], max_workers: int | None = None) -> list[ParseReport]:
        """
        Parse independent bills concurrently.

        A failing bill does not stop the others; its report carries the
        error message. Reports are returned in the order of bill_ids.
        """
        workers = max_workers or self.config.parsing.max_workers
        reports: dict[int, ParseReport] = {}
        with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
            futures = {executor.submit(self._report, bill_id): bill_id for bill_id in bill_ids}
            for future in as_completed(futures):
                report = future.result()
                reports[report.bill_id] = report

        failed = sum(1 for report in reports.values() if not report.success)
        logger.info("Parsed %d bill(s), %d failed", len(reports), failed)
        return [reports[bill_id] for bill_id in bill_ids]
