"""Tests for the bill parsing pipeline."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from barn_ledger.errors import (
    BillNotFound,
    DocumentFetchFailure,
    MissingExpectedField,
    ModelResponseMalformed,
)
from barn_ledger.extraction_client import STRICT_JSON_SUFFIX
from barn_ledger.schemas.bill import BillStatus
from barn_ledger.schemas.invoice import MatchConfidence
from barn_ledger.services import BillParser, process_payload


class TestProcessPayload:
    """Tests for the synchronous pipeline steps."""

    def test_gbp_invoice_converted(self, store, registry, config, sample_gbp_payload):
        outcome = process_payload(
            sample_gbp_payload, "stabling", None, store.registry_snapshot(), config
        )

        invoice = outcome.invoice
        assert invoice.invoice_total_usd == Decimal("406.74")
        assert invoice.original_currency == "GBP"
        assert [item.horse_id for item in invoice.line_items] == [registry["Coopers Hill"].id] * 2
        assert outcome.status is BillStatus.PENDING
        assert outcome.metadata["horse_assignments"][0]["horse_id"] == registry["Coopers Hill"].id

    def test_vet_invoice_matched(self, store, registry, config, sample_vet_payload):
        outcome = process_payload(
            sample_vet_payload, "veterinary", None, store.registry_snapshot(), config
        )

        confidences = [item.horse_match_confidence for item in outcome.invoice.line_items]
        assert confidences == [MatchConfidence.EXACT, MatchConfidence.ALIAS, MatchConfidence.EXACT]
        assert outcome.unmatched_names == []
        assert outcome.has_unmatched_horses is False
        assert outcome.status is BillStatus.DONE
        assert outcome.invoice.invoice_total_usd == Decimal("1240.00")

    def test_unknown_horse_flagged(self, store, registry, config):
        payload = {"line_items": [{"description": "Exam", "horse": "Lingo", "amount": 90}]}
        outcome = process_payload(payload, "veterinary", None, store.registry_snapshot(), config)

        assert outcome.unmatched_names == ["Lingo"]
        assert outcome.has_unmatched_horses is True

    def test_expected_fields_enforced(self, store, config):
        provider = store.upsert_provider(
            "dr-ross", "Dr Ross", "veterinary", expected_fields=["invoice_number", "horse_name"]
        )
        payload = {"line_items": [{"description": "Exam", "amount": 90}]}

        with pytest.raises(MissingExpectedField) as exc_info:
            process_payload(payload, "veterinary", provider, store.registry_snapshot(), config)
        assert exc_info.value.fields == ["invoice_number", "horse_name"]

    def test_provider_contact_patch(self, store, config, sample_vet_payload):
        provider = store.upsert_provider("wellington", "Wellington", "veterinary")
        outcome = process_payload(
            sample_vet_payload, "veterinary", provider, store.registry_snapshot(), config
        )
        assert outcome.provider_patch == {"full_name": "Wellington Equine Associates"}


class TestBillParser:
    """Tests for parsing stored bills end to end."""

    @pytest.fixture
    def documents(self, sample_pdf_bytes):
        documents = MagicMock()
        documents.fetch.return_value = sample_pdf_bytes
        return documents

    @pytest.fixture
    def extraction(self, sample_vet_payload):
        extraction = MagicMock()
        extraction.extract.return_value = sample_vet_payload
        return extraction

    @pytest.fixture
    def parser(self, store, documents, extraction, config):
        return BillParser(store, documents, extraction, config)

    def test_successful_parse_saved(self, store, registry, parser, documents, extraction):
        store.upsert_provider("wellington", "Wellington", "veterinary")
        bill = store.create_bill("veterinary", provider_slug="wellington", file_ref="vet.pdf")

        outcome = parser.parse_bill(bill.id)

        saved = store.get_bill(bill.id)
        assert saved.status is BillStatus.DONE
        assert saved.error_message is None
        assert saved.invoice.invoice_total_usd == Decimal("1240.00")
        assert saved.unmatched_names == outcome.unmatched_names == []
        assert store.get_provider("wellington").full_name == "Wellington Equine Associates"
        documents.fetch.assert_called_once_with("vet.pdf")

        document, prompt = extraction.extract.call_args.args
        assert document.startswith(b"%PDF")
        assert prompt.endswith(STRICT_JSON_SUFFIX)
        assert "patient" in prompt

    def test_provider_prompt_used(self, store, registry, parser, extraction):
        store.upsert_provider(
            "dr-ross", "Dr Ross", "veterinary", extraction_prompt="Read the Ross invoice."
        )
        bill = store.create_bill("veterinary", provider_slug="dr-ross", file_ref="vet.pdf")

        parser.parse_bill(bill.id)

        prompt = extraction.extract.call_args.args[1]
        assert prompt == f"Read the Ross invoice.\n\n{STRICT_JSON_SUFFIX}"

    def test_failure_moves_bill_to_error(self, store, parser, documents):
        documents.fetch.side_effect = DocumentFetchFailure("PDF file not found in storage")
        bill = store.create_bill("veterinary")

        with pytest.raises(DocumentFetchFailure):
            parser.parse_bill(bill.id)

        failed = store.get_bill(bill.id)
        assert failed.status is BillStatus.ERROR
        assert failed.error_message == "PDF file not found in storage"
        assert failed.extracted_data is None

    def test_failure_keeps_previous_parse(self, store, registry, parser, extraction):
        bill = store.create_bill("veterinary", file_ref="vet.pdf")
        parser.parse_bill(bill.id)

        extraction.extract.side_effect = ModelResponseMalformed("Extraction response had no text payload")
        with pytest.raises(ModelResponseMalformed):
            parser.parse_bill(bill.id)

        failed = store.get_bill(bill.id)
        assert failed.status is BillStatus.ERROR
        assert failed.invoice.invoice_total_usd == Decimal("1240.00")

    def test_missing_field_error_message(self, store, parser, extraction):
        store.upsert_provider("dr-ross", "Dr Ross", "veterinary", expected_fields=["due_date"])
        bill = store.create_bill("veterinary", provider_slug="dr-ross", file_ref="vet.pdf")

        with pytest.raises(MissingExpectedField):
            parser.parse_bill(bill.id)
        assert store.get_bill(bill.id).error_message == "Missing expected parsed fields: due_date"

    def test_missing_bill_untouched(self, parser, extraction):
        with pytest.raises(BillNotFound):
            parser.parse_bill(999)
        extraction.extract.assert_not_called()

    def test_parse_bills_isolates_failures(self, store, registry, parser, documents, sample_pdf_bytes):
        def fetch(ref):
            if ref == "missing.pdf":
                raise DocumentFetchFailure("PDF file not found in storage: missing.pdf")
            return sample_pdf_bytes

        documents.fetch.side_effect = fetch
        first = store.create_bill("veterinary", file_ref="a.pdf")
        broken = store.create_bill("veterinary", file_ref="missing.pdf")
        last = store.create_bill("farrier", file_ref="b.pdf")

        reports = parser.parse_bills([first.id, broken.id, last.id], max_workers=2)

        assert [report.bill_id for report in reports] == [first.id, broken.id, last.id]
        assert [report.success for report in reports] == [True, False, True]
        assert reports[1].status is BillStatus.ERROR
        assert "missing.pdf" in reports[1].error
        assert store.get_bill(last.id).status is BillStatus.DONE
