"""Tests for category-specific classification rules."""

from decimal import Decimal

import pytest

from barn_ledger.classification import (
    RuleContext,
    apply_category_rules,
    build_category_metadata,
    derive_subcategory,
    detect_horse_names,
    feed_subcategory,
    initial_status,
    looks_like_legal_entity,
    provider_contact_patch,
    rules_for,
    strip_names,
    suggest_category,
)
from barn_ledger.classification.base import CategoryRules
from barn_ledger.normalization import convert_to_usd, normalize_payload
from barn_ledger.schemas.amounts import round2
from barn_ledger.schemas.bill import BillStatus
from barn_ledger.schemas.invoice import LineItem, NormalizedInvoice, ProviderContact
from barn_ledger.schemas.registry import Provider

BODYWORK_HORSES = ("Ben", "Zigarette", "Coopers Hill", "Numero Valentina")


def bodywork_invoice(*items: tuple[str, str]) -> NormalizedInvoice:
    return NormalizedInvoice(
        line_items=[
            LineItem(description=desc, amount_usd=Decimal(amount), amount_original=Decimal(amount))
            for desc, amount in items
        ]
    )


class TestRulesRegistry:
    """Tests for slug -> rules lookup."""

    @pytest.mark.parametrize(
        "slug", ["feed-bedding", "bodywork", "travel", "stabling", "show-expenses"]
    )
    def test_dedicated_rules(self, slug):
        assert rules_for(slug).slug == slug

    def test_pass_through_for_other_categories(self):
        rules = rules_for("marketing")
        assert type(rules) is CategoryRules

    def test_pipeline_does_not_mutate_input(self):
        invoice = bodywork_invoice(("Massage Ben & Zigarette", "100.00"))
        context = RuleContext(bodywork_horse_names=BODYWORK_HORSES)
        apply_category_rules("bodywork", invoice, context)
        assert len(invoice.line_items) == 1


class TestBodyworkRules:
    """Tests for multi-horse bodywork lines."""

    @pytest.fixture
    def context(self):
        return RuleContext(bodywork_horse_names=BODYWORK_HORSES)

    def test_two_horses_split_evenly(self, context):
        result = apply_category_rules(
            "bodywork", bodywork_invoice(("Massage - Ben & Zigarette", "100.00")), context
        )

        assert [item.horse_name_raw for item in result.line_items] == ["Ben", "Zigarette"]
        assert [item.amount_usd for item in result.line_items] == [
            Decimal("50.00"),
            Decimal("50.00"),
        ]
        assert all(item.description == "Massage" for item in result.line_items)

    def test_odd_total_remainder(self, context):
        result = apply_category_rules(
            "bodywork", bodywork_invoice(("Ben and Zigarette massage", "100.01")), context
        )

        amounts = [item.amount_usd for item in result.line_items]
        assert amounts == [Decimal("50.00"), Decimal("50.01")]
        assert sum(amounts) == Decimal("100.01")

    def test_original_amounts_split_too(self, context):
        result = apply_category_rules(
            "bodywork", bodywork_invoice(("Ben, Zigarette, Coopers Hill", "100.00")), context
        )
        originals = [item.amount_original for item in result.line_items]
        assert sum(originals) == Decimal("100.00")
        assert len(result.line_items) == 3

    def test_converted_splits_use_the_rate(self, context):
        """Each USD share is its own GBP share converted, not a USD re-split."""
        invoice = NormalizedInvoice(
            original_currency="GBP",
            original_total=Decimal("100.00"),
            line_items=[
                LineItem(
                    description="Massage Ben, Zigarette, Coopers Hill",
                    amount_original=Decimal("100.00"),
                )
            ],
        )
        converted = convert_to_usd(invoice)
        assert converted.line_items[0].amount_usd == Decimal("126.00")

        result = apply_category_rules("bodywork", converted, context)

        originals = [item.amount_original for item in result.line_items]
        usd = [item.amount_usd for item in result.line_items]
        assert originals == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert usd == [Decimal("42.00"), Decimal("42.00"), Decimal("42.01")]
        for item in result.line_items:
            assert item.amount_usd == round2(item.amount_original * Decimal("1.26"))

    def test_usd_invoice_split_unchanged_by_rate(self, context):
        invoice = convert_to_usd(bodywork_invoice(("Ben and Zigarette massage", "100.01")))
        result = apply_category_rules("bodywork", invoice, context)

        assert [item.amount_usd for item in result.line_items] == [
            Decimal("50.00"),
            Decimal("50.01"),
        ]
        assert [item.amount_original for item in result.line_items] == [
            Decimal("50.00"),
            Decimal("50.01"),
        ]

    def test_single_horse_rewritten_in_place(self, context):
        result = apply_category_rules(
            "bodywork", bodywork_invoice(("PEMF session (Coopers Hill)", "85.00")), context
        )

        assert len(result.line_items) == 1
        item = result.line_items[0]
        assert item.horse_name_raw == "Coopers Hill"
        assert item.description == "PEMF session"
        assert item.amount_usd == Decimal("85.00")

    def test_zero_amount_not_split(self, context):
        result = apply_category_rules(
            "bodywork", bodywork_invoice(("Ben & Zigarette (no charge)", "0.00")), context
        )
        assert len(result.line_items) == 1

    def test_no_dictionary_passes_through(self):
        invoice = bodywork_invoice(("Massage - Ben & Zigarette", "100.00"))
        result = apply_category_rules("bodywork", invoice, RuleContext())
        assert result.line_items[0].description == "Massage - Ben & Zigarette"

    def test_practitioner_name_replaces_company(self):
        invoice = NormalizedInvoice(
            provider_name="Equine Motion Therapy LLC",
            contact=ProviderContact(primary_contact_name="Sarah Whitfield"),
        )
        result = apply_category_rules("bodywork", invoice, RuleContext())
        assert result.provider_name == "Sarah Whitfield"

    def test_personal_provider_name_kept(self):
        invoice = NormalizedInvoice(
            provider_name="Sarah Whitfield",
            contact=ProviderContact(primary_contact_name="Front Desk"),
        )
        result = apply_category_rules("bodywork", invoice, RuleContext())
        assert result.provider_name == "Sarah Whitfield"


class TestBodyworkHelpers:
    """Tests for name detection and cleanup."""

    def test_longest_name_first(self):
        names = detect_horse_names("Cooper and Coopers Hill", ("Cooper", "Coopers Hill"))
        assert names == ["Cooper", "Coopers Hill"]

    def test_names_in_order_of_appearance(self):
        assert detect_horse_names("Zigarette then Ben", BODYWORK_HORSES) == ["Zigarette", "Ben"]

    def test_whole_words_only(self):
        assert detect_horse_names("Benadryl dose", BODYWORK_HORSES) == []

    def test_strip_names_default_description(self):
        assert strip_names("Ben & Zigarette", ["Ben", "Zigarette"]) == "Bodywork"

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Equine Motion LLC", True),
            ("Hoof & Co.", True),
            ("12345678 Ontario", True),
            ("Sarah Whitfield", False),
            (None, False),
        ],
    )
    def test_legal_entity(self, name, expected):
        assert looks_like_legal_entity(name) is expected


class TestFeedBeddingRules:
    """Tests for feed/bedding subcategories."""

    @pytest.mark.parametrize(
        "description,expected",
        [
            ("Pine shavings, 40 bags", "bedding"),
            ("Timothy hay", "feed"),
            ("Hay delivery", "feed"),
            ("Delivery charge", "admin"),
            ("Straw and pellets", "bedding"),
            ("Coffee", "feed"),
            ("Haylage, 10 bales", "feed"),
            ("Late fees", "admin"),
            ("Mystery item", "feed"),
        ],
    )
    def test_keyword_priority(self, description, expected):
        assert feed_subcategory(description) == expected

    def test_existing_subcategory_kept(self):
        invoice = NormalizedInvoice(
            line_items=[LineItem(description="Pine shavings", subcategory="Admin")]
        )
        result = apply_category_rules("feed-bedding", invoice)
        assert result.line_items[0].subcategory == "admin"

    def test_invalid_subcategory_replaced(self):
        invoice = NormalizedInvoice(
            line_items=[LineItem(description="Pine shavings", subcategory="misc")]
        )
        result = apply_category_rules("feed-bedding", invoice)
        assert result.line_items[0].subcategory == "bedding"


class TestReclassificationSuggestions:
    """Tests for advisory target categories."""

    @pytest.mark.parametrize(
        "description,expected",
        [
            ("Farrier reset", "farrier"),
            ("Vet call, sedation", "veterinary"),
            ("Fly spray", "supplies"),
            ("Shavings (10 bags)", "feed-bedding"),
            ("Monthly board", "stabling"),
            ("Braiding", "stabling"),
        ],
    )
    def test_buckets(self, description, expected):
        assert suggest_category(description, "stabling") == expected

    def test_farrier_beats_veterinary(self):
        assert suggest_category("Farrier and vet exam", "show-expenses") == "farrier"

    @pytest.mark.parametrize(
        "description,expected",
        [
            ("Vetwrap x 12", "supplies"),
            ("Vetting in", "stabling"),
            ("Vet call", "veterinary"),
            ("Vets on call", "veterinary"),
            ("Vet's emergency visit", "veterinary"),
        ],
    )
    def test_short_keywords_match_whole_words(self, description, expected):
        """Short keywords such as vet only match as whole words."""
        assert suggest_category(description, "stabling") == expected

    def test_existing_suggestion_kept(self, sample_stabling_payload):
        invoice = normalize_payload(sample_stabling_payload)
        invoice.line_items[1].suggested_category = "supplies"
        result = apply_category_rules("stabling", invoice)

        suggestions = [item.suggested_category for item in result.line_items]
        assert suggestions == ["stabling", "supplies", "feed-bedding"]

    def test_other_categories_get_no_suggestions(self, sample_vet_payload):
        result = apply_category_rules("veterinary", normalize_payload(sample_vet_payload))
        assert all(item.suggested_category is None for item in result.line_items)


class TestTravelRules:
    """Tests for rental-car enrichment."""

    def test_rental_forced_to_usd(self, sample_rental_payload):
        converted = convert_to_usd(normalize_payload(sample_rental_payload))
        assert converted.invoice_total_usd == Decimal("445.50")

        result = apply_category_rules("travel", converted, RuleContext())

        assert result.original_currency == "USD"
        assert result.exchange_rate == Decimal("1")
        assert result.invoice_total_usd == Decimal("412.50")
        assert [item.amount_usd for item in result.line_items] == [
            Decimal("380.00"),
            Decimal("32.50"),
        ]

    def test_driver_becomes_person(self, sample_rental_payload):
        invoice = convert_to_usd(normalize_payload(sample_rental_payload))
        result = apply_category_rules("travel", invoice, RuleContext())

        assert result.suggested_person_name == "Lucy Davis"
        assert all(item.person_name_raw == "Lucy Davis" for item in result.line_items)
        assert result.subcategory == "rental-car"

    def test_rental_detected_by_fields(self):
        invoice = normalize_payload(
            {"provider_name": "Local Garage", "rental_agreement_number": "R-1", "driver": "Jo"}
        )
        result = apply_category_rules("travel", convert_to_usd(invoice), RuleContext())
        assert result.suggested_person_name == "Jo"

    def test_non_rental_untouched(self):
        invoice = convert_to_usd(
            normalize_payload({"provider_name": "Delta Air Lines", "currency": "EUR", "total": 100})
        )
        result = apply_category_rules("travel", invoice, RuleContext())
        assert result.invoice_total_usd == Decimal("108.00")
        assert result.subcategory is None


class TestCategoryMetadata:
    """Tests for metadata stored beside a parsed bill."""

    def test_travel_subcategory_from_invoice(self):
        invoice = NormalizedInvoice(subcategory="Rental Car")
        assert derive_subcategory("travel", invoice, "hertz") == "rental-car"

    def test_travel_subcategory_from_extras(self):
        invoice = NormalizedInvoice(extras={"travel_subcategory": "flights"})
        assert build_category_metadata("travel", invoice) == {"subcategory": "flights"}

    def test_subcategory_from_provider_slug(self):
        assert derive_subcategory("housing", NormalizedInvoice(), "groom-housing") == "groom-housing"

    def test_subcategory_falls_back_to_category(self):
        assert derive_subcategory("housing", NormalizedInvoice(), "airbnb") == "housing"

    def test_stabling_assignment_scaffolding(self, sample_stabling_payload):
        metadata = build_category_metadata("stabling", normalize_payload(sample_stabling_payload))

        assert metadata["split_line_items"] == []
        assert [slot["line_item_index"] for slot in metadata["horse_assignments"]] == [0, 1, 2]
        assert metadata["horse_assignments"][0]["horse_name"] == "Ben"

    def test_other_categories_have_no_metadata(self):
        assert build_category_metadata("farrier", NormalizedInvoice()) == {}

    @pytest.mark.parametrize(
        "slug,status",
        [
            ("travel", BillStatus.PENDING),
            ("housing", BillStatus.PENDING),
            ("stabling", BillStatus.PENDING),
            ("veterinary", BillStatus.DONE),
            ("feed-bedding", BillStatus.DONE),
        ],
    )
    def test_initial_status(self, slug, status):
        assert initial_status(slug) == status


class TestProviderContactPatch:
    """Tests for provider contact discovery."""

    def test_fills_only_missing_fields(self):
        provider = Provider(id=1, slug="dr-ross", name="Dr Ross", phone="555-0000")
        invoice = NormalizedInvoice(
            contact=ProviderContact(full_name="Dr. Amy Ross DVM", phone="555-0100", email="a@b.c")
        )
        assert provider_contact_patch(provider, invoice) == {
            "full_name": "Dr. Amy Ross DVM",
            "email": "a@b.c",
        }

    def test_known_provider_not_patched(self):
        provider = Provider(id=1, slug="dr-ross", name="Dr Ross", full_name="Amy Ross")
        invoice = NormalizedInvoice(contact=ProviderContact(email="a@b.c"))
        assert provider_contact_patch(provider, invoice) is None

    def test_nothing_discovered(self):
        provider = Provider(id=1, slug="dr-ross", name="Dr Ross")
        assert provider_contact_patch(provider, NormalizedInvoice()) is None

    def test_no_provider(self):
        assert provider_contact_patch(None, NormalizedInvoice()) is None
