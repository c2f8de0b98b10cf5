"""Tests for state store."""

import sqlite3
from decimal import Decimal

import pytest

from barn_ledger.errors import AlreadyApproved, BillNotFound, EntityNotFound
from barn_ledger.schemas.bill import BillStatus
from barn_ledger.schemas.registry import EntityType
from barn_ledger.state_store import BillDataUpdate, DerivativeSpec, StateStore
from barn_ledger.state_store.migrations import MigrationRunner, get_all_migrations


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = {t[0] for t in tables}
        finally:
            conn.close()

        assert {
            "categories",
            "providers",
            "horses",
            "people",
            "horse_aliases",
            "person_aliases",
            "bills",
            "bill_links",
            "migrations",
        } <= table_names

    def test_reopen_is_idempotent(self, store, temp_db):
        store.add_horse("Ben")
        reopened = StateStore(temp_db)
        assert [h.name for h in reopened.list_horses()] == ["Ben"]

    def test_seed_categories_once(self, store):
        assert store.seed_categories({"farrier": "Farrier"}) == 0
        assert store.category_exists("farrier")
        assert not store.category_exists("space-travel")


class TestMigrations:
    """Tests for the migration runner."""

    def test_migrations_discovered(self):
        migrations = get_all_migrations()
        assert [m.version for m in migrations] == [1]
        assert migrations[0].name == "bill_links"

    def test_applied_once(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            assert runner.current_version() == 1
            assert runner.pending() == []
            assert runner.run_pending() == []
        finally:
            conn.close()

    def test_revert_and_reapply(self, temp_db):
        StateStore(temp_db)
        conn = sqlite3.connect(str(temp_db))
        try:
            runner = MigrationRunner(conn)
            assert runner.revert_to(0) == [1]
            assert runner.current_version() == 0
            assert runner.run_pending() == [1]
        finally:
            conn.close()


class TestRegistry:
    """Tests for horses, people and aliases."""

    def test_add_and_get_horse(self, store):
        horse = store.add_horse("  Coopers Hill ")
        assert horse.name == "Coopers Hill"
        assert store.get_horse(horse.id) == horse

    def test_active_only(self, store):
        store.add_horse("Ben")
        store.add_horse("Old Timer", status="retired")
        store.add_person("Former Groom", role="groom", is_active=False)
        assert [h.name for h in store.list_horses(active_only=True)] == ["Ben"]
        assert store.list_people(active_only=True) == []

    def test_get_entity_missing(self, store):
        with pytest.raises(EntityNotFound):
            store.get_entity(EntityType.PERSON, 999)

    def test_alias_upsert_last_write_wins(self, store):
        ben = store.add_horse("Ben")
        ziggy = store.add_horse("Zigarette")
        store.upsert_alias(EntityType.HORSE, "benny", ben.id, ben.name)
        store.upsert_alias(EntityType.HORSE, "benny", ziggy.id, ziggy.name)

        aliases = store.list_aliases(EntityType.HORSE)
        assert len(aliases) == 1
        assert aliases[0].canonical_entity_id == ziggy.id

    def test_alias_namespaces_separate(self, store):
        ben = store.add_horse("Ben")
        store.upsert_alias(EntityType.HORSE, "benny", ben.id, ben.name)
        assert store.get_alias(EntityType.PERSON, "benny") is None

    def test_registry_snapshot(self, store, registry):
        store.upsert_alias(EntityType.PERSON, "lucy d", registry["Lucy Davis Kennedy"].id, "Lucy Davis Kennedy")
        snapshot = store.registry_snapshot()

        assert len(snapshot.horses) == 4
        assert len(snapshot.people) == 2
        assert snapshot.person_aliases == {"lucy d": "Lucy Davis Kennedy"}
        assert snapshot.horse_aliases == {}


class TestProviders:
    """Tests for provider records."""

    def test_upsert_provider(self, store):
        store.upsert_provider("dr-ross", "Dr Ross", "veterinary", None, ["invoice_number"])
        provider = store.upsert_provider("dr-ross", "Dr Amy Ross", "veterinary")

        assert provider.name == "Dr Amy Ross"
        assert provider.expected_fields == []
        assert store.get_provider("dr-ross").id == provider.id

    def test_unknown_provider(self, store):
        assert store.get_provider("nobody") is None
        assert store.get_provider(None) is None


class TestBills:
    """Tests for bill lifecycle operations."""

    def test_create_and_get(self, store):
        bill = store.create_bill("veterinary", provider_slug="dr-ross", file_ref="a.pdf")
        assert bill.status is BillStatus.UPLOADING
        assert bill.extracted_data is None
        assert bill.invoice is None
        assert store.get_bill(bill.id).file_ref == "a.pdf"

    def test_unknown_category_rejected(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            store.create_bill("space-travel")

    def test_get_missing_bill(self, store):
        with pytest.raises(BillNotFound):
            store.get_bill(404)

    def test_save_parse_result_with_provider_patch(self, store):
        provider = store.upsert_provider("dr-ross", "Dr Ross")
        bill = store.create_bill("veterinary", provider_slug="dr-ross")
        store.save_parse_result(
            bill.id,
            {"invoice_number": "A1", "line_items": []},
            unmatched_names=["Stranger"],
            has_unmatched_horses=True,
            metadata={},
            status=BillStatus.DONE,
            provider_patch=(provider.id, {"email": "vet@example.com", "bogus": "x"}),
        )

        saved = store.get_bill(bill.id)
        assert saved.status is BillStatus.DONE
        assert saved.unmatched_names == ["Stranger"]
        assert saved.has_unmatched_horses is True
        assert store.get_provider("dr-ross").email == "vet@example.com"

    def test_mark_error_keeps_data_untouched(self, store):
        bill = store.create_bill("veterinary")
        store.mark_bill_error(bill.id, "PDF file not found in storage")

        failed = store.get_bill(bill.id)
        assert failed.status is BillStatus.ERROR
        assert failed.error_message == "PDF file not found in storage"
        assert failed.extracted_data is None

    def test_approve_once(self, store):
        bill = store.create_bill("farrier")
        store.approve_bill(bill.id)
        assert store.get_bill(bill.id).is_approved
        with pytest.raises(AlreadyApproved):
            store.approve_bill(bill.id)

    def test_apply_reclassification_links(self, store):
        source = store.create_bill("stabling", provider_slug="gp-stables", billing_period="2024-03")
        links = store.apply_reclassification(
            source.id,
            {"line_items": []},
            [DerivativeSpec("farrier", {"line_items": []}, Decimal("180.00"), 1)],
        )

        reloaded = store.get_bill(source.id)
        assert reloaded.is_approved
        assert reloaded.links == links
        derivative = store.get_bill(links[0].derivative_bill_id)
        assert derivative.source_bill_id == source.id
        assert derivative.category == "farrier"
        assert derivative.billing_period == "2024-03"
        assert derivative.metadata == {"reclassified_from": source.id}
        assert links[0].amount == Decimal("180.00")

    def test_rewrite_bill_data(self, store):
        bill = store.create_bill("travel")
        store.save_parse_result(
            bill.id, {"line_items": []}, ["Jo M"], False, {"subcategory": "flights"}, BillStatus.DONE
        )

        def add_note(current):
            assert current.unmatched_names == ["Jo M"]
            return BillDataUpdate({"line_items": [], "note": "checked"}, unmatched_names=[])

        written = store.rewrite_bill_data(bill.id, add_note)

        assert written.extracted_data["note"] == "checked"
        assert written.unmatched_names == []
        assert written.metadata == {"subcategory": "flights"}

    def test_rewrite_bill_data_failure_writes_nothing(self, store):
        bill = store.create_bill("travel")
        store.save_parse_result(bill.id, {"line_items": []}, ["Jo M"], False, {}, BillStatus.DONE)

        def fail(current):
            raise ValueError("no new data")

        with pytest.raises(ValueError):
            store.rewrite_bill_data(bill.id, fail)
        assert store.get_bill(bill.id).unmatched_names == ["Jo M"]

    def test_rewrite_missing_bill(self, store):
        with pytest.raises(BillNotFound):
            store.rewrite_bill_data(404, lambda current: BillDataUpdate({}))

    def test_stats(self, store):
        store.create_bill("farrier")
        stats = store.get_stats()
        assert stats["bills_by_status"] == {"uploading": 1}
        assert stats["bills_approved"] == 0
