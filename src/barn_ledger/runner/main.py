"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..categories import CATEGORIES, is_known_category
from ..config import Config, create_default_config, load_config
from ..document_store import DocumentStore
from ..errors import BarnLedgerError
from ..extraction_client import ExtractionClient
from ..schemas.bill import BillStatus
from ..schemas.registry import PersonRole
from ..services import (
    BillParser,
    ReclassificationService,
    UnmatchedResolver,
    assign_single_person,
)
from ..services.reclassification import KEEP
from ..state_store import StateStore

logger = logging.getLogger(__name__)

SAMPLE_HORSES = ("Numero Valentina", "Ben", "Coopers Hill", "Zigarette")
SAMPLE_PEOPLE = (
    ("Lucy Davis Kennedy", PersonRole.RIDER.value),
    ("Charlotte Oakes", PersonRole.GROOM.value),
    ("Johanna Mattila", PersonRole.GROOM.value),
)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_decision(value: str) -> tuple[int, str]:
    """argparse type for --decision INDEX=CATEGORY|keep."""
    index, sep, target = value.partition("=")
    if not sep or not index.strip().isdigit() or not target.strip():
        raise argparse.ArgumentTypeError(f"expected INDEX=CATEGORY or INDEX=keep, got '{value}'")
    return int(index), target.strip().lower()


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="barn-ledger",
        description="Normalize, match and approve horse-business invoices",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    # seed command
    seed_parser = subparsers.add_parser("seed", help="Seed the category catalogue")
    seed_parser.add_argument(
        "--sample-registry",
        action="store_true",
        help="Also add sample horses and people when the registry is empty",
    )

    # add-horse command
    horse_parser = subparsers.add_parser("add-horse", help="Register a horse")
    horse_parser.add_argument("name", type=str)
    horse_parser.add_argument(
        "--inactive", action="store_true", help="Register as inactive (excluded from matching)"
    )

    # add-person command
    person_parser = subparsers.add_parser("add-person", help="Register a person")
    person_parser.add_argument("name", type=str)
    person_parser.add_argument(
        "--role",
        type=str,
        default=PersonRole.FREELANCE.value,
        choices=[role.value for role in PersonRole],
        help="Role (default: freelance)",
    )

    # add-provider command
    provider_parser = subparsers.add_parser("add-provider", help="Register or update a provider")
    provider_parser.add_argument("slug", type=str)
    provider_parser.add_argument("name", type=str)
    provider_parser.add_argument("--category", type=str, help="Default category slug")
    provider_parser.add_argument("--prompt", type=str, help="Provider-specific extraction prompt")
    provider_parser.add_argument(
        "--expected-field",
        dest="expected_fields",
        action="append",
        default=[],
        help="Field the extraction must return (repeatable)",
    )

    # add-bill command
    bill_parser = subparsers.add_parser("add-bill", help="Store a PDF and create a bill")
    bill_parser.add_argument("file", type=str, help="Local PDF path or http(s) URL")
    bill_parser.add_argument("--category", type=str, required=True, help="Category slug")
    bill_parser.add_argument("--provider", type=str, help="Provider slug")
    bill_parser.add_argument("--period", type=str, help="Billing period (e.g. 2024-03)")

    # parse command
    parse_parser = subparsers.add_parser("parse", help="Parse one or more bills")
    parse_parser.add_argument("bill_ids", type=int, nargs="+")
    parse_parser.add_argument(
        "--workers",
        type=int,
        help="Concurrent parses (default: parsing.max_workers)",
    )

    # unmatched command
    subparsers.add_parser("unmatched", help="List bills with unresolved names")

    # resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve an unmatched name on a bill")
    resolve_parser.add_argument("bill_id", type=int)
    resolve_parser.add_argument("raw_name", type=str, help="Name as it appears on the bill")
    resolve_parser.add_argument(
        "--person",
        action="store_true",
        help="Resolve a person name instead of a horse name",
    )
    target = resolve_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--horse-id", type=int, help="Existing horse to link")
    target.add_argument("--person-id", type=int, help="Existing person to link")
    target.add_argument("--create", type=str, metavar="NAME", help="Create a new entity")

    # assign-person command
    assign_parser = subparsers.add_parser(
        "assign-person", help="Assign every line item of a bill to one person"
    )
    assign_parser.add_argument("bill_id", type=int)
    assign_parser.add_argument("person_id", type=int)

    # approve command
    approve_parser = subparsers.add_parser(
        "approve", help="Approve a bill, moving items to other categories"
    )
    approve_parser.add_argument("bill_id", type=int)
    approve_parser.add_argument(
        "--decision",
        dest="decisions",
        type=parse_decision,
        action="append",
        default=[],
        help=f"Per line item: INDEX=CATEGORY or INDEX={KEEP} (repeatable)",
    )

    # show command
    show_parser = subparsers.add_parser("show", help="Print a bill as JSON")
    show_parser.add_argument("bill_id", type=int)

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a bill and its derivatives")
    delete_parser.add_argument("bill_id", type=int)

    # status command
    subparsers.add_parser("status", help="Show store statistics")

    return parser


def _document_store(config: Config) -> DocumentStore:
    return DocumentStore(
        root=config.documents.root,
        timeout=config.documents.timeout_seconds,
        max_retries=config.documents.max_retries,
    )


def cmd_init_config(config_path: Path) -> int:
    """Write a default configuration file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def cmd_seed(config: Config, sample_registry: bool) -> int:
    """Seed categories (and optionally a sample registry)."""
    store = StateStore(config.state_db_path)
    inserted = store.seed_categories(CATEGORIES)
    print(f"✓ {inserted} categor{'y' if inserted == 1 else 'ies'} added")

    if sample_registry:
        if store.list_horses() or store.list_people():
            print("  ⏭ Registry not empty, sample entities skipped")
        else:
            for name in SAMPLE_HORSES:
                store.add_horse(name)
            for name, role in SAMPLE_PEOPLE:
                store.add_person(name, role=role)
            print(f"✓ {len(SAMPLE_HORSES)} horses, {len(SAMPLE_PEOPLE)} people added")
    return 0


def cmd_add_horse(config: Config, name: str, inactive: bool) -> int:
    store = StateStore(config.state_db_path)
    horse = store.add_horse(name, status="inactive" if inactive else "active")
    print(f"✓ Horse [{horse.id}] {horse.name} ({horse.status})")
    return 0


def cmd_add_person(config: Config, name: str, role: str) -> int:
    store = StateStore(config.state_db_path)
    person = store.add_person(name, role=role)
    print(f"✓ Person [{person.id}] {person.name} ({person.role})")
    return 0


def cmd_add_provider(
    config: Config,
    slug: str,
    name: str,
    category: str | None,
    prompt: str | None,
    expected_fields: list[str],
) -> int:
    if category and not is_known_category(category):
        print(f"❌ Unknown category '{category}'")
        return 1
    store = StateStore(config.state_db_path)
    provider = store.upsert_provider(slug, name, category, prompt, expected_fields)
    print(f"✓ Provider [{provider.id}] {provider.slug}: {provider.name}")
    return 0


def cmd_add_bill(
    config: Config,
    file: str,
    category: str,
    provider_slug: str | None,
    period: str | None,
) -> int:
    """Store a document and create a bill for it."""
    store = StateStore(config.state_db_path)
    if not store.category_exists(category):
        print(f"❌ Unknown category '{category}' (run 'seed' first?)")
        return 1

    documents = _document_store(config)
    try:
        if file.startswith(("http://", "https://")):
            ref, file_name = file, file.rsplit("/", 1)[-1]
        else:
            source = Path(file)
            if not source.is_file():
                print(f"❌ File not found: {file}")
                return 1
            ref, file_name = documents.save(source), source.name
    finally:
        documents.close()

    bill = store.create_bill(
        category,
        provider_slug=provider_slug,
        file_ref=ref,
        file_name=file_name,
        billing_period=period,
        status=BillStatus.PENDING,
    )
    print(f"✓ Bill [{bill.id}] {bill.category} <- {file_name}")
    return 0


def cmd_parse(config: Config, bill_ids: list[int], workers: int | None) -> int:
    """Parse bills through the extraction service."""
    print(f"📊 Parsing {len(bill_ids)} bill(s)...")
    store = StateStore(config.state_db_path)
    documents = _document_store(config)
    try:
        with ExtractionClient(config.extraction) as client:
            parser = BillParser(store, documents, client, config)
            reports = parser.parse_bills(bill_ids, max_workers=workers)
    finally:
        documents.close()

    for report in reports:
        if report.success:
            line = f"  ✓ [{report.bill_id}] {report.status.value}"
            if report.unmatched_names:
                line += f" (unmatched: {', '.join(report.unmatched_names)})"
            print(line)
        else:
            print(f"  ❌ [{report.bill_id}] {report.error}")

    failed = sum(1 for report in reports if not report.success)
    print(f"\n✓ {len(reports) - failed} parsed, {failed} failed")
    return 1 if failed else 0


def cmd_unmatched(config: Config) -> int:
    """List bills that still carry unresolved names."""
    store = StateStore(config.state_db_path)
    count = 0
    for bill in store.list_bills():
        if not bill.unmatched_names:
            continue
        marker = "🐴" if bill.has_unmatched_horses else "👤"
        print(f"  {marker} [{bill.id}] {bill.category}: {', '.join(bill.unmatched_names)}")
        count += 1
    print(f"\n{count} bill(s) with unresolved names")
    return 0


def cmd_resolve(
    config: Config,
    bill_id: int,
    raw_name: str,
    person: bool,
    horse_id: int | None,
    person_id: int | None,
    create: str | None,
) -> int:
    """Resolve an unmatched name to an existing or new entity."""
    resolver = UnmatchedResolver(StateStore(config.state_db_path))
    if create:
        if person:
            result = resolver.resolve_person_with_new_entity(bill_id, raw_name, create)
        else:
            result = resolver.resolve_with_new_entity(bill_id, raw_name, create)
    elif person_id is not None:
        result = resolver.resolve_person_with_existing(bill_id, raw_name, person_id)
    elif horse_id is not None and not person:
        result = resolver.resolve_with_existing(bill_id, raw_name, horse_id)
    else:
        print("❌ Use --person-id to resolve a person name")
        return 1

    print(
        f"✓ '{raw_name}' -> [{result.entity_id}] {result.entity_name} "
        f"({len(result.rewritten_items)} item(s))"
    )
    if result.alias:
        print(f"  Learned alias '{result.alias.alias_key}'")
    if result.unmatched_names:
        print(f"  Still unmatched: {', '.join(result.unmatched_names)}")
    return 0


def cmd_assign_person(config: Config, bill_id: int, person_id: int) -> int:
    assignment = assign_single_person(StateStore(config.state_db_path), bill_id, person_id)
    print(f"✓ Bill [{bill_id}] assigned to {assignment.person_name}")
    if assignment.alias:
        print(f"  Learned alias '{assignment.alias.alias_key}'")
    return 0


def cmd_approve(config: Config, bill_id: int, decisions: list[tuple[int, str]]) -> int:
    """Approve a bill, splitting it where items were moved."""
    service = ReclassificationService(StateStore(config.state_db_path))
    result = service.approve_with_reclassification(bill_id, dict(decisions))

    print(f"✓ Bill [{bill_id}] approved (kept total: {result.kept_total})")
    for link in result.links:
        print(
            f"  ➜ [{link.derivative_bill_id}] {link.target_category}: "
            f"{link.amount} USD, {link.item_count} item(s)"
        )
    for category in result.skipped_categories:
        print(f"  ⚠ Unknown category '{category}', items kept on the source")
    return 0


def cmd_show(config: Config, bill_id: int) -> int:
    bill = StateStore(config.state_db_path).get_bill(bill_id)
    print(
        json.dumps(
            {
                "id": bill.id,
                "category": bill.category,
                "status": bill.status.value,
                "provider": bill.provider_slug,
                "error": bill.error_message,
                "unmatched_names": bill.unmatched_names,
                "has_unmatched_horses": bill.has_unmatched_horses,
                "is_approved": bill.is_approved,
                "source_bill_id": bill.source_bill_id,
                "links": [link.to_dict() for link in bill.links],
                "metadata": bill.metadata,
                "extracted_data": bill.extracted_data,
            },
            indent=2,
        )
    )
    return 0


def cmd_delete(config: Config, bill_id: int) -> int:
    documents = _document_store(config)
    try:
        service = ReclassificationService(StateStore(config.state_db_path), documents)
        refs = service.delete_bill(bill_id)
    finally:
        documents.close()
    print(f"✓ Bill [{bill_id}] deleted ({len(refs)} document(s) removed)")
    return 0


def cmd_status(config: Config) -> int:
    """Show store statistics."""
    stats = StateStore(config.state_db_path).get_stats()

    print("\n📊 Barn Ledger Status")
    print("=" * 40)
    for status in BillStatus:
        print(f"  Bills {status.value + ':':<17} {stats['bills_by_status'].get(status.value, 0)}")
    print(f"  Bills approved:         {stats['bills_approved']}")
    print(f"  Unmatched horse bills:  {stats['bills_with_unmatched_horses']}")
    print(f"  Horses:                 {stats['horses']}")
    print(f"  People:                 {stats['people']}")
    print(f"  Horse aliases:          {stats['horse_aliases']}")
    print(f"  Person aliases:         {stats['person_aliases']}")
    print()
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
        config.validate_or_raise()
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    try:
        if parsed.command == "seed":
            return cmd_seed(config, parsed.sample_registry)
        elif parsed.command == "add-horse":
            return cmd_add_horse(config, parsed.name, parsed.inactive)
        elif parsed.command == "add-person":
            return cmd_add_person(config, parsed.name, parsed.role)
        elif parsed.command == "add-provider":
            return cmd_add_provider(
                config,
                parsed.slug,
                parsed.name,
                parsed.category,
                parsed.prompt,
                parsed.expected_fields,
            )
        elif parsed.command == "add-bill":
            return cmd_add_bill(
                config, parsed.file, parsed.category, parsed.provider, parsed.period
            )
        elif parsed.command == "parse":
            return cmd_parse(config, parsed.bill_ids, parsed.workers)
        elif parsed.command == "unmatched":
            return cmd_unmatched(config)
        elif parsed.command == "resolve":
            return cmd_resolve(
                config,
                parsed.bill_id,
                parsed.raw_name,
                parsed.person,
                parsed.horse_id,
                parsed.person_id,
                parsed.create,
            )
        elif parsed.command == "assign-person":
            return cmd_assign_person(config, parsed.bill_id, parsed.person_id)
        elif parsed.command == "approve":
            return cmd_approve(config, parsed.bill_id, parsed.decisions)
        elif parsed.command == "show":
            return cmd_show(config, parsed.bill_id)
        elif parsed.command == "delete":
            return cmd_delete(config, parsed.bill_id)
        elif parsed.command == "status":
            return cmd_status(config)
        else:
            parser.print_help()
            return 1
    except BarnLedgerError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
