"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from barn_ledger.categories import CATEGORIES
from barn_ledger.config import Config
from barn_ledger.state_store import StateStore

# Extraction payloads as the document-understanding service returns them

SAMPLE_VET_PAYLOAD = {
    "invoiceNumber": "INV-2024-0117",
    "invoice_date": "2024-03-02",
    "clinic_name": "Wellington Equine Associates",
    "currency": "USD",
    "total": "$1,240.00",
    "lineItems": [
        {"description": "Lameness exam", "horse": "Ben", "amount": 450},
        {"description": "Radiographs (6 views)", "horseName": "Valentina", "amount": "640.00"},
        {"description": "Sedation", "patient_name": "Numero Valentina", "total": 150},
    ],
}

SAMPLE_GBP_PAYLOAD = {
    "invoice_number": "UK-889",
    "provider_name": "Hickstead Livery Ltd",
    "original_currency": "GBP",
    "original_total": 320.27,
    "exchange_rate": 1.27,
    "line_items": [
        {"description": "Livery March", "horse_name": "Coopers Hill", "amount": 300.27},
        {"description": "Hay", "horse_name": "Coopers Hill", "amount": 20.00},
    ],
}

SAMPLE_STABLING_PAYLOAD = {
    "invoice_number": "ST-2024-03",
    "provider_name": "Grand Prix Stables",
    "invoice_total": 1000.00,
    "line_items": [
        {"description": "Monthly board", "horse_name": "Ben", "amount": 700.00},
        {"description": "Farrier reset", "horse_name": "Ben", "amount": 180.00},
        {"description": "Shavings (10 bags)", "horse_name": "Ben", "amount": 120.00},
    ],
}

SAMPLE_RENTAL_PAYLOAD = {
    "provider_name": "Hertz Rent-A-Car",
    "rental_agreement_number": "H-7731",
    "driver_name": "Lucy Davis",
    "currency": "EUR",
    "total": 412.50,
    "line_items": [
        {"description": "Compact car, 5 days", "amount": 380.00},
        {"description": "Fuel service", "amount": 32.50},
    ],
}


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """State store with the category catalogue seeded."""
    state_store = StateStore(temp_db)
    state_store.seed_categories(CATEGORIES)
    return state_store


@pytest.fixture
def registry(store):
    """Sample horses and people; returns them keyed by name."""
    horses = {
        name: store.add_horse(name)
        for name in ("Numero Valentina", "Ben", "Coopers Hill", "Zigarette")
    }
    people = {
        name: store.add_person(name, role=role)
        for name, role in (
            ("Lucy Davis Kennedy", "rider"),
            ("Charlotte Oakes", "groom"),
        )
    }
    return {**horses, **people}


@pytest.fixture
def config(tmp_path) -> Config:
    """Default configuration pointing at temporary paths."""
    cfg = Config()
    cfg.state_db_path = tmp_path / "test_state.db"
    cfg.documents.root = tmp_path / "documents"
    cfg.extraction.api_key = "test-key"
    return cfg


@pytest.fixture
def sample_vet_payload() -> dict:
    return dict(SAMPLE_VET_PAYLOAD)


@pytest.fixture
def sample_gbp_payload() -> dict:
    return dict(SAMPLE_GBP_PAYLOAD)


@pytest.fixture
def sample_stabling_payload() -> dict:
    return dict(SAMPLE_STABLING_PAYLOAD)


@pytest.fixture
def sample_rental_payload() -> dict:
    return dict(SAMPLE_RENTAL_PAYLOAD)


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal PDF content (never parsed locally)."""
    return b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << >>\n%%EOF\n"
