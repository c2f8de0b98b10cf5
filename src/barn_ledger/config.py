"""
Configuration management (SSOT).

This module defines ALL configuration for barn-ledger. All config keys are
defined here; no other module should invent config keys.

Key invariants:
- The API key is never written to the config template; it comes from the
  environment (ANTHROPIC_API_KEY) or an explicit config value.
- Rate table and static alias dictionaries are injected into the converter
  and matcher from here, with compiled-in defaults when the file is silent.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml

from .classification.base import DEFAULT_RENTAL_SIGNATURES
from .errors import BarnLedgerError
from .matching.static_aliases import HORSE_ALIASES, PERSON_ALIASES
from .normalization.currency import DEFAULT_RATES, RateTable
from .schemas.amounts import to_decimal


class ConfigValidationError(BarnLedgerError):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ExtractionConfig:
    """Document-understanding service (Anthropic Messages API)."""

    api_url: str = "https://api.anthropic.com/v1/messages"
    api_key: str | None = None
    model: str = "claude-sonnet-4-5"
    max_tokens: int = 1200
    timeout_seconds: int = 120
    anthropic_version: str = "2023-06-01"


@dataclass
class DocumentsConfig:
    """Where bill documents live."""

    # Relative file references are resolved against this directory
    root: Path = field(default_factory=lambda: Path("data/documents"))
    timeout_seconds: int = 30
    max_retries: int = 3


@dataclass
class CurrencyConfig:
    """Fallback currency -> USD rates."""

    rates: dict[str, Decimal | None] = field(default_factory=lambda: dict(DEFAULT_RATES))

    def rate_table(self) -> RateTable:
        return RateTable.from_mapping(self.rates)


@dataclass
class MatchingConfig:
    """Static alias dictionaries and classifier dictionaries."""

    horse_aliases: dict[str, str] = field(default_factory=lambda: dict(HORSE_ALIASES))
    person_aliases: dict[str, str] = field(default_factory=lambda: dict(PERSON_ALIASES))
    # Horse names recognized in bodywork descriptions; empty = active registry horses
    bodywork_horse_names: list[str] = field(default_factory=list)
    rental_signatures: list[str] = field(default_factory=lambda: list(DEFAULT_RENTAL_SIGNATURES))


@dataclass
class ParsingConfig:
    """Bill parsing pipeline."""

    max_workers: int = 4


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    documents: DocumentsConfig = field(default_factory=DocumentsConfig)
    currency: CurrencyConfig = field(default_factory=CurrencyConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    parsing: ParsingConfig = field(default_factory=ParsingConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.extraction.api_url:
            errors.append("extraction.api_url is required")
        if not self.extraction.model:
            errors.append("extraction.model is required")
        if self.extraction.max_tokens <= 0:
            errors.append("extraction.max_tokens must be positive")

        for code, rate in self.currency.rates.items():
            if rate is None or rate <= 0:
                errors.append(f"currency.rates.{code} must be a positive number")

        if self.parsing.max_workers < 1:
            errors.append("parsing.max_workers must be at least 1")
        if self.documents.max_retries < 0:
            errors.append("documents.max_retries must be >= 0")

        return errors

    def validate_or_raise(self) -> None:
        """Raise ConfigValidationError listing every problem."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))


def _rates(data: dict) -> dict[str, Decimal | None]:
    rates: dict[str, Decimal | None] = dict(DEFAULT_RATES)
    for code, value in (data or {}).items():
        # Unparseable rates are kept as None so validate() reports them
        rates[str(code).upper()] = to_decimal(value)
    return rates


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - ANTHROPIC_API_KEY
    - BARN_LEDGER_MODEL
    - BARN_LEDGER_DB (state database path)
    - BARN_LEDGER_DOCUMENTS (document root)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        api_url=extraction_data.get("api_url", "https://api.anthropic.com/v1/messages"),
        api_key=os.environ.get("ANTHROPIC_API_KEY", extraction_data.get("api_key")),
        model=os.environ.get("BARN_LEDGER_MODEL", extraction_data.get("model", "claude-sonnet-4-5")),
        max_tokens=int(extraction_data.get("max_tokens", 1200)),
        timeout_seconds=int(extraction_data.get("timeout_seconds", 120)),
        anthropic_version=extraction_data.get("anthropic_version", "2023-06-01"),
    )

    documents_data = data.get("documents", {})
    documents = DocumentsConfig(
        root=Path(
            os.environ.get("BARN_LEDGER_DOCUMENTS", documents_data.get("root", "data/documents"))
        ),
        timeout_seconds=int(documents_data.get("timeout_seconds", 30)),
        max_retries=int(documents_data.get("max_retries", 3)),
    )

    currency = CurrencyConfig(rates=_rates(data.get("currency", {}).get("rates", {})))

    matching_data = data.get("matching", {})
    matching = MatchingConfig(
        horse_aliases={**HORSE_ALIASES, **(matching_data.get("horse_aliases") or {})},
        person_aliases={**PERSON_ALIASES, **(matching_data.get("person_aliases") or {})},
        bodywork_horse_names=list(matching_data.get("bodywork_horse_names") or []),
        rental_signatures=[
            s.lower()
            for s in (matching_data.get("rental_signatures") or DEFAULT_RENTAL_SIGNATURES)
        ],
    )

    parsing_data = data.get("parsing", {})
    parsing = ParsingConfig(max_workers=int(parsing_data.get("max_workers", 4)))

    state_db = os.environ.get("BARN_LEDGER_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        extraction=extraction,
        documents=documents,
        currency=currency,
        matching=matching,
        parsing=parsing,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# barn-ledger configuration
#
# The API key is read from ANTHROPIC_API_KEY; do not commit it here.

extraction:
  api_url: "https://api.anthropic.com/v1/messages"
  model: "claude-sonnet-4-5"              # Override with BARN_LEDGER_MODEL
  max_tokens: 1200
  timeout_seconds: 120
  anthropic_version: "2023-06-01"

documents:
  root: "data/documents"                  # Relative file references resolve here
  timeout_seconds: 30                     # For http(s) document references
  max_retries: 3

# Fallback currency -> USD rates, used only when an invoice declares none
currency:
  rates:
    CAD: 0.72
    EUR: 1.08
    GBP: 1.26

matching:
  # Extra static aliases (merged over the built-in dictionaries)
  horse_aliases: {}
  person_aliases: {}
  # Horse names detected in bodywork descriptions (empty: all active horses)
  bodywork_horse_names: []
  # Provider slug/name fragments identifying rental-car agreements
  rental_signatures: ["hertz", "avis", "enterprise", "budget", "sixt", "alamo", "national car", "europcar", "thrifty"]

parsing:
  max_workers: 4                          # Bills parsed concurrently

# State database path (override with BARN_LEDGER_DB)
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
