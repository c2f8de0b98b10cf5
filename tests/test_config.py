"""Tests for configuration loading."""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from barn_ledger.config import (
    Config,
    ConfigValidationError,
    create_default_config,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in (
        "ANTHROPIC_API_KEY",
        "BARN_LEDGER_MODEL",
        "BARN_LEDGER_DB",
        "BARN_LEDGER_DOCUMENTS",
    ):
        monkeypatch.delenv(var, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.extraction.api_key is None
        assert config.state_db_path == Path("data/state.db")
        assert config.currency.rates["GBP"] == Decimal("1.26")
        assert config.matching.horse_aliases["ziggy"] == "Zigarette"
        assert config.validate() == []

    def test_file_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "extraction": {"model": "claude-test", "max_tokens": 500},
                    "currency": {"rates": {"chf": 1.13}},
                    "matching": {
                        "horse_aliases": {"lingo": "Lingo Van De Watermoelen"},
                        "rental_signatures": ["Hertz"],
                    },
                    "parsing": {"max_workers": 2},
                    "state_db_path": "/tmp/ledger.db",
                }
            )
        )
        config = load_config(path)

        assert config.extraction.model == "claude-test"
        assert config.extraction.max_tokens == 500
        assert config.currency.rates["CHF"] == Decimal("1.13")
        assert config.currency.rates["CAD"] == Decimal("0.72")
        assert config.matching.horse_aliases["lingo"] == "Lingo Van De Watermoelen"
        assert config.matching.horse_aliases["ziggy"] == "Zigarette"
        assert config.matching.rental_signatures == ["hertz"]
        assert config.parsing.max_workers == 2
        assert config.state_db_path == Path("/tmp/ledger.db")

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"extraction": {"api_key": "from-file"}}))
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
        monkeypatch.setenv("BARN_LEDGER_DB", str(tmp_path / "env.db"))
        monkeypatch.setenv("BARN_LEDGER_DOCUMENTS", str(tmp_path / "docs"))

        config = load_config(path)

        assert config.extraction.api_key == "from-env"
        assert config.state_db_path == tmp_path / "env.db"
        assert config.documents.root == tmp_path / "docs"

    def test_rate_table_from_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"currency": {"rates": {"SEK": "0.095"}}}))
        table = load_config(path).currency.rate_table()
        assert table.lookup("sek") == Decimal("0.095")


class TestValidation:
    """Tests for config validation."""

    def test_invalid_rates_reported(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"currency": {"rates": {"CAD": "n/a", "EUR": -1}}}))
        errors = load_config(path).validate()

        assert "currency.rates.CAD must be a positive number" in errors
        assert "currency.rates.EUR must be a positive number" in errors

    def test_validate_or_raise(self):
        config = Config()
        config.parsing.max_workers = 0
        with pytest.raises(ConfigValidationError, match="max_workers"):
            config.validate_or_raise()


class TestDefaultConfig:
    """Tests for the generated config template."""

    def test_template_loads_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        create_default_config(path)

        text = path.read_text()
        assert "api_key" not in text
        config = load_config(path)
        assert config.currency.rates == Config().currency.rates
        assert config.extraction.model == Config().extraction.model
        assert config.validate() == []
