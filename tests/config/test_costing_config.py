"""
Tests for costing configuration loading.

Covers:
- Bundled defaults
- Parsing of the nested fee_distribution block
- Path resolution (argument, environment, bundled file)
- Validation failures
- COSTING_CONFIG_TRACE emission
"""

from pathlib import Path

import pytest
import yaml

from costing_config import CONFIG_PATH_ENV, CostingConfig, ZeroBasisPolicy, get_active_config
from costing_config.loader import compute_checksum, load_costing_config, parse_costing_config
from costing_config.schema import FeeDistributionConfig
from costing_kernel.domain.values import StorageLocation


def _write(tmp_path: Path, data: dict, name: str = "costing.yaml") -> Path:
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestBundledDefaults:
    def test_default_set_matches_schema_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        config = get_active_config()
        defaults = CostingConfig()

        assert config.config_id == "default"
        assert config.base_currency == "KRW"
        assert config.money_decimal_places == defaults.money_decimal_places
        assert config.unit_cost_decimal_places == defaults.unit_cost_decimal_places
        assert config.fee_distribution == defaults.fee_distribution
        assert config.checksum

    def test_all_locations_eligible_by_default(self):
        assert set(FeeDistributionConfig().eligible_locations) == set(StorageLocation)


class TestParsing:
    def test_nested_fee_distribution(self):
        config = parse_costing_config(
            {
                "config_id": "usd-books",
                "version": 3,
                "base_currency": "USD",
                "money_decimal_places": 2,
                "fee_distribution": {
                    "eligible_locations": ["warehouse", "OFFICE"],
                    "require_receipt_by_month_end": True,
                    "zero_basis_policy": "mark_distributed",
                    "ratio_decimal_places": 4,
                },
            }
        )
        assert config.config_id == "usd-books"
        assert config.version == 3
        assert config.money_decimal_places == 2
        fee = config.fee_distribution
        assert fee.eligible_locations == (StorageLocation.WAREHOUSE, StorageLocation.OFFICE)
        assert fee.require_receipt_by_month_end is True
        assert fee.zero_basis_policy == ZeroBasisPolicy.MARK_DISTRIBUTED
        assert fee.ratio_decimal_places == 4

    def test_empty_mapping_gives_defaults(self):
        config = parse_costing_config({})
        assert config.base_currency == "KRW"
        assert config.fee_distribution == FeeDistributionConfig()

    def test_checksum_is_deterministic(self):
        data = {"base_currency": "KRW", "version": 1}
        assert compute_checksum(data) == compute_checksum(dict(reversed(list(data.items()))))
        assert compute_checksum(data) != compute_checksum({"base_currency": "USD", "version": 1})

    def test_load_from_file(self, tmp_path):
        path = _write(tmp_path, {"base_currency": "EUR", "money_decimal_places": 2})
        config = load_costing_config(path)
        assert config.base_currency == "EUR"


class TestValidation:
    def test_unknown_location(self):
        with pytest.raises(ValueError):
            parse_costing_config({"fee_distribution": {"eligible_locations": ["BASEMENT"]}})

    def test_empty_locations(self):
        with pytest.raises(ValueError, match="eligible_locations"):
            parse_costing_config({"fee_distribution": {"eligible_locations": []}})

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            parse_costing_config({"fee_distribution": {"zero_basis_policy": "ignore"}})

    def test_bad_currency(self):
        with pytest.raises(ValueError, match="ISO 4217"):
            parse_costing_config({"base_currency": "WON!"})

    def test_decimal_places_range(self):
        with pytest.raises(ValueError, match="money_decimal_places"):
            parse_costing_config({"money_decimal_places": 12})


class TestActiveConfigResolution:
    def test_explicit_path(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        path = _write(tmp_path, {"config_id": "explicit"})
        assert get_active_config(path).config_id == "explicit"

    def test_environment_override(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"config_id": "from-env"})
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))
        assert get_active_config().config_id == "from-env"

    def test_argument_wins_over_environment(self, tmp_path, monkeypatch):
        env_path = _write(tmp_path, {"config_id": "from-env"}, "env.yaml")
        arg_path = _write(tmp_path, {"config_id": "from-arg"}, "arg.yaml")
        monkeypatch.setenv(CONFIG_PATH_ENV, str(env_path))
        assert get_active_config(arg_path).config_id == "from-arg"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "missing.yaml")

    def test_emits_config_trace(self, tmp_path, captured_logs):
        path = _write(tmp_path, {"config_id": "traced", "version": 7})
        config = get_active_config(path)

        traces = [r for r in captured_logs() if r["message"] == "COSTING_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["config_id"] == "traced"
        assert traces[0]["config_version"] == 7
        assert traces[0]["checksum"] == config.checksum
