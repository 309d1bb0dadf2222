"""
Tests for LedgerConfig and YAML loading.

Covers:
- Defaults and __post_init__ validation
- from_dict parsing (Decimal conversion, nested variance policy)
- load_config from YAML, with and without the ``stock_ledger`` section
"""

from decimal import Decimal

import pytest
import yaml

from stock_ledger.config import LedgerConfig, load_config
from stock_ledger.domain.counts import VariancePolicy


class TestLedgerConfigDefaults:

    def test_defaults(self):
        config = LedgerConfig.with_defaults()
        assert config.allow_negative_stock is True
        assert config.lock_timeout_seconds == 5.0
        assert config.low_stock_threshold == Decimal("10")
        assert config.enable_low_stock_alerts is True
        assert config.variance_policy == VariancePolicy()

    def test_logs_initialization(self, captured_logs):
        LedgerConfig(allow_negative_stock=False)
        records = [r for r in captured_logs() if r["message"] == "ledger_config_initialized"]
        assert records
        assert records[-1]["allow_negative_stock"] is False

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"lock_timeout_seconds": 0},
            {"lock_timeout_seconds": -1.0},
            {"default_min_stock_level": Decimal("-1")},
            {"low_stock_threshold": Decimal("-0.5")},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            LedgerConfig(**kwargs)

    def test_negative_match_tolerance_rejected(self):
        with pytest.raises(ValueError):
            VariancePolicy(match_tolerance=Decimal("-0.1"))


class TestFromDict:

    def test_converts_numbers_to_decimal(self):
        config = LedgerConfig.from_dict(
            {
                "allow_negative_stock": False,
                "lock_timeout_seconds": 2,
                "low_stock_threshold": 5,
                "default_min_stock_level": 0.1,
            }
        )
        assert config.allow_negative_stock is False
        assert config.lock_timeout_seconds == 2.0
        assert config.low_stock_threshold == Decimal("5")
        assert config.default_min_stock_level == Decimal("0.1")

    def test_nested_variance_policy(self):
        config = LedgerConfig.from_dict(
            {
                "variance_policy": {
                    "match_tolerance": 0.05,
                    "critical_value_threshold": 500,
                }
            }
        )
        assert config.variance_policy.match_tolerance == Decimal("0.05")
        assert config.variance_policy.critical_value_threshold == Decimal("500")

    def test_missing_threshold_disables_critical(self):
        config = LedgerConfig.from_dict({"variance_policy": {"match_tolerance": 0}})
        assert config.variance_policy.critical_value_threshold is None

    def test_unknown_key_rejected(self):
        with pytest.raises(TypeError):
            LedgerConfig.from_dict({"no_such_setting": True})


class TestLoadConfig:

    def test_top_level_settings(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump({"allow_negative_stock": False, "low_stock_threshold": 3}))

        config = load_config(path)
        assert config.allow_negative_stock is False
        assert config.low_stock_threshold == Decimal("3")

    def test_namespaced_settings(self, tmp_path):
        path = tmp_path / "app.yaml"
        path.write_text(
            "stock_ledger:\n"
            "  lock_timeout_seconds: 0.5\n"
            "  variance_policy:\n"
            "    match_tolerance: '0.010'\n"
        )

        config = load_config(path)
        assert config.lock_timeout_seconds == 0.5
        assert config.variance_policy.match_tolerance == Decimal("0.010")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == LedgerConfig.with_defaults()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")
