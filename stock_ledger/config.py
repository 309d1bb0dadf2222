"""
Stock Ledger Configuration Schema.

Defines the structure and defaults for ledger settings.  Values are passed
at construction time (or loaded from a YAML file with ``load_config``);
there is no module-level switch that changes behaviour at runtime.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from stock_ledger.domain.counts import VariancePolicy
from stock_ledger.logging_config import get_logger

logger = get_logger("config")


@dataclass
class LedgerConfig:
    """
    Configuration schema for the stock ledger.

    Field defaults reflect how the point-of-sale behaves in the field:
    sales are never blocked for lack of stock (backorders), and a count is
    never flagged critical unless a threshold is configured.

        config = LedgerConfig(
            allow_negative_stock=False,
            lock_timeout_seconds=2.0,
            **load_from_settings("stock"),
        )
    """

    # Stock policy
    allow_negative_stock: bool = True

    # Concurrency
    lock_timeout_seconds: float = 5.0

    # Low stock alerts
    default_min_stock_level: Decimal = Decimal("0")
    low_stock_threshold: Decimal = Decimal("10")
    enable_low_stock_alerts: bool = True

    # Inventory counts
    variance_policy: VariancePolicy = field(default_factory=VariancePolicy)

    def __post_init__(self):
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        if self.default_min_stock_level < 0:
            raise ValueError("default_min_stock_level cannot be negative")
        if self.low_stock_threshold < 0:
            raise ValueError("low_stock_threshold cannot be negative")

        logger.info(
            "ledger_config_initialized",
            extra={
                "allow_negative_stock": self.allow_negative_stock,
                "lock_timeout_seconds": self.lock_timeout_seconds,
                "low_stock_threshold": str(self.low_stock_threshold),
                "match_tolerance": str(self.variance_policy.match_tolerance),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the field defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. parsed YAML)."""
        logger.info(
            "ledger_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        values = dict(data)
        policy = values.pop("variance_policy", None) or {}
        threshold = policy.get("critical_value_threshold")
        variance_policy = VariancePolicy(
            match_tolerance=_decimal(policy.get("match_tolerance", "0")),
            critical_value_threshold=_decimal(threshold) if threshold is not None else None,
        )
        for key in ("default_min_stock_level", "low_stock_threshold"):
            if key in values:
                values[key] = _decimal(values[key])
        if "lock_timeout_seconds" in values:
            values["lock_timeout_seconds"] = float(values["lock_timeout_seconds"])
        return cls(variance_policy=variance_policy, **values)


def load_config(path: str | Path) -> LedgerConfig:
    """
    Load ``LedgerConfig`` from a YAML file.

    The file may hold the settings at the top level or under a ``stock_ledger``
    key.  An empty file yields the defaults.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        TypeError: If the file contains unknown settings.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if "stock_ledger" in data:
        data = data["stock_ledger"] or {}
    logger.info("ledger_config_file_loaded", extra={"path": str(path)})
    return LedgerConfig.from_dict(data)


def _decimal(value: Any) -> Decimal:
    # YAML floats go through str so 0.1 stays 0.1
    return Decimal(str(value))
