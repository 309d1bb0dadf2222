"""
Pytest fixtures for the stock ledger test suite.

Provides:
- Structured logging configured for every test, plus a log capture fixture
- A deterministic clock
- Ledgers on the in-memory gateway and on SQLite through the SQL gateway
- A reference directory with a few products and locations

SQLite databases are created per test.  Tests that run threads against
SQLite use a file database (``sqlite_file_url``); the in-memory SQLite
database shares one connection and is for single-threaded tests only.
"""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from stock_ledger.config import LedgerConfig
from stock_ledger.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
)
from stock_ledger.domain.clock import DeterministicClock
from stock_ledger.domain.directory import InMemoryDirectory, StockLocation
from stock_ledger.gateway.memory import InMemoryGateway
from stock_ledger.gateway.sql import SqlAlchemyGateway
from stock_ledger.ledger import StockLedger
from stock_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.mutations.apply_sale("P1", "W1", 1)
            logs = captured_logs()
            assert any(r["message"] == "stock_mutation_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_ledger")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def config():
    return LedgerConfig.with_defaults()


@pytest.fixture
def strict_config():
    """Negative stock disallowed, short lock timeout."""
    return LedgerConfig(allow_negative_stock=False, lock_timeout_seconds=1.0)


@pytest.fixture
def directory():
    return InMemoryDirectory(
        products={
            "P1": Decimal("2.50"),
            "P2": Decimal("10"),
            "P3": Decimal("0.75"),
            "CHEESE": Decimal("12.00"),
        },
        locations=[
            StockLocation("W1", "Main warehouse", is_primary=True),
            StockLocation("W2", "Store front"),
            StockLocation("W3", "Van"),
            StockLocation("OLD", "Closed branch", is_active=False),
        ],
    )


@pytest.fixture
def memory_gateway():
    return InMemoryGateway()


@pytest.fixture
def ledger(memory_gateway, config, clock):
    """Ledger on the in-memory gateway, no reference directory."""
    return StockLedger(memory_gateway, config=config, clock=clock)


@pytest.fixture
def checked_ledger(config, clock, directory):
    """Ledger that validates product and location ids against ``directory``."""
    return StockLedger(InMemoryGateway(), config=config, clock=clock, directory=directory)


@pytest.fixture
def strict_ledger(strict_config, clock):
    return StockLedger(InMemoryGateway(), config=strict_config, clock=clock)


# =============================================================================
# SQLite fixtures
# =============================================================================


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite with all tables and immutability listeners."""
    engine = init_engine_from_url("sqlite://")
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def sqlite_file_url(tmp_path):
    return f"sqlite:///{tmp_path / 'stock_ledger.db'}"


@pytest.fixture
def sqlite_file_engine(sqlite_file_url):
    """File-backed SQLite, safe to share between threads."""
    engine = init_engine_from_url(sqlite_file_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_gateway(sqlite_engine):
    return SqlAlchemyGateway(get_session_factory(sqlite_engine))


@pytest.fixture
def sql_ledger(sql_gateway, config, clock):
    return StockLedger(sql_gateway, config=config, clock=clock)


@pytest.fixture(params=["memory", "sqlite"])
def any_ledger(request, config, clock):
    """The same ledger behaviour on every gateway."""
    if request.param == "memory":
        yield StockLedger(InMemoryGateway(), config=config, clock=clock)
        return
    engine = init_engine_from_url("sqlite://")
    create_tables(engine)
    yield StockLedger(SqlAlchemyGateway(get_session_factory(engine)), config=config, clock=clock)
    drop_tables(engine)
    engine.dispose()
