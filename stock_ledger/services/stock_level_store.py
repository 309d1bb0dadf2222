"""
StockLevelStore -- current quantity per (product, location).

Responsibility:
    Reads of current stock levels, and the two writes that are not stock
    movements: idempotent absolute overwrite (migrations, opening imports
    outside the ledger) and the per-level minimum used for low-stock alerts.
    Also performs the versioned level write on behalf of
    StockMutationService.

Architecture position:
    Ledger > Services.  Sits directly on the PersistenceGateway.  Callers
    outside the ledger only ever see the read methods (see StockLedger).

Invariants enforced:
    - A missing level reads as "no row"; callers treat it as quantity 0.
    - set_absolute with the value already stored is a no-op: no version
      bump, no ``updated_at`` change, never a transaction.
    - Every stored change bumps ``version`` by one and is written with a
      compare-and-swap against the version that was read.

Failure modes:
    - ContendedError if the key lock cannot be acquired.
    - OptimisticLockError if a writer outside this process changed the row
      between read and write.

Audit relevance:
    set_absolute bypasses the ledger, so a pair written with it no longer
    satisfies "quantity == sum of deltas".  StockSelector.verify_ledger
    reports such pairs as drift.
"""

from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.clock import Clock
from stock_ledger.domain.values import ZERO, StockLevel, as_quantity
from stock_ledger.exceptions import InvalidQuantityError, StockLevelNotFoundError
from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.logging_config import get_logger
from stock_ledger.services.locks import KeyedLockManager

logger = get_logger("services.stock_level_store")


class StockLevelStore:
    """Keyed store of current quantity per (product_id, location_id)."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        locks: KeyedLockManager,
        clock: Clock,
        config: LedgerConfig,
    ):
        self._gateway = gateway
        self._locks = locks
        self._clock = clock
        self._config = config

    # -- reads --------------------------------------------------------------

    def get(self, product_id: str, location_id: str) -> StockLevel | None:
        return self._gateway.get_level(product_id, location_id)

    def require(self, product_id: str, location_id: str) -> StockLevel:
        """Like get(), but a missing level is an error."""
        level = self.get(product_id, location_id)
        if level is None:
            raise StockLevelNotFoundError(product_id, location_id)
        return level

    def quantity(self, product_id: str, location_id: str) -> Decimal:
        level = self.get(product_id, location_id)
        return level.quantity if level is not None else ZERO

    def get_by_product(self, product_id: str) -> list[StockLevel]:
        return self._gateway.levels_for_product(product_id)

    def get_by_location(self, location_id: str) -> list[StockLevel]:
        return self._gateway.levels_for_location(location_id)

    def all(self) -> list[StockLevel]:
        return self._gateway.all_levels()

    def total_quantity(self, product_id: str) -> Decimal:
        return sum((lvl.quantity for lvl in self.get_by_product(product_id)), ZERO)

    # -- writes -------------------------------------------------------------

    def empty_level(self, product_id: str, location_id: str) -> StockLevel:
        return StockLevel.empty(
            product_id,
            location_id,
            min_stock_level=self._config.default_min_stock_level,
        )

    def write(self, current: StockLevel, quantity: Decimal, updated_at: datetime) -> StockLevel:
        """
        Store the next version of ``current`` holding ``quantity``.

        Preconditions: the caller holds the key lock and ``current`` is the
            level it read (``StockLevel.empty`` for a pair with no row).
        """
        new_level = current.with_quantity(quantity, updated_at)
        self._gateway.put_level(new_level, expected_version=current.version)
        return new_level

    def set_absolute(self, product_id: str, location_id: str, quantity: Decimal | int | str) -> StockLevel:
        """Overwrite the stored quantity without recording a transaction."""
        quantity = as_quantity(quantity, "set_absolute")
        with self._locks.hold((product_id, location_id)):
            with self._gateway.atomic():
                current = self.get(product_id, location_id)
                if current is not None and current.quantity == quantity:
                    logger.debug(
                        "stock_level_set_absolute_noop",
                        extra={"product_id": product_id, "location_id": location_id},
                    )
                    return current
                level = self.write(
                    current or self.empty_level(product_id, location_id),
                    quantity,
                    self._clock.now(),
                )

        logger.info(
            "stock_level_set_absolute",
            extra={
                "product_id": product_id,
                "location_id": location_id,
                "quantity": str(quantity),
                "version": level.version,
            },
        )
        return level

    def set_min_stock_level(
        self,
        product_id: str,
        location_id: str,
        minimum: Decimal | int | str,
    ) -> StockLevel:
        """Set the low-stock threshold of one level (creating it at zero if absent)."""
        minimum = as_quantity(minimum, "min_stock_level")
        if minimum < ZERO:
            raise InvalidQuantityError(str(minimum), "min_stock_level", "zero or more")
        with self._locks.hold((product_id, location_id)):
            with self._gateway.atomic():
                current = self.get(product_id, location_id) or self.empty_level(product_id, location_id)
                level = replace(
                    current,
                    min_stock_level=minimum,
                    updated_at=self._clock.now(),
                    version=current.version + 1,
                )
                self._gateway.put_level(level, expected_version=current.version)

        logger.info(
            "stock_level_minimum_set",
            extra={
                "product_id": product_id,
                "location_id": location_id,
                "min_stock_level": str(minimum),
            },
        )
        return level
