"""
StockMutationService -- the single writer of stock levels and the ledger.

Responsibility:
    Turns business requests (sale, purchase receipt, adjustment, transfer,
    manual entry/exit, opening balance) into a ledger entry plus a level
    write, as one unit.

Architecture position:
    Ledger > Services -- imperative shell.  Called by checkout, purchase
    receiving, the transfer/adjustment screens and InventoryCountEngine.

Every mutation follows the same path:

    validate request (quantity sign, known product/location)
        |
    acquire key lock(s) in sorted order          --> ContendedError
        |
    open atomic unit
        |
    read level (missing == 0) and compute new quantity
        |
    negative-stock policy                        --> InsufficientStockError
        |
    TransactionLedger.append                     --> InvariantViolationError
        |
    versioned level write                        --> OptimisticLockError
        |
    commit (or roll back everything)

Invariants enforced:
    - The ledger append and the level write share one atomic unit.
    - A transfer's two legs share ``reference`` and commit together.  On a
      store without atomic units, a failed inbound leg is compensated by a
      ``transfer_in`` back at the source under the same reference.
    - Zero-delta adjustments are recorded (a count confirming the system
      quantity is itself an auditable event).

Failure modes:
    - InvalidQuantityError, InvalidTransferError -- rejected request.
    - ProductNotFoundError / LocationNotFoundError -- unknown ids, only
      when a ReferenceDirectory is configured.
    - InsufficientStockError -- only when ``allow_negative_stock`` is off.
    - PartialTransferFailureError -- a transfer leg failed after the other
      had been written; raised after rollback or compensation.
"""

from decimal import Decimal

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.clock import Clock
from stock_ledger.domain.directory import ReferenceDirectory
from stock_ledger.domain.values import (
    ZERO,
    LedgerEntry,
    StockTransaction,
    TransactionType,
    as_quantity,
)
from stock_ledger.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransferError,
    LocationNotFoundError,
    PartialTransferFailureError,
    ProductNotFoundError,
)
from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.services.locks import KeyedLockManager
from stock_ledger.services.stock_level_store import StockLevelStore
from stock_ledger.services.transaction_ledger import TransactionLedger

logger = get_logger("services.stock_mutation")


class StockMutationService:
    """
    Applies stock movements.

    Contract:
        Each public method either records exactly the transactions it
        documents and updates the matching levels, or raises and leaves the
        store and ledger unchanged.

    Non-goals:
        - Does NOT price anything; ``unit_cost`` is only read by counts.
        - Does NOT create products or locations.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        store: StockLevelStore,
        ledger: TransactionLedger,
        locks: KeyedLockManager,
        clock: Clock,
        config: LedgerConfig,
        directory: ReferenceDirectory | None = None,
    ):
        self._gateway = gateway
        self._store = store
        self._ledger = ledger
        self._locks = locks
        self._clock = clock
        self._config = config
        self._directory = directory

    # -- validation ---------------------------------------------------------

    def _require_known(self, product_id: str, *location_ids: str) -> None:
        if self._directory is None:
            return
        if not self._directory.has_product(product_id):
            raise ProductNotFoundError(product_id)
        for location_id in location_ids:
            if not self._directory.has_location(location_id):
                raise LocationNotFoundError(location_id)

    @staticmethod
    def _positive(quantity, operation: str) -> Decimal:
        quantity = as_quantity(quantity, operation)
        if quantity <= ZERO:
            raise InvalidQuantityError(str(quantity), operation)
        return quantity

    # -- core ---------------------------------------------------------------

    def _apply_locked(
        self,
        product_id: str,
        location_id: str,
        txn_type: TransactionType,
        delta: Decimal | None = None,
        target: Decimal | None = None,
        reason: str | None = None,
        reference: str | None = None,
        related_id: str | None = None,
        created_by: str | None = None,
        enforce_policy: bool = True,
    ) -> StockTransaction:
        """Record one movement.  The caller holds the key lock."""
        with self._gateway.atomic():
            current = self._store.get(product_id, location_id) or self._store.empty_level(
                product_id, location_id
            )
            previous = current.quantity
            if target is not None:
                delta = target - previous
            new_quantity = previous + delta

            if (
                enforce_policy
                and txn_type.direction < 0
                and new_quantity < ZERO
                and not self._config.allow_negative_stock
            ):
                logger.info(
                    "stock_mutation_rejected_insufficient",
                    extra={
                        "product_id": product_id,
                        "location_id": location_id,
                        "available": str(previous),
                        "requested": str(-delta),
                    },
                )
                raise InsufficientStockError(product_id, location_id, str(previous), str(-delta))

            transaction = self._ledger.append(
                LedgerEntry(
                    product_id=product_id,
                    location_id=location_id,
                    type=txn_type,
                    quantity=delta,
                    previous_quantity=previous,
                    new_quantity=new_quantity,
                    reason=reason,
                    reference=reference,
                    related_id=related_id,
                    created_by=created_by or LogContext.get("actor_id"),
                )
            )
            self._store.write(current, new_quantity, transaction.created_at)

        logger.info(
            "stock_mutation_applied",
            extra={
                "transaction_id": str(transaction.id),
                "type": txn_type.value,
                "product_id": product_id,
                "location_id": location_id,
                "quantity": str(delta),
                "previous_quantity": str(previous),
                "new_quantity": str(new_quantity),
                "reference": reference,
            },
        )
        if new_quantity < ZERO <= previous:
            logger.warning(
                "stock_went_negative",
                extra={
                    "product_id": product_id,
                    "location_id": location_id,
                    "new_quantity": str(new_quantity),
                },
            )
        return transaction

    def _apply(self, product_id: str, location_id: str, txn_type: TransactionType, **kwargs) -> StockTransaction:
        with self._locks.hold((product_id, location_id)):
            return self._apply_locked(product_id, location_id, txn_type, **kwargs)

    # -- movements ----------------------------------------------------------

    def apply_sale(
        self,
        product_id: str,
        location_id: str,
        quantity_sold,
        reference: str | None = None,
        related_id: str | None = None,
        created_by: str | None = None,
    ) -> StockTransaction:
        """Record goods leaving through checkout (``reference`` = invoice number)."""
        quantity = self._positive(quantity_sold, "sale")
        self._require_known(product_id, location_id)
        return self._apply(
            product_id,
            location_id,
            TransactionType.SALE,
            delta=-quantity,
            reason="sale",
            reference=reference,
            related_id=related_id,
            created_by=created_by,
        )

    def apply_purchase_receipt(
        self,
        product_id: str,
        location_id: str,
        quantity_received,
        reference: str | None = None,
        related_id: str | None = None,
        created_by: str | None = None,
    ) -> StockTransaction:
        """Record goods received against a purchase order (``reference`` = PO number)."""
        quantity = self._positive(quantity_received, "purchase")
        self._require_known(product_id, location_id)
        return self._apply(
            product_id,
            location_id,
            TransactionType.PURCHASE,
            delta=quantity,
            reason="purchase receipt",
            reference=reference,
            related_id=related_id,
            created_by=created_by,
        )

    def apply_entry(
        self,
        product_id: str,
        location_id: str,
        quantity,
        reason: str | None = None,
        reference: str | None = None,
        created_by: str | None = None,
    ) -> StockTransaction:
        """Manual stock-in outside any purchase document."""
        quantity = self._positive(quantity, "entry")
        self._require_known(product_id, location_id)
        return self._apply(
            product_id,
            location_id,
            TransactionType.ENTRY,
            delta=quantity,
            reason=reason,
            reference=reference,
            created_by=created_by,
        )

    def apply_exit(
        self,
        product_id: str,
        location_id: str,
        quantity,
        reason: str | None = None,
        reference: str | None = None,
        created_by: str | None = None,
    ) -> StockTransaction:
        """Manual stock-out (breakage, samples, internal use)."""
        quantity = self._positive(quantity, "exit")
        self._require_known(product_id, location_id)
        return self._apply(
            product_id,
            location_id,
            TransactionType.EXIT,
            delta=-quantity,
            reason=reason,
            reference=reference,
            created_by=created_by,
        )

    def apply_adjustment(
        self,
        product_id: str,
        location_id: str,
        new_physical_quantity,
        reason: str | None = None,
        reference: str | None = None,
        created_by: str | None = None,
    ) -> StockTransaction:
        """
        Set the level to an observed physical quantity.

        The recorded delta is ``new_physical_quantity - current``; zero is
        allowed and still recorded.
        """
        target = as_quantity(new_physical_quantity, "adjustment")
        if target < ZERO:
            raise InvalidQuantityError(str(target), "adjustment", "zero or more")
        self._require_known(product_id, location_id)
        return self._apply(
            product_id,
            location_id,
            TransactionType.ADJUSTMENT,
            target=target,
            reason=reason,
            reference=reference,
            created_by=created_by,
        )

    def seed_opening_balance(
        self,
        product_id: str,
        location_id: str,
        quantity,
        reference: str | None = "opening-balance",
        created_by: str | None = None,
    ) -> StockTransaction:
        """
        Bring a pair to its opening quantity through an ``entry`` movement.

        Only valid while the pair has no stock recorded; the opening
        balance is a ledger entry like any other, so the level still equals
        the sum of its deltas.
        """
        quantity = self._positive(quantity, "opening balance")
        self._require_known(product_id, location_id)
        with self._locks.hold((product_id, location_id)):
            existing = self._store.get(product_id, location_id)
            if existing is not None and existing.quantity != ZERO:
                raise InvalidQuantityError(
                    str(existing.quantity),
                    "opening balance (existing level)",
                    "zero before seeding",
                )
            return self._apply_locked(
                product_id,
                location_id,
                TransactionType.ENTRY,
                delta=quantity,
                reason="opening balance",
                reference=reference,
                created_by=created_by,
            )

    def apply_transfer(
        self,
        product_id: str,
        source_location_id: str,
        target_location_id: str,
        quantity,
        reference: str,
        created_by: str | None = None,
    ) -> tuple[StockTransaction, StockTransaction]:
        """
        Move stock between two locations.

        Returns:
            The ``(transfer_out, transfer_in)`` pair, sharing ``reference``.

        Raises:
            PartialTransferFailureError: The inbound leg (or the commit)
                failed after the outbound leg was written; the outbound leg
                has been rolled back or compensated.
        """
        quantity = self._positive(quantity, "transfer")
        if source_location_id == target_location_id:
            raise InvalidTransferError(product_id, source_location_id)
        self._require_known(product_id, source_location_id, target_location_id)

        legs = dict(
            quantity=quantity,
            reference=reference,
            created_by=created_by,
        )
        with LogContext.bind(reference=reference):
            with self._locks.hold(
                (product_id, source_location_id),
                (product_id, target_location_id),
            ):
                if self._gateway.supports_transactions:
                    result = self._transfer_atomic(product_id, source_location_id, target_location_id, **legs)
                else:
                    result = self._transfer_saga(product_id, source_location_id, target_location_id, **legs)

            logger.info(
                "stock_transfer_applied",
                extra={
                    "product_id": product_id,
                    "source_location_id": source_location_id,
                    "target_location_id": target_location_id,
                    "quantity": str(quantity),
                },
            )
        return result

    def _transfer_legs(self, product_id, source, target, quantity, reference, created_by):
        out_leg = dict(
            delta=-quantity,
            reason=f"transfer to {target}",
            reference=reference,
            created_by=created_by,
        )
        in_leg = dict(
            delta=quantity,
            reason=f"transfer from {source}",
            reference=reference,
            created_by=created_by,
        )
        return out_leg, in_leg

    def _transfer_atomic(self, product_id, source, target, quantity, reference, created_by):
        out_leg, in_leg = self._transfer_legs(product_id, source, target, quantity, reference, created_by)
        out_txn = in_txn = None
        try:
            with self._gateway.atomic():
                out_txn = self._apply_locked(product_id, source, TransactionType.TRANSFER_OUT, **out_leg)
                in_txn = self._apply_locked(
                    product_id,
                    target,
                    TransactionType.TRANSFER_IN,
                    related_id=str(out_txn.id),
                    **in_leg,
                )
        except Exception as exc:
            if out_txn is None:
                raise
            failed_leg = "transfer_in" if in_txn is None else "commit"
            logger.error(
                "transfer_rolled_back",
                extra={"product_id": product_id, "failed_leg": failed_leg},
                exc_info=True,
            )
            raise PartialTransferFailureError(
                product_id,
                source,
                target,
                reference,
                failed_leg=failed_leg,
                compensated=True,
                reason=str(exc),
            ) from exc
        return out_txn, in_txn

    def _transfer_saga(self, product_id, source, target, quantity, reference, created_by):
        out_leg, in_leg = self._transfer_legs(product_id, source, target, quantity, reference, created_by)
        out_txn = self._apply_locked(product_id, source, TransactionType.TRANSFER_OUT, **out_leg)
        try:
            in_txn = self._apply_locked(
                product_id,
                target,
                TransactionType.TRANSFER_IN,
                related_id=str(out_txn.id),
                **in_leg,
            )
        except Exception as exc:
            compensated = self._compensate(out_txn, quantity, reference, created_by)
            raise PartialTransferFailureError(
                product_id,
                source,
                target,
                reference,
                failed_leg="transfer_in",
                compensated=compensated,
                reason=str(exc),
            ) from exc
        return out_txn, in_txn

    def _compensate(self, out_txn: StockTransaction, quantity: Decimal, reference: str, created_by) -> bool:
        try:
            compensation = self._apply_locked(
                out_txn.product_id,
                out_txn.location_id,
                TransactionType.TRANSFER_IN,
                delta=quantity,
                reason=f"compensation for failed transfer {reference}",
                reference=reference,
                related_id=str(out_txn.id),
                created_by=created_by,
                enforce_policy=False,
            )
        except Exception:
            logger.critical(
                "transfer_compensation_failed",
                extra={
                    "product_id": out_txn.product_id,
                    "location_id": out_txn.location_id,
                    "transfer_out_id": str(out_txn.id),
                },
                exc_info=True,
            )
            return False

        logger.warning(
            "transfer_compensated",
            extra={
                "product_id": out_txn.product_id,
                "location_id": out_txn.location_id,
                "transfer_out_id": str(out_txn.id),
                "compensation_id": str(compensation.id),
            },
        )
        return True
