"""
InventoryCountEngine -- physical counts reconciled against system stock.

Responsibility:
    Runs count sessions through their lifecycle, snapshots system
    quantities, records physical counts and supervisor resolutions, reports
    variances, and on finalisation emits the stock adjustments.

Architecture position:
    Ledger > Services -- imperative shell over StockMutationService.  It
    never writes levels or ledger entries itself.

Lifecycle (see domain/workflows.py):

    draft --start--> in_progress --finalize--> completed
      |                  |
      +-----cancel-------+-----cancel--------> cancelled

Invariants enforced:
    - Nothing leaves ``completed`` or ``cancelled``.
    - Lines change only while the count is ``in_progress``.
    - finalize is the only path by which a count changes stock: one
      ``adjustment`` per line whose target differs from the snapshot, every
      one with ``reference = str(count.id)``, all in one atomic unit while
      every line key is held.
    - A retried finalize never adjusts a line twice.  Lines that already
      carry an adjustment under the count reference are reused.
    - cancel never touches stock and discards recorded physical counts.

Failure modes:
    - CountNotFoundError / CountItemNotFoundError.
    - InvalidCountTransitionError -- action not allowed from the status.
    - CountClosedError -- line change on a terminal count.
    - CountIncompleteError -- finalize (or reconcile) with uncounted lines.
    - ContendedError -- finalize could not lock every line key in time.

Audit relevance:
    ``count_created``, ``count_started``, ``count_finalized`` and
    ``count_cancelled`` all carry the count id; finalisation binds it in
    LogContext so the adjustments it emits carry it too.
"""

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID, uuid4

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.clock import Clock
from stock_ledger.domain.counts import (
    CountItemStatus,
    CountProgress,
    CountStatus,
    CountType,
    InventoryCount,
    InventoryCountItem,
    ReconcileAction,
    VarianceLine,
    VarianceReport,
    VarianceSeverity,
)
from stock_ledger.domain.directory import ReferenceDirectory
from stock_ledger.domain.values import ZERO, StockTransaction, TransactionType, as_quantity
from stock_ledger.domain.workflows import COUNT_WORKFLOW, Transition
from stock_ledger.exceptions import (
    CountClosedError,
    CountIncompleteError,
    CountItemNotFoundError,
    CountNotFoundError,
    InvalidCountTransitionError,
    InvalidQuantityError,
    LocationNotFoundError,
    ProductNotFoundError,
)
from stock_ledger.gateway.base import PersistenceGateway
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.services.locks import KeyedLockManager
from stock_ledger.services.stock_level_store import StockLevelStore
from stock_ledger.services.stock_mutation_service import StockMutationService

logger = get_logger("services.inventory_count")

_PERCENT = Decimal("0.01")
_HUNDRED = Decimal("100")


def _percent(part: int, whole: int) -> Decimal:
    if whole == 0:
        return ZERO
    return (Decimal(part) * _HUNDRED / Decimal(whole)).quantize(_PERCENT, rounding=ROUND_HALF_UP)


class InventoryCountEngine:
    """
    Count sessions and their reconciliation.

    Usage:
        count = engine.create_count("Q3 shelf count", CountType.FULL, "W1")
        engine.start_counting(count.id)
        engine.record_physical_count(count.id, "P1", Decimal("95"))
        report = engine.variance_report(count.id)
        engine.finalize(count.id)
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        store: StockLevelStore,
        mutations: StockMutationService,
        locks: KeyedLockManager,
        clock: Clock,
        config: LedgerConfig,
        directory: ReferenceDirectory | None = None,
    ):
        self._gateway = gateway
        self._store = store
        self._mutations = mutations
        self._locks = locks
        self._clock = clock
        self._config = config
        self._directory = directory

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _count_key(count_id: UUID) -> tuple[str, str]:
        # Count sessions share the key lock registry with stock pairs
        return ("inventory_count", str(count_id))

    def _unit_cost(self, product_id: str) -> Decimal:
        if self._directory is None:
            return ZERO
        return self._directory.unit_cost(product_id)

    def _require_product(self, product_id: str) -> None:
        if self._directory is not None and not self._directory.has_product(product_id):
            raise ProductNotFoundError(product_id)

    def _require_count(self, count_id: UUID) -> InventoryCount:
        count = self._gateway.get_count(count_id)
        if count is None:
            raise CountNotFoundError(str(count_id))
        return count

    def _require_item(self, count_id: UUID, product_id: str) -> InventoryCountItem:
        item = self._gateway.get_count_item(count_id, product_id)
        if item is None:
            raise CountItemNotFoundError(str(count_id), product_id)
        return item

    def _transition(self, count: InventoryCount, action: str) -> Transition:
        transition = COUNT_WORKFLOW.find(count.status.value, action)
        if transition is None:
            logger.warning(
                "count_transition_rejected",
                extra={"count_id": str(count.id), "status": count.status.value, "action": action},
            )
            raise InvalidCountTransitionError(str(count.id), count.status.value, action)
        return transition

    def _require_editable(self, count: InventoryCount, action: str) -> None:
        if count.is_terminal:
            raise CountClosedError(str(count.id), count.status.value)
        if count.status != CountStatus.IN_PROGRESS:
            raise InvalidCountTransitionError(str(count.id), count.status.value, action)

    # -- lifecycle ----------------------------------------------------------

    def create_count(
        self,
        name: str,
        count_type: CountType | str,
        location_id: str,
        scope: list[str] | None = None,
        created_by: str | None = None,
        notes: str | None = None,
    ) -> InventoryCount:
        """
        Create a ``draft`` count and snapshot system quantities.

        A full count covers every product stocked at the location; a
        partial count covers ``scope`` (product ids), where a product with
        no stored level snapshots as zero.
        """
        count_type = CountType(count_type)
        if self._directory is not None and not self._directory.has_location(location_id):
            raise LocationNotFoundError(location_id)

        if count_type == CountType.FULL:
            product_ids = [lvl.product_id for lvl in self._store.get_by_location(location_id)]
        else:
            if not scope:
                raise ValueError("A partial count needs at least one product in scope")
            product_ids = list(dict.fromkeys(scope))
            for product_id in product_ids:
                self._require_product(product_id)

        count = InventoryCount(
            id=uuid4(),
            name=name,
            count_type=count_type,
            location_id=location_id,
            status=CountStatus.DRAFT,
            created_by=created_by,
            notes=notes,
            total_products=len(product_ids),
            created_at=self._clock.now(),
        )

        with self._gateway.atomic():
            self._gateway.put_count(count)
            for product_id in product_ids:
                self._gateway.put_count_item(
                    InventoryCountItem(
                        count_id=count.id,
                        product_id=product_id,
                        location_id=location_id,
                        system_quantity=self._store.quantity(product_id, location_id),
                        unit_cost=self._unit_cost(product_id),
                    )
                )

        logger.info(
            "count_created",
            extra={
                "count_id": str(count.id),
                "count_type": count_type.value,
                "location_id": location_id,
                "total_products": count.total_products,
            },
        )
        return count

    def start_counting(self, count_id: UUID) -> InventoryCount:
        with self._locks.hold(self._count_key(count_id)):
            count = self._require_count(count_id)
            transition = self._transition(count, "start")
            started = replace(
                count,
                status=CountStatus(transition.to_state),
                started_at=self._clock.now(),
            )
            self._gateway.put_count(started)

        logger.info("count_started", extra={"count_id": str(count_id)})
        return started

    def record_physical_count(
        self,
        count_id: UUID,
        product_id: str,
        quantity,
        notes: str | None = None,
    ) -> InventoryCountItem:
        """
        Record the physical quantity of one product (last write wins).

        A product that was not part of the snapshot (found on the shelf
        during a partial count) gets a new line whose system quantity is
        the level at the time it is scanned.
        """
        quantity = as_quantity(quantity, "physical count")
        if quantity < ZERO:
            raise InvalidQuantityError(str(quantity), "physical count", "zero or more")

        with self._locks.hold(self._count_key(count_id)):
            count = self._require_count(count_id)
            self._require_editable(count, "record_physical_count")

            with self._gateway.atomic():
                item = self._gateway.get_count_item(count_id, product_id)
                if item is None:
                    self._require_product(product_id)
                    item = InventoryCountItem(
                        count_id=count_id,
                        product_id=product_id,
                        location_id=count.location_id,
                        system_quantity=self._store.quantity(product_id, count.location_id),
                        unit_cost=self._unit_cost(product_id),
                    )
                    logger.info(
                        "count_line_added",
                        extra={"count_id": str(count_id), "product_id": product_id},
                    )

                item = item.record(quantity, self._clock.now(), notes)
                self._gateway.put_count_item(item)

                items = self._gateway.get_count_items(count_id)
                self._gateway.put_count(
                    replace(
                        count,
                        total_products=len(items),
                        counted_products=sum(1 for i in items if i.is_recorded),
                    )
                )

        logger.info(
            "count_line_recorded",
            extra={
                "count_id": str(count_id),
                "product_id": product_id,
                "physical_quantity": str(quantity),
                "variance": str(item.variance),
            },
        )
        return item

    def reconcile_item(
        self,
        count_id: UUID,
        product_id: str,
        action: ReconcileAction | str,
        manual_quantity=None,
        notes: str | None = None,
    ) -> InventoryCountItem:
        """
        Resolve a counted line and mark it ``verified``.

        ``accept_count`` keeps the physical quantity, ``keep_system`` the
        snapshot, ``manual_adjust`` the supplied ``manual_quantity``.
        """
        action = ReconcileAction(action)

        with self._locks.hold(self._count_key(count_id)):
            count = self._require_count(count_id)
            self._require_editable(count, "reconcile_item")
            item = self._require_item(count_id, product_id)
            if not item.is_recorded:
                raise CountIncompleteError(str(count_id), [product_id])

            if action == ReconcileAction.ACCEPT_COUNT:
                resolved = item.physical_quantity
            elif action == ReconcileAction.KEEP_SYSTEM:
                resolved = item.system_quantity
            else:
                if manual_quantity is None:
                    raise ValueError("manual_adjust requires manual_quantity")
                resolved = as_quantity(manual_quantity, "reconcile")
                if resolved < ZERO:
                    raise InvalidQuantityError(str(resolved), "manual adjustment", "zero or more")

            item = replace(
                item,
                status=CountItemStatus.VERIFIED,
                resolution=action,
                resolved_quantity=resolved,
                notes=notes if notes is not None else item.notes,
            )
            self._gateway.put_count_item(item)

        logger.info(
            "count_line_reconciled",
            extra={
                "count_id": str(count_id),
                "product_id": product_id,
                "action": action.value,
                "resolved_quantity": str(resolved),
            },
        )
        return item

    def finalize(self, count_id: UUID) -> InventoryCount:
        """
        Apply the count to stock and close it.

        Every line must be recorded.  Lines whose target quantity differs
        from the snapshot produce one ``adjustment`` each; the count and all
        adjustments commit together.
        """
        with LogContext.bind(count_id=str(count_id)):
            with self._locks.hold(self._count_key(count_id)):
                count = self._require_count(count_id)
                transition = self._transition(count, "finalize")

                items = self._gateway.get_count_items(count_id)
                if not transition.allows(items):
                    pending = [i.product_id for i in items if not i.is_recorded]
                    logger.warning(
                        "count_finalize_incomplete",
                        extra={"guard": transition.guard.name, "pending_products": len(pending)},
                    )
                    raise CountIncompleteError(str(count_id), pending)

                adjustments: list[StockTransaction] = []
                line_keys = [(i.product_id, i.location_id) for i in items]
                with self._locks.hold(*line_keys):
                    with self._gateway.atomic():
                        # Lines adjusted by an earlier attempt that failed before completing
                        applied = {
                            (txn.product_id, txn.location_id): txn
                            for txn in self._gateway.transactions(
                                reference=count.reference,
                                types=(TransactionType.ADJUSTMENT,),
                            )
                        }
                        if applied:
                            logger.warning(
                                "count_finalize_resumed",
                                extra={"already_adjusted": len(applied)},
                            )
                        to_post = items if transition.posts_entry else []
                        variance_value = ZERO
                        for item in to_post:
                            delta = item.adjustment_delta
                            if delta == ZERO:
                                continue
                            adjustment = applied.get((item.product_id, item.location_id))
                            if adjustment is None:
                                adjustment = self._mutations.apply_adjustment(
                                    item.product_id,
                                    item.location_id,
                                    item.target_quantity,
                                    reason=f"inventory count {count.name}",
                                    reference=count.reference,
                                    created_by=count.created_by,
                                )
                            adjustments.append(adjustment)
                            variance_value += delta * item.unit_cost

                        completed = replace(
                            count,
                            status=CountStatus(transition.to_state),
                            total_products=len(items),
                            counted_products=len(items),
                            total_variances=len(adjustments),
                            total_variance_value=variance_value,
                            completed_at=self._clock.now(),
                        )
                        self._gateway.put_count(completed)

            logger.info(
                "count_finalized",
                extra={
                    "adjustments": len(adjustments),
                    "total_variance_value": str(completed.total_variance_value),
                },
            )
        return completed

    def cancel(self, count_id: UUID) -> InventoryCount:
        """Close the count without touching stock; recorded counts are discarded."""
        with self._locks.hold(self._count_key(count_id)):
            count = self._require_count(count_id)
            transition = self._transition(count, "cancel")

            with self._gateway.atomic():
                for item in self._gateway.get_count_items(count_id):
                    if item.is_recorded:
                        self._gateway.put_count_item(item.discard())
                cancelled = replace(
                    count,
                    status=CountStatus(transition.to_state),
                    counted_products=0,
                    cancelled_at=self._clock.now(),
                )
                self._gateway.put_count(cancelled)

        logger.info("count_cancelled", extra={"count_id": str(count_id)})
        return cancelled

    # -- queries ------------------------------------------------------------

    def get_count(self, count_id: UUID) -> InventoryCount:
        return self._require_count(count_id)

    def get_items(self, count_id: UUID) -> list[InventoryCountItem]:
        self._require_count(count_id)
        return self._gateway.get_count_items(count_id)

    def list_counts(
        self,
        status: CountStatus | str | None = None,
        location_id: str | None = None,
    ) -> list[InventoryCount]:
        return self._gateway.list_counts(
            status=CountStatus(status) if status is not None else None,
            location_id=location_id,
        )

    def variance_report(self, count_id: UUID, critical_threshold=None) -> VarianceReport:
        """
        Classify every recorded line.

        ``critical`` is set when the absolute value of unresolved
        (counted, not verified) non-matching lines exceeds
        ``critical_threshold``, or the policy's default threshold.
        """
        policy = self._config.variance_policy
        lines: list[VarianceLine] = []
        for item in self.get_items(count_id):
            if not item.is_recorded:
                continue
            variance = item.variance
            lines.append(
                VarianceLine(
                    product_id=item.product_id,
                    system_quantity=item.system_quantity,
                    physical_quantity=item.physical_quantity,
                    variance=variance,
                    variance_value=item.variance_value,
                    severity=policy.classify(variance),
                    resolved=item.status == CountItemStatus.VERIFIED,
                )
            )

        unresolved = sum(
            (abs(line.variance_value) for line in lines
             if not line.resolved and line.severity != VarianceSeverity.MATCH),
            ZERO,
        )
        threshold = None
        if critical_threshold is not None:
            threshold = as_quantity(critical_threshold, "critical_threshold")
        return VarianceReport(
            count_id=count_id,
            lines=tuple(lines),
            match_count=sum(1 for line in lines if line.severity == VarianceSeverity.MATCH),
            shortage_count=sum(1 for line in lines if line.severity == VarianceSeverity.SHORTAGE),
            overage_count=sum(1 for line in lines if line.severity == VarianceSeverity.OVERAGE),
            net_variance_value=sum((line.variance_value for line in lines), ZERO),
            unresolved_variance_value=unresolved,
            critical=policy.is_critical(unresolved, threshold),
        )

    def progress(self, count_id: UUID) -> CountProgress:
        """Counted share of the sheet and share of counted lines that matched."""
        policy = self._config.variance_policy
        items = self.get_items(count_id)
        recorded = [i for i in items if i.is_recorded]
        matched = sum(
            1 for i in recorded if policy.classify(i.variance) == VarianceSeverity.MATCH
        )
        return CountProgress(
            count_id=count_id,
            total_products=len(items),
            counted_products=len(recorded),
            verified_products=sum(1 for i in recorded if i.status == CountItemStatus.VERIFIED),
            pending_products=len(items) - len(recorded),
            completion_percent=_percent(len(recorded), len(items)),
            accuracy_percent=_percent(matched, len(recorded)),
        )
