"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The ledger is only trustworthy if history cannot be edited.  Corrections
are made by appending a compensating entry, never by rewriting a row.  The
gateway contract already has no update/delete operation for ledger entries;
these listeners catch everything that bypasses the gateway through the ORM
(ad-hoc scripts, migrations run in a Python shell, a future service that
forgets the rule).

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When Immutable                 | Why
------------------------|--------------------------------|-------------------------------
StockTransaction        | ALWAYS (from creation)         | The ledger is append-only
InventoryCount          | After status is terminal       | Completed/cancelled is final
InventoryCountItem      | When parent count is completed | Lines back the adjustments

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY CHECK "WAS TERMINAL" NOT "IS TERMINAL" FOR COUNTS?
   Finalisation itself sets status=completed.  We allow the transition
   in_progress -> completed and block any change after it, using the
   attribute history to find the value the row had before this flush.

2. WHY INLINE IMPORTS?
   Models import from db; importing models at module level here would make
   db depend on models.

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from stock_ledger.exceptions import ImmutabilityViolationError
from stock_ledger.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_COUNT_STATUSES = ("completed", "cancelled")


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_stock_transaction_update(mapper, connection, target):
    """Ledger entries are immutable from creation."""
    raise _blocked(
        "StockTransaction",
        str(target.id),
        "UPDATE",
        "Stock transactions are append-only; append a compensating entry instead",
    )


def _check_stock_transaction_delete(mapper, connection, target):
    """Ledger entries can never be deleted."""
    raise _blocked(
        "StockTransaction",
        str(target.id),
        "DELETE",
        "Stock transactions cannot be deleted",
    )


def _status_before_flush(target) -> str:
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    return target.status


def _check_inventory_count_update(mapper, connection, target):
    """
    Block changes to a count that was already terminal before this flush.

    Logic:
        1. Status changing FROM completed/cancelled: block.
        2. Status unchanged and terminal, any other field changing: block.
        3. Status changing TO completed/cancelled: allow (this is the transition).
    """
    if _status_before_flush(target) not in _TERMINAL_COUNT_STATUSES:
        return

    for attr in inspect(target).attrs:
        if attr.history.has_changes():
            raise _blocked(
                "InventoryCount",
                str(target.id),
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a {_status_before_flush(target)} count",
                field=attr.key,
            )


def _check_inventory_count_delete(mapper, connection, target):
    """Terminal counts are audit artifacts and cannot be deleted."""
    if _status_before_flush(target) in _TERMINAL_COUNT_STATUSES:
        raise _blocked(
            "InventoryCount",
            str(target.id),
            "DELETE",
            "Completed or cancelled counts cannot be deleted",
        )


def _parent_count_status(connection, count_id) -> str | None:
    from stock_ledger.models.inventory_count import InventoryCountModel

    table = InventoryCountModel.__table__
    return connection.execute(
        select(table.c.status).where(table.c.id == str(count_id))
    ).scalar_one_or_none()


def _check_count_item_update(mapper, connection, target):
    """Lines of a completed count are frozen."""
    if _parent_count_status(connection, target.count_id) == "completed":
        raise _blocked(
            "InventoryCountItem",
            str(target.id),
            "UPDATE",
            "Lines of a completed inventory count cannot change",
        )


def _check_count_item_delete(mapper, connection, target):
    if _parent_count_status(connection, target.count_id) == "completed":
        raise _blocked(
            "InventoryCountItem",
            str(target.id),
            "DELETE",
            "Lines of a completed inventory count cannot be deleted",
        )


def _listeners():
    from stock_ledger.models.inventory_count import (
        InventoryCountItemModel,
        InventoryCountModel,
    )
    from stock_ledger.models.stock_transaction import StockTransactionModel

    return (
        (StockTransactionModel, "before_update", _check_stock_transaction_update),
        (StockTransactionModel, "before_delete", _check_stock_transaction_delete),
        (InventoryCountModel, "before_update", _check_inventory_count_update),
        (InventoryCountModel, "before_delete", _check_inventory_count_delete),
        (InventoryCountItemModel, "before_update", _check_count_item_update),
        (InventoryCountItemModel, "before_delete", _check_count_item_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left alone.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
