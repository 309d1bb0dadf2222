"""
Typed Exception Hierarchy for the Stock Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock mutations fail for very different reasons: a product that does not
exist, two cashiers racing on the same shelf, a transfer leg that could not
be written.  Callers must react differently to each (fix the request, retry
with backoff, page someone), so every failure has its own class, a
machine-readable CODE, and structured attributes.  Nothing here is meant to
be matched by message text.

    try:
        mutations.apply_sale("P1", "W1", Decimal("2"), reference="INV-7")
    except ContendedError as e:
        retry_later(e.keys)
    except ProductNotFoundError as e:
        api_response(code=e.code, product_id=e.product_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockLedgerError (base)
    |
    +-- NotFoundError
    |   +-- StockLevelNotFoundError
    |   +-- ProductNotFoundError
    |   +-- LocationNotFoundError
    |   +-- CountNotFoundError
    |   +-- CountItemNotFoundError
    |
    +-- InvariantViolationError
    |
    +-- ConcurrencyError
    |   +-- ContendedError
    |   +-- OptimisticLockError
    |
    +-- TransferError
    |   +-- InvalidTransferError
    |   +-- PartialTransferFailureError
    |
    +-- StockPolicyError
    |   +-- InvalidQuantityError
    |   +-- InsufficientStockError
    |
    +-- CountError
    |   +-- InvalidCountTransitionError
    |   +-- CountIncompleteError
    |   +-- CountClosedError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- PersistenceError
        +-- StoreDivergenceError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | Recoverable | When Raised
-------------|----------------------------|-------------|---------------------------------
Not found    | STOCK_LEVEL_NOT_FOUND      | yes         | Strict lookup of a missing level
             | PRODUCT_NOT_FOUND          | no          | Unknown product id
             | LOCATION_NOT_FOUND         | no          | Unknown location id
             | COUNT_NOT_FOUND            | no          | Unknown inventory count id
             | COUNT_ITEM_NOT_FOUND       | no          | Product not on the count sheet
-------------|----------------------------|-------------|---------------------------------
Ledger       | INVARIANT_VIOLATION        | no          | previous/new quantity mismatch
-------------|----------------------------|-------------|---------------------------------
Concurrency  | CONTENDED                  | yes (retry) | Key lock not acquired in time
             | OPTIMISTIC_LOCK_CONFLICT   | yes (retry) | Level version changed underneath
-------------|----------------------------|-------------|---------------------------------
Transfer     | INVALID_TRANSFER           | no          | Source and target are the same
             | PARTIAL_TRANSFER_FAILURE   | no          | One leg failed, other rolled back
-------------|----------------------------|-------------|---------------------------------
Policy       | INVALID_QUANTITY           | no          | Non-positive or negative quantity
             | INSUFFICIENT_STOCK         | no          | Negative stock while disallowed
-------------|----------------------------|-------------|---------------------------------
Count        | INVALID_COUNT_TRANSITION   | no          | State machine violation
             | COUNT_INCOMPLETE           | no          | Finalize with pending lines
             | COUNT_CLOSED               | no          | Mutating a terminal count
-------------|----------------------------|-------------|---------------------------------
Immutability | IMMUTABILITY_VIOLATION     | no          | UPDATE/DELETE on ledger rows
-------------|----------------------------|-------------|---------------------------------
Persistence  | STORE_DIVERGENCE           | no          | Primary and fallback disagree

Negative stock after a sale and zero-delta adjustments are accepted
business states, not errors.
"""


class StockLedgerError(Exception):
    """
    Base exception for all stock ledger errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_LEDGER_ERROR"


# Not-found exceptions


class NotFoundError(StockLedgerError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class StockLevelNotFoundError(NotFoundError):
    """No stock level exists yet for the (product, location) pair."""

    code: str = "STOCK_LEVEL_NOT_FOUND"

    def __init__(self, product_id: str, location_id: str):
        self.product_id = product_id
        self.location_id = location_id
        super().__init__(
            f"No stock level for product {product_id} at location {location_id}"
        )


class ProductNotFoundError(NotFoundError):
    """Product id is not known to the reference directory."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class LocationNotFoundError(NotFoundError):
    """Location id is not known to the reference directory."""

    code: str = "LOCATION_NOT_FOUND"

    def __init__(self, location_id: str):
        self.location_id = location_id
        super().__init__(f"Location not found: {location_id}")


class CountNotFoundError(NotFoundError):
    """Inventory count with given id was not found."""

    code: str = "COUNT_NOT_FOUND"

    def __init__(self, count_id: str):
        self.count_id = count_id
        super().__init__(f"Inventory count not found: {count_id}")


class CountItemNotFoundError(NotFoundError):
    """Product has no line on the given count."""

    code: str = "COUNT_ITEM_NOT_FOUND"

    def __init__(self, count_id: str, product_id: str):
        self.count_id = count_id
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} is not on inventory count {count_id}"
        )


# Ledger invariant


class InvariantViolationError(StockLedgerError):
    """
    A ledger entry does not bracket the stock level change.

    Either ``new_quantity != previous_quantity + quantity`` or the
    ``previous_quantity`` read does not match the live store.  Indicates a
    concurrency bug or a lock bypass; the operation is aborted with no
    partial writes.
    """

    code: str = "INVARIANT_VIOLATION"

    def __init__(
        self,
        product_id: str,
        location_id: str,
        reason: str,
        expected: str | None = None,
        actual: str | None = None,
    ):
        self.product_id = product_id
        self.location_id = location_id
        self.reason = reason
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Ledger invariant violated for {product_id}@{location_id}: {reason}"
            + (f" (expected {expected}, actual {actual})" if expected is not None else "")
        )


# Concurrency exceptions


class ConcurrencyError(StockLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ContendedError(ConcurrencyError):
    """
    A per-key lock could not be acquired within the configured timeout.

    Recoverable: the caller may retry with backoff.
    """

    code: str = "CONTENDED"

    def __init__(self, keys: list[tuple[str, str]], timeout_seconds: float):
        self.keys = [f"{p}@{loc}" for p, loc in keys]
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Could not lock {', '.join(self.keys)} within {timeout_seconds}s"
        )


class OptimisticLockError(ConcurrencyError):
    """Stored stock level version changed between read and write."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        product_id: str,
        location_id: str,
        expected_version: int,
        actual_version: int,
    ):
        self.product_id = product_id
        self.location_id = location_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification of {product_id}@{location_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Transfer exceptions


class TransferError(StockLedgerError):
    """Base exception for transfer errors."""

    code: str = "TRANSFER_ERROR"


class InvalidTransferError(TransferError):
    """Source and target location of a transfer are the same."""

    code: str = "INVALID_TRANSFER"

    def __init__(self, product_id: str, location_id: str):
        self.product_id = product_id
        self.location_id = location_id
        super().__init__(
            f"Cannot transfer {product_id} from {location_id} to itself"
        )


class PartialTransferFailureError(TransferError):
    """
    One leg of a transfer failed.

    Raised only after the succeeded leg has been rolled back (atomic unit)
    or compensated (saga).  ``compensated`` is False only when the
    compensation itself failed, which leaves the ledger needing manual
    repair and is logged at CRITICAL.
    """

    code: str = "PARTIAL_TRANSFER_FAILURE"

    def __init__(
        self,
        product_id: str,
        source_location_id: str,
        target_location_id: str,
        reference: str,
        failed_leg: str,
        compensated: bool,
        reason: str,
    ):
        self.product_id = product_id
        self.source_location_id = source_location_id
        self.target_location_id = target_location_id
        self.reference = reference
        self.failed_leg = failed_leg
        self.compensated = compensated
        self.reason = reason
        super().__init__(
            f"Transfer {reference} of {product_id} "
            f"{source_location_id}->{target_location_id} failed on {failed_leg} "
            f"({'compensated' if compensated else 'NOT compensated'}): {reason}"
        )


# Stock policy exceptions


class StockPolicyError(StockLedgerError):
    """Base exception for requests rejected by stock policy."""

    code: str = "STOCK_POLICY_ERROR"


class InvalidQuantityError(StockPolicyError):
    """Movement quantity is not strictly positive."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: str, operation: str, requirement: str = "positive"):
        self.quantity = quantity
        self.operation = operation
        self.requirement = requirement
        super().__init__(f"{operation} quantity must be {requirement}, got {quantity}")


class InsufficientStockError(StockPolicyError):
    """Mutation would leave negative stock while negative stock is disallowed."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        location_id: str,
        available: str,
        requested: str,
    ):
        self.product_id = product_id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_id}@{location_id}: "
            f"available {available}, requested {requested}"
        )


# Inventory count exceptions


class CountError(StockLedgerError):
    """Base exception for inventory count errors."""

    code: str = "COUNT_ERROR"


class InvalidCountTransitionError(CountError):
    """Requested action is not allowed from the count's current status."""

    code: str = "INVALID_COUNT_TRANSITION"

    def __init__(self, count_id: str, from_status: str, action: str):
        self.count_id = count_id
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} inventory count {count_id} in status '{from_status}'"
        )


class CountIncompleteError(CountError):
    """Finalize was requested while lines are still pending."""

    code: str = "COUNT_INCOMPLETE"

    def __init__(self, count_id: str, pending_product_ids: list[str]):
        self.count_id = count_id
        self.pending_product_ids = pending_product_ids
        super().__init__(
            f"Inventory count {count_id} has {len(pending_product_ids)} "
            f"uncounted line(s)"
        )


class CountClosedError(CountError):
    """Attempt to modify a count (or its lines) that reached a terminal state."""

    code: str = "COUNT_CLOSED"

    def __init__(self, count_id: str, status: str):
        self.count_id = count_id
        self.status = status
        super().__init__(f"Inventory count {count_id} is {status} and cannot change")


# Immutability exceptions


class ImmutabilityError(StockLedgerError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted modification of an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Persistence exceptions


class PersistenceError(StockLedgerError):
    """Base exception for backing-store errors."""

    code: str = "PERSISTENCE_ERROR"


class StoreDivergenceError(PersistenceError):
    """
    Primary and fallback stores no longer agree.

    Raised by the replicated gateway instead of silently falling back.
    """

    code: str = "STORE_DIVERGENCE"

    def __init__(self, operation: str, key: str, reason: str):
        self.operation = operation
        self.key = key
        self.reason = reason
        super().__init__(f"Store divergence on {operation} {key}: {reason}")
