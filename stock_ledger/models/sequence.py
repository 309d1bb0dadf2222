"""
Module: stock_ledger.models.sequence
Responsibility: Locked counter rows that hand out the ledger's append
    sequence numbers.

The aggregate max-plus-one pattern is never used: two writers reading the
same max would hand out the same number.  The counter row is read with
``SELECT ... FOR UPDATE`` (a no-op on SQLite, where the gateway's
``BEGIN IMMEDIATE`` already serialises writers) and incremented in the
caller's transaction, so a rollback returns the value.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from stock_ledger.db.base import Base
from stock_ledger.logging_config import get_logger

logger = get_logger("models.sequence")

STOCK_TRANSACTION_SEQUENCE = "stock_transaction"


class SequenceCounter(Base):
    """One named, monotonically increasing counter."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def next_sequence_value(session: Session, sequence_name: str) -> int:
    """
    Allocate the next value of ``sequence_name`` inside the caller's transaction.

    Returns:
        An integer strictly greater than every value previously committed
        for this sequence.
    """
    counter = session.execute(
        select(SequenceCounter)
        .where(SequenceCounter.name == sequence_name)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if counter is None:
        savepoint = session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=1)
            session.add(counter)
            session.flush()
            savepoint.commit()
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": 1},
            )
            return 1
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            counter = session.execute(
                select(SequenceCounter)
                .where(SequenceCounter.name == sequence_name)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()

    counter.current_value += 1
    session.flush()
    logger.debug(
        "sequence_allocated",
        extra={"sequence_name": sequence_name, "value": counter.current_value},
    )
    return counter.current_value


def advance_sequence_to(session: Session, sequence_name: str, value: int) -> None:
    """
    Make sure ``sequence_name`` never hands out ``value`` or anything below it.

    Used when rows numbered elsewhere are copied in (replication, imports).
    """
    counter = session.execute(
        select(SequenceCounter)
        .where(SequenceCounter.name == sequence_name)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if counter is None:
        session.add(SequenceCounter(name=sequence_name, current_value=value))
    elif counter.current_value < value:
        counter.current_value = value
    session.flush()
