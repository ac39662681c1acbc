"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for document references
    (purchase orders, receptions, requisitions) and audit events.  Uses a
    dedicated counter table with row-level locking (``SELECT ... FOR UPDATE``)
    so concurrent creators never obtain the same value.

Architecture position:
    Kernel > Services.  Called by AuditorService and by the purchasing
    services when issuing references.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value; MAX(reference) + 1 is never used.
    - Transactional: the increment becomes visible only when the caller's
      transaction commits, in the same unit as the row carrying the value.
      A rollback returns the value.

Failure modes:
    - IntegrityError on concurrent first use of a counter (handled by
      savepoint rollback and re-read).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from supply_kernel.db.base import Base
from supply_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Named counter row; one row per sequence (e.g. ``purchase_order:2026``)."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer.  Does NOT commit; the caller owns the transaction.

    Usage:
        seq = sequences.next_value(SequenceService.scoped("purchase_order", 2026))
        reference = f"BC-2026-{seq:05d}"
    """

    AUDIT_EVENT = "audit_event"
    PURCHASE_ORDER = "purchase_order"
    RECEPTION = "reception"
    REQUISITION = "requisition"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def scoped(base_name: str, scope: object) -> str:
        """Name of a counter that restarts per scope (year, day)."""
        return f"{base_name}:{scope}"

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        Postconditions:
            Returns an integer > 0 strictly greater than any previously
            committed value for this sequence name.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # Savepoint so a lost creation race does not roll back the caller
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
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
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
