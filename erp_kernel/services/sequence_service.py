"""
Per-scope counters for client codes, sub-client codes and invoice numbers.

One ``SequenceCounter`` row per scope name (``code:client``,
``code:sub_client:SC001``, ``code:invoice:EP:2024-25``).  Allocation is
increment-and-read on that row under ``SELECT ... FOR UPDATE``; the
counter is never derived from the highest stored code, which would let
two concurrent creations compute the same number.

Allocations roll back with the caller's transaction.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp_kernel.logging_config import get_logger
from erp_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Strictly increasing integers per scope.

    The first allocation in a scope creates its counter at ``floor + 1``;
    ``floor`` is how code generators continue numbering after codes that
    were stored before the counter existed.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, scope: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == scope)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_counter(self, scope: str, value: int) -> bool:
        """
        Insert the counter row at ``value``.

        Returns False if a concurrent transaction created it first; the
        SAVEPOINT keeps the rest of the caller's work intact.
        """
        savepoint = self._session.begin_nested()
        try:
            self._session.add(SequenceCounter(name=scope, current_value=value))
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"scope": scope})
            return False
        savepoint.commit()
        return True

    def next_value(self, scope: str, floor: int = 0) -> int:
        counter = self._locked_counter(scope)
        if counter is None:
            if self._create_counter(scope, floor + 1):
                value = floor + 1
                logger.debug("sequence_allocated", extra={"scope": scope, "value": value})
                return value
            counter = self._locked_counter(scope)
            if counter is None:
                raise RuntimeError(f"sequence counter {scope!r} vanished after insert race")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated", extra={"scope": scope, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, scope: str) -> int | None:
        """Last allocated value, or None if the scope was never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == scope)
        ).scalar_one_or_none()

    def reset(self, scope: str, value: int = 0) -> None:
        """Set a counter outright. Data fixes and tests only."""
        counter = self._locked_counter(scope)
        if counter is None:
            self._session.add(SequenceCounter(name=scope, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()
