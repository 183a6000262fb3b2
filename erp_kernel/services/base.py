"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service in the kernel.  Services receive a SQLAlchemy
    ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back the outer transaction themselves.  They
    may open and release SAVEPOINTs (``session.begin_nested()``) to isolate
    a sub-step, which leaves the caller's transaction intact.

Failure modes:
    - IntegrityError raised by a flush is translated into a typed kernel
      error by ``_flush_or_duplicate``.
"""

from abc import ABC
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp_kernel.exceptions import DuplicateError


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the caller's transaction.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong
          in ``erp_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _flush_or_duplicate(
        self,
        entity_type: str,
        field: str,
        value: Any,
        message: str = "",
    ) -> None:
        """
        Flush inside a SAVEPOINT; a unique violation becomes DuplicateError.

        The SAVEPOINT keeps the caller's transaction usable after the
        violation, so no partial entity survives.
        """
        savepoint = self.session.begin_nested()
        try:
            self.session.flush()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateError(entity_type, field, value, message) from exc
        savepoint.commit()
