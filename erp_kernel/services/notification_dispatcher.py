"""
NotificationDispatcher -- pending-action records and live count signals.

Responsibility:
    Persists the single pending notification of each entity in approval,
    addressed to (role, path, level), and pushes advisory "pending count
    changed" signals to in-process subscribers.

Architecture position:
    Kernel > Services.  Called by the WorkflowEngine on create, advance and
    terminal transitions.

Invariants enforced:
    - Keyed upsert: one row per related entity.  ``retarget`` rewrites
      that row in place; it never inserts a second one.
    - Signals are advisory.  Authoritative counts are recomputed from the
      stored rows (``pending_count``), never from the signal stream.

Failure modes:
    - NotificationNotFoundError from ``retarget``/``close`` when the entity
      has no open notification.
    - Subscriber exceptions are logged and isolated; they never reach the
      workflow transition that emitted the signal.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.workflow import NotificationStatus
from erp_kernel.exceptions import NotificationNotFoundError, ValidationError
from erp_kernel.logging_config import get_logger
from erp_kernel.models.notification import PendingNotification
from erp_kernel.services.base import BaseService

logger = get_logger("services.notification")


@dataclass(frozen=True)
class PendingSignal:
    """A role's pending count moved by ``delta``."""

    role_id: int
    delta: int
    workflow_id: int
    entity_id: UUID


class SignalBus:
    """
    In-process publish/subscribe channel for PendingSignal.

    Delivery is best effort: a failing subscriber is logged and skipped,
    and the remaining subscribers still receive the signal.
    """

    def __init__(self):
        self._subscribers: list[Callable[[PendingSignal], None]] = []
        self._lock = threading.Lock()

    def subscribe(
        self, callback: Callable[[PendingSignal], None]
    ) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, signal: PendingSignal) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(signal)
            except Exception:
                logger.warning(
                    "signal_subscriber_failed",
                    extra={"role_id": signal.role_id, "delta": signal.delta},
                    exc_info=True,
                )


class NullSignalBus(SignalBus):
    """Discards every signal."""

    def publish(self, signal: PendingSignal) -> None:
        return None


class NotificationDispatcher(BaseService):
    """
    Open, retarget and close the pending notification of an entity.

    Contract:
        ``open`` is a keyed upsert on ``related_entity_id``.  ``retarget``
        and ``close`` require an open (Pending) row.

    Non-goals:
        - Does NOT commit.  Signals may be observed before the caller's
          commit, or for a transaction that later rolls back; consumers
          must re-read counts from the store.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        signals: SignalBus | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._signals = signals or NullSignalBus()

    def open(
        self,
        workflow_id: int,
        entity_type: str,
        entity_id: UUID,
        level_id: int,
        role_id: int,
        path_id: int,
        message: str,
    ) -> PendingNotification:
        """Create (or reopen) the entity's notification at ``level_id``."""
        now = self._clock.now()
        notification = self._by_entity(entity_id)
        if notification is None:
            notification = PendingNotification(
                workflow_id=workflow_id,
                related_entity_id=entity_id,
                entity_type=entity_type,
                level_id=level_id,
                role_id=role_id,
                path_id=path_id,
                status=NotificationStatus.PENDING.value,
                message=message,
                created_at=now,
                updated_at=now,
            )
            self.session.add(notification)
        else:
            notification.workflow_id = workflow_id
            notification.entity_type = entity_type
            notification.level_id = level_id
            notification.role_id = role_id
            notification.path_id = path_id
            notification.status = NotificationStatus.PENDING.value
            notification.message = message
            notification.updated_at = now
        self.session.flush()

        logger.info(
            "notification_opened",
            extra={
                "entity_id": str(entity_id),
                "workflow_id": workflow_id,
                "level_id": level_id,
                "role_id": role_id,
                "path_id": path_id,
            },
        )
        self._emit(role_id, 1, workflow_id, entity_id)
        return notification

    def retarget(
        self,
        entity_id: UUID,
        level_id: int,
        role_id: int,
        path_id: int,
        message: str | None = None,
    ) -> PendingNotification:
        """Move the open notification to a new level/role/path in place."""
        notification = self._open_for(entity_id)
        previous_role = notification.role_id

        notification.level_id = level_id
        notification.role_id = role_id
        notification.path_id = path_id
        if message is not None:
            notification.message = message
        notification.updated_at = self._clock.now()
        self.session.flush()

        logger.info(
            "notification_retargeted",
            extra={
                "entity_id": str(entity_id),
                "level_id": level_id,
                "from_role_id": previous_role,
                "role_id": role_id,
            },
        )
        self._emit(previous_role, -1, notification.workflow_id, entity_id)
        self._emit(role_id, 1, notification.workflow_id, entity_id)
        return notification

    def close(
        self,
        entity_id: UUID,
        final_status: NotificationStatus,
        message: str | None = None,
    ) -> PendingNotification:
        """Close the open notification as Approved or Rejected."""
        final_status = NotificationStatus(final_status)
        if final_status is NotificationStatus.PENDING:
            raise ValidationError("final_status", "a notification cannot close as Pending")

        notification = self._open_for(entity_id)
        notification.status = final_status.value
        if message is not None:
            notification.message = message
        notification.updated_at = self._clock.now()
        self.session.flush()

        logger.info(
            "notification_closed",
            extra={
                "entity_id": str(entity_id),
                "final_status": final_status.value,
                "role_id": notification.role_id,
            },
        )
        self._emit(notification.role_id, -1, notification.workflow_id, entity_id)
        return notification

    def pending_count(self, role_id: int) -> int:
        """Open notifications addressed to ``role_id``, counted from storage."""
        return self.session.execute(
            select(func.count(PendingNotification.id)).where(
                PendingNotification.role_id == role_id,
                PendingNotification.status == NotificationStatus.PENDING.value,
            )
        ).scalar_one()

    def pending_for_role(self, role_id: int) -> list[PendingNotification]:
        return list(
            self.session.execute(
                select(PendingNotification)
                .where(
                    PendingNotification.role_id == role_id,
                    PendingNotification.status == NotificationStatus.PENDING.value,
                )
                .order_by(PendingNotification.created_at, PendingNotification.id)
            ).scalars()
        )

    def _by_entity(self, entity_id: UUID) -> PendingNotification | None:
        return self.session.execute(
            select(PendingNotification).where(
                PendingNotification.related_entity_id == entity_id
            )
        ).scalar_one_or_none()

    def _open_for(self, entity_id: UUID) -> PendingNotification:
        notification = self._by_entity(entity_id)
        if notification is None or not notification.is_open:
            raise NotificationNotFoundError(str(entity_id))
        return notification

    def _emit(self, role_id: int, delta: int, workflow_id: int, entity_id: UUID) -> None:
        self._signals.publish(
            PendingSignal(
                role_id=role_id,
                delta=delta,
                workflow_id=workflow_id,
                entity_id=entity_id,
            )
        )
