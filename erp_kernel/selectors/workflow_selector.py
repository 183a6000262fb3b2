"""
Module: erp_kernel.selectors.workflow_selector
Responsibility: Read-only queries over pending notifications, approvable
    entities and signatures: verification queues, which roles have pending
    work in a workflow, and whether a workflow can be deleted.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain value types.  Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Pending counts and queues are always derived from stored
      PendingNotification rows, never from emitted signals.
"""

from collections import defaultdict
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from erp_kernel.domain.workflow import (
    ApprovalStatus,
    NotificationStatus,
    QueueItem,
    RoutingSource,
    VerificationQueue,
)
from erp_kernel.models.notification import PendingNotification
from erp_kernel.models.signature import SignatureTrail


class WorkflowSelector:
    """
    Read model for workflow housekeeping and approver queues.

    Contract:
        Accepts a Session from the caller and a RoutingSource; performs
        read-only queries.
    """

    def __init__(self, session: Session, routing: RoutingSource):
        self.session = session
        self._routing = routing

    def verification_queue(
        self,
        model: type,
        label: str,
        workflow_id: int,
        role_id: int,
    ) -> VerificationQueue:
        """
        Entities of ``model`` awaiting ``role_id`` in ``workflow_id``.

        Resolution: routing steps of the role -> open notifications on
        those (level, path) pairs -> entities still in Verification at one
        of those levels.
        """
        steps = self._routing.get_routing(workflow_id).steps_for_role(role_id)
        if not steps:
            return VerificationQueue(
                entities=[],
                has_access=False,
                message=f"Role {role_id} has no access to {label} verification",
            )

        levels = {s.level_id for s in steps}
        paths = {s.path_id for s in steps}
        entity_ids = list(
            self.session.execute(
                select(PendingNotification.related_entity_id).where(
                    PendingNotification.workflow_id == workflow_id,
                    PendingNotification.status == NotificationStatus.PENDING.value,
                    PendingNotification.role_id == role_id,
                    PendingNotification.path_id.in_(paths),
                    PendingNotification.level_id.in_(levels),
                )
            ).scalars()
        )
        if not entity_ids:
            return VerificationQueue(
                entities=[], has_access=True, message=f"No {label} pending verification",
            )

        entities = list(
            self.session.execute(
                select(model)
                .where(
                    model.id.in_(entity_ids),
                    model.status == ApprovalStatus.VERIFICATION.value,
                    model.level_id.in_(levels),
                )
                .order_by(model.created_at, model.id)
            ).scalars()
        )
        signatures = self.signatures_for([e.id for e in entities])
        return VerificationQueue(
            entities=[
                QueueItem(entity=e, signatures=tuple(signatures.get(e.id, ())))
                for e in entities
            ],
            has_access=True,
            message=f"{len(entities)} {label} pending verification",
        )

    def signatures_for(self, entity_ids: list[UUID]) -> dict[UUID, list[SignatureTrail]]:
        """Signatures grouped by entity, each list ordered by level then time."""
        if not entity_ids:
            return {}
        grouped: dict[UUID, list[SignatureTrail]] = defaultdict(list)
        rows = self.session.execute(
            select(SignatureTrail)
            .where(SignatureTrail.entity_id.in_(entity_ids))
            .order_by(
                SignatureTrail.entity_id,
                SignatureTrail.level_id,
                SignatureTrail.signed_at,
            )
        ).scalars()
        for row in rows:
            grouped[row.entity_id].append(row)
        return dict(grouped)

    def pending_roles(self, workflow_id: int) -> dict[int, bool]:
        """
        Roles of ``workflow_id`` mapped to whether they have pending work.

        A role has pending work when an open notification sits on its path
        at or beyond the role's level (work that has passed through, or is
        waiting at, that role's step).
        """
        routing = self._routing.get_routing(workflow_id)
        open_rows = self._notifications(workflow_id, only_open=True)

        pending: dict[int, bool] = {step.role_id: False for step in routing.steps}
        for notification in open_rows:
            for step in routing.steps:
                if (
                    step.path_id == notification.path_id
                    and step.level_id <= notification.level_id
                ):
                    pending[step.role_id] = True
        return pending

    def can_delete_workflow(self, workflow_id: int) -> bool:
        """False while any notification of the workflow is not Approved."""
        blocking = self.session.execute(
            select(PendingNotification.id)
            .where(
                PendingNotification.workflow_id == workflow_id,
                PendingNotification.status != NotificationStatus.APPROVED.value,
            )
            .limit(1)
        ).first()
        return blocking is None

    def notifications_for(self, workflow_id: int) -> list[PendingNotification]:
        return self._notifications(workflow_id, only_open=False)

    def _notifications(self, workflow_id: int, only_open: bool) -> list[Any]:
        stmt = select(PendingNotification).where(
            PendingNotification.workflow_id == workflow_id
        )
        if only_open:
            stmt = stmt.where(
                PendingNotification.status == NotificationStatus.PENDING.value
            )
        return list(
            self.session.execute(
                stmt.order_by(PendingNotification.created_at, PendingNotification.id)
            ).scalars()
        )
