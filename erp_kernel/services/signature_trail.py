"""
SignatureTrailService -- append-only approval signatures.

Responsibility:
    Records who signed an entity at which level, with remarks and time.

Architecture position:
    Kernel > Services.  Called by the WorkflowEngine on create (level 0),
    verify and reject.

Invariants enforced:
    - A role signs a given level of a given entity at most once.
    - Rows are append-only (see models/signature.py listeners).
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.workflow import Actor
from erp_kernel.exceptions import DuplicateError
from erp_kernel.logging_config import get_logger
from erp_kernel.models.signature import SignatureTrail
from erp_kernel.services.base import BaseService

logger = get_logger("services.signature")


class SignatureTrailService(BaseService):
    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def sign(
        self,
        entity_type: str,
        entity_id: UUID,
        workflow_id: int,
        level_id: int,
        actor: Actor,
        action: str,
        remarks: str,
    ) -> SignatureTrail:
        """
        Append a signature.

        Raises:
            DuplicateError: ``actor.role_id`` already signed ``level_id``.
        """
        already_signed = self.session.execute(
            select(SignatureTrail.id).where(
                SignatureTrail.entity_id == entity_id,
                SignatureTrail.level_id == level_id,
                SignatureTrail.role_id == actor.role_id,
            )
        ).first()
        message = (
            f"Role {actor.role_id} already signed level {level_id} "
            f"of {entity_type} {entity_id}"
        )
        if already_signed is not None:
            raise DuplicateError("signature", "level_id", level_id, message)

        signature = SignatureTrail(
            entity_type=entity_type,
            entity_id=entity_id,
            workflow_id=workflow_id,
            level_id=level_id,
            role_id=actor.role_id,
            actor_id=actor.actor_id,
            actor_name=actor.display_name,
            action=action,
            remarks=remarks,
            signed_at=self._clock.now(),
        )
        self.session.add(signature)
        self._flush_or_duplicate("signature", "level_id", level_id, message)

        logger.info(
            "signature_recorded",
            extra={
                "entity_id": str(entity_id),
                "level_id": level_id,
                "role_id": actor.role_id,
                "action": action,
            },
        )
        return signature

    def history(self, entity_id: UUID) -> list[SignatureTrail]:
        """Signatures of one entity ordered by level, then signing time."""
        return list(
            self.session.execute(
                select(SignatureTrail)
                .where(SignatureTrail.entity_id == entity_id)
                .order_by(
                    SignatureTrail.level_id,
                    SignatureTrail.signed_at,
                    SignatureTrail.id,
                )
            ).scalars()
        )
