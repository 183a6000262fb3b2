"""
Module: erp_kernel.models.signature
Responsibility: Append-only approval signatures.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE(entity_id, level_id, role_id): a role signs a level once.
    - Rows are never updated or deleted (ORM listeners).

Failure modes:
    - IntegrityError on a duplicate signature.
    - ImmutabilityViolationError on UPDATE/DELETE.

Audit relevance:
    The signature trail is the approval history of an entity: who signed
    at which level, with what remarks, and when.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base, UUIDString
from erp_kernel.exceptions import ImmutabilityViolationError


class SignatureTrail(Base):
    """One approver's signature at one level of one entity."""

    __tablename__ = "signature_trail"

    __table_args__ = (
        UniqueConstraint(
            "entity_id", "level_id", "role_id",
            name="uq_signature_trail_entity_level_role",
        ),
        Index("ix_signature_trail_entity", "entity_id", "level_id"),
    )

    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    workflow_id: Mapped[int] = mapped_column(Integer, nullable=False)
    level_id: Mapped[int] = mapped_column(Integer, nullable=False)
    role_id: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    remarks: Mapped[str] = mapped_column(Text, nullable=False, default="")
    signed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<SignatureTrail entity={self.entity_id} level={self.level_id} "
            f"role={self.role_id} action={self.action}>"
        )


@event.listens_for(SignatureTrail, "before_update")
def prevent_signature_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="SignatureTrail",
        entity_id=str(target.id),
        reason="Signatures are immutable -- cannot modify",
    )


@event.listens_for(SignatureTrail, "before_delete")
def prevent_signature_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="SignatureTrail",
        entity_id=str(target.id),
        reason="Signatures are immutable -- cannot delete",
    )
