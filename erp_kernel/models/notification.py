"""
Module: erp_kernel.models.notification
Responsibility: ORM persistence for pending-action notifications.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per related entity (UNIQUE related_entity_id).  A level
      advance updates the row in place; a terminal transition closes it.
      There is never a second open row for the same entity.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base, UUIDString


class PendingNotification(Base):
    """Work item addressed to (role, path, level) for one entity."""

    __tablename__ = "pending_notifications"

    __table_args__ = (
        CheckConstraint(
            "status IN ('Pending', 'Approved', 'Rejected')",
            name="ck_pending_notifications_status",
        ),
        Index("ix_pending_notifications_role_status", "role_id", "status"),
        Index("ix_pending_notifications_workflow", "workflow_id", "status"),
    )

    workflow_id: Mapped[int] = mapped_column(Integer, nullable=False)
    related_entity_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    level_id: Mapped[int] = mapped_column(Integer, nullable=False)
    role_id: Mapped[int] = mapped_column(Integer, nullable=False)
    path_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Pending",
    )
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    @property
    def is_open(self) -> bool:
        return self.status == "Pending"

    def __repr__(self) -> str:
        return (
            f"<PendingNotification entity={self.related_entity_id} "
            f"level={self.level_id} role={self.role_id} status={self.status}>"
        )
