"""
Module: erp_kernel.models.client_po
Responsibility: ORM persistence for client purchase orders.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - po_number is unique.
    - client_po_status mirrors the approval lifecycle:
      Draft (created / rejected), InProgress (advanced), Approved.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import TrackedBase, UUIDString
from erp_kernel.models.approvable import ApprovableMixin
from erp_kernel.models.client import Client


class ClientPO(ApprovableMixin, TrackedBase):
    """Purchase order received from a client."""

    __tablename__ = "client_pos"

    __table_args__ = (
        CheckConstraint(
            "client_po_status IN ('Draft', 'InProgress', 'Approved')",
            name="ck_client_pos_status",
        ),
        CheckConstraint(
            "billing_plan IS NULL OR billing_plan IN "
            "('Monthly', 'Quarterly', 'Completion_Based', 'Custom')",
            name="ck_client_pos_billing_plan",
        ),
        *ApprovableMixin.approval_constraints("client_pos"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    po_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("clients.id"), nullable=False,
    )
    sub_client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("sub_clients.id"), nullable=True,
    )
    cost_centre_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("cost_centres.id"), nullable=True,
    )
    po_value: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    billing_plan: Mapped[str | None] = mapped_column(String(30), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_po_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Draft",
    )

    client: Mapped[Client] = relationship("Client")

    def __repr__(self) -> str:
        return f"<ClientPO {self.po_number} {self.client_po_status}>"
