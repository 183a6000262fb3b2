"""
Module: erp_kernel.models.client
Responsibility: ORM persistence for clients, sub-clients (one GST
    registration per state under a client) and sub-client opening-balance
    lines per cost centre.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - client_code and sub_client_code are unique.
    - At most one sub-client per (main_client_id, state_code).

Failure modes:
    - IntegrityError on duplicate code or duplicate state registration;
      the service layer translates these to DuplicateError.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import Base, TrackedBase, UUIDString
from erp_kernel.models.approvable import ApprovableMixin


class Client(ApprovableMixin, TrackedBase):
    """Customer master.  ``client_code`` is generated as ``SC###``."""

    __tablename__ = "clients"

    __table_args__ = (
        CheckConstraint(
            "client_status IN ('Active', 'Inactive')",
            name="ck_clients_client_status",
        ),
        *ApprovableMixin.approval_constraints("clients"),
    )

    client_code: Mapped[str] = mapped_column(
        String(20), nullable=False, unique=True,
    )
    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    client_type: Mapped[str] = mapped_column(String(30), nullable=False)
    pan_number: Mapped[str | None] = mapped_column(String(10), nullable=True)
    gst_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    main_gst_number: Mapped[str | None] = mapped_column(String(15), nullable=True)
    credit_period: Mapped[int | None] = mapped_column(Integer, nullable=True)
    credit_limit: Mapped[Decimal | None] = mapped_column(nullable=True)
    client_status: Mapped[str] = mapped_column(
        String(10), nullable=False, default="Active",
    )
    accounting_group_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("account_groups.id"), nullable=False,
    )

    sub_clients: Mapped[list["SubClient"]] = relationship(
        "SubClient",
        back_populates="main_client",
        order_by="SubClient.sub_client_code",
    )

    def __repr__(self) -> str:
        return f"<Client {self.client_code} {self.client_name}>"


class SubClient(ApprovableMixin, TrackedBase):
    """
    A client's GST registration in one state.

    Approval posts a ledger and, with ``has_opening_balance``, one
    opening-balance invoice per cost-centre line.
    """

    __tablename__ = "sub_clients"

    __table_args__ = (
        UniqueConstraint(
            "main_client_id", "state_code",
            name="uq_sub_clients_state_per_client",
        ),
        *ApprovableMixin.approval_constraints("sub_clients"),
    )

    main_client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("clients.id"), nullable=False, index=True,
    )
    sub_client_code: Mapped[str] = mapped_column(
        String(30), nullable=False, unique=True,
    )
    gst_number: Mapped[str | None] = mapped_column(String(15), nullable=True)
    state_code: Mapped[str] = mapped_column(String(2), nullable=False)
    billing_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    has_opening_balance: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    balance_as_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    accounting_group_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("account_groups.id"), nullable=False,
    )

    main_client: Mapped[Client] = relationship(
        "Client", back_populates="sub_clients",
    )
    cost_centre_balances: Mapped[list["CostCenterBalance"]] = relationship(
        "CostCenterBalance",
        back_populates="sub_client",
        order_by="CostCenterBalance.line_no",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def opening_total(self) -> Decimal:
        return sum(
            (Decimal(line.total or 0) for line in self.cost_centre_balances),
            Decimal("0"),
        )

    def __repr__(self) -> str:
        return f"<SubClient {self.sub_client_code} state={self.state_code}>"


class CostCenterBalance(Base):
    """One opening-balance line of a sub-client, keyed by cost centre code."""

    __tablename__ = "sub_client_cc_balances"

    __table_args__ = (
        UniqueConstraint(
            "sub_client_id", "line_no",
            name="uq_sub_client_cc_balances_line",
        ),
    )

    sub_client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sub_clients.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    cc_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cc_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    basic_amount: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    cgst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    sgst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    igst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    total: Mapped[Decimal] = mapped_column(nullable=False, default=0)

    sub_client: Mapped[SubClient] = relationship(
        "SubClient", back_populates="cost_centre_balances",
    )
