"""
Module: erp_kernel.models.accounts
Responsibility: ORM persistence for account groups, user-created general
    ledgers, and ledger entries derived from approved entities.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Account group nature is one of 1 (Expense), 2 (Income), 3 (Asset),
      4 (Liability).
    - At most one LedgerEntry per source entity (UNIQUE source_entity_id),
      so a replayed approval can never post a second ledger.
    - LedgerEntry financial fields are write-once (ORM listener).

Failure modes:
    - IntegrityError on duplicate ledger name or duplicate source entity.
    - ImmutabilityViolationError on LedgerEntry financial field UPDATE or
      on DELETE.
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
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import TrackedBase, UUIDString
from erp_kernel.exceptions import ImmutabilityViolationError
from erp_kernel.models.approvable import ApprovableMixin


class AccountGroup(ApprovableMixin, TrackedBase):
    """
    Chart-of-accounts grouping that decides a ledger's balance side.

    Contract:
        ``nature`` drives ``balance_type_for_nature``.  Groups may nest via
        ``group_under``.
    """

    __tablename__ = "account_groups"

    __table_args__ = (
        CheckConstraint(
            "nature IN (1, 2, 3, 4)",
            name="ck_account_groups_nature",
        ),
        *ApprovableMixin.approval_constraints("account_groups"),
    )

    group_code: Mapped[str | None] = mapped_column(
        String(20), nullable=True, unique=True,
    )
    group_name: Mapped[str] = mapped_column(
        String(200), nullable=False, unique=True,
    )
    group_under: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("account_groups.id"), nullable=True,
    )
    nature: Mapped[int] = mapped_column(Integer, nullable=False)
    affects_gross_profit: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    report_type: Mapped[str | None] = mapped_column(String(2), nullable=True)
    report_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_built_in: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    def __repr__(self) -> str:
        return f"<AccountGroup {self.group_name} nature={self.nature}>"


class GeneralLedger(ApprovableMixin, TrackedBase):
    """User-created ledger master.  Approval has no derived records."""

    __tablename__ = "general_ledgers"

    __table_args__ = ApprovableMixin.approval_constraints("general_ledgers")

    ledger_name: Mapped[str] = mapped_column(
        String(200), nullable=False, unique=True,
    )
    group_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("account_groups.id"), nullable=False,
    )
    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    balance_type: Mapped[str] = mapped_column(String(2), nullable=False)
    balance_as_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_tds_applicable: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    is_tcs_applicable: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    is_gst_applicable: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    group: Mapped[AccountGroup] = relationship("AccountGroup")

    def __repr__(self) -> str:
        return f"<GeneralLedger {self.ledger_name} status={self.status}>"


class LedgerEntry(TrackedBase):
    """
    Ledger posted for an approved bank account, loan or sub-client.

    Guarantees:
        - Exactly one per source entity (UNIQUE source_entity_id).
        - ``opening_balance``, ``balance_type`` and the source reference
          never change after insert.
    """

    __tablename__ = "accounts_ledger"

    __table_args__ = (
        CheckConstraint(
            "balance_type IN ('Dr', 'Cr')",
            name="ck_accounts_ledger_balance_type",
        ),
    )

    ledger_name: Mapped[str] = mapped_column(
        String(200), nullable=False, unique=True,
    )
    group_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("account_groups.id"), nullable=False,
    )
    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    balance_type: Mapped[str] = mapped_column(String(2), nullable=False)
    balance_as_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    source_entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source_entity_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.ledger_name} "
            f"{self.opening_balance} {self.balance_type}>"
        )


# =============================================================================
# ORM-Level Immutability for ledger financial fields
# =============================================================================

_LEDGER_IMMUTABLE_FIELDS = (
    "opening_balance",
    "balance_type",
    "source_entity_type",
    "source_entity_id",
)


@event.listens_for(LedgerEntry, "before_update")
def prevent_ledger_financial_update(mapper, connection, target):
    """Reject changes to a ledger entry's opening position."""
    state = inspect(target)
    for name in _LEDGER_IMMUTABLE_FIELDS:
        if state.attrs[name].history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="LedgerEntry",
                entity_id=str(target.id),
                reason=f"{name} is immutable once posted",
            )


@event.listens_for(LedgerEntry, "before_delete")
def prevent_ledger_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries cannot be deleted",
    )
