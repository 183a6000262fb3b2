"""
Module: erp_kernel.models.banking
Responsibility: ORM persistence for bank accounts and loans.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Bank account numbers are unique regardless of letter case
      (unique functional index on lower(account_number)).
    - Loan numbers are unique.
    - Negative opening or minimum balances only on OD accounts (service
      validation; OD is the only account type that may run negative).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import TrackedBase, UUIDString
from erp_kernel.models.accounts import AccountGroup
from erp_kernel.models.approvable import ApprovableMixin


class BankAccount(ApprovableMixin, TrackedBase):
    """Company bank account.  Approval posts one ledger."""

    __tablename__ = "bank_accounts"

    account_type: Mapped[str] = mapped_column(String(10), nullable=False)
    bank_name: Mapped[str] = mapped_column(String(200), nullable=False)
    branch: Mapped[str | None] = mapped_column(String(200), nullable=True)
    account_number: Mapped[str] = mapped_column(String(50), nullable=False)
    ifsc_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    account_opening_date: Mapped[date] = mapped_column(Date, nullable=False)
    balance_as_on: Mapped[date] = mapped_column(Date, nullable=False)
    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    minimum_balance: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    accounting_group_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("account_groups.id"), nullable=False,
    )

    accounting_group: Mapped[AccountGroup] = relationship("AccountGroup")

    __table_args__ = (
        CheckConstraint(
            "account_type IN ('OD', 'Current', 'Savings')",
            name="ck_bank_accounts_account_type",
        ),
        *ApprovableMixin.approval_constraints("bank_accounts"),
    )

    @property
    def is_overdraft(self) -> bool:
        return self.account_type == "OD"

    def __repr__(self) -> str:
        return f"<BankAccount {self.bank_name} {self.account_number}>"


Index(
    "uq_bank_accounts_account_number_ci",
    func.lower(BankAccount.account_number),
    unique=True,
)


class Loan(ApprovableMixin, TrackedBase):
    """
    Borrowing against a lender.

    ``opening_balance`` is the loan amount for a new loan, or the
    outstanding ``current_balance`` when recording an existing one.
    """

    __tablename__ = "loans"

    __table_args__ = (
        CheckConstraint(
            "loan_type IN ('secured', 'unsecured')",
            name="ck_loans_loan_type",
        ),
        CheckConstraint(
            "update_type IN ('new', 'existing')",
            name="ck_loans_update_type",
        ),
        *ApprovableMixin.approval_constraints("loans"),
    )

    loan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    update_type: Mapped[str] = mapped_column(String(20), nullable=False)
    lender_name: Mapped[str] = mapped_column(String(200), nullable=False)
    loan_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True,
    )
    loan_amount: Mapped[Decimal] = mapped_column(nullable=False)
    current_balance: Mapped[Decimal | None] = mapped_column(nullable=True)
    interest_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    tenure_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_charges: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    documentation_charges: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    insurance_charges: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    other_charges: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    disbursed_amount: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    balance_as_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    accounting_group_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("account_groups.id"), nullable=False,
    )

    accounting_group: Mapped[AccountGroup] = relationship("AccountGroup")

    @property
    def total_charges(self) -> Decimal:
        return (
            Decimal(self.processing_charges or 0)
            + Decimal(self.documentation_charges or 0)
            + Decimal(self.insurance_charges or 0)
            + Decimal(self.other_charges or 0)
        )

    def __repr__(self) -> str:
        return f"<Loan {self.lender_name} {self.loan_number}>"
