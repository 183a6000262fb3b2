"""
Module: erp_kernel.models.invoice
Responsibility: ORM persistence for client invoices, including the
    opening-balance invoices derived from an approved sub-client.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - invoice_number is unique.
    - financial_year matches ``YYYY-YY``.
    - balance_* amounts start equal to the original amounts; later receipt
      and credit-note processing reduces them.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from erp_kernel.db.base import TrackedBase, UUIDString
from erp_kernel.exceptions import ValidationError

_FINANCIAL_YEAR_RE = re.compile(r"^\d{4}-\d{2}$")


class ClientInvoice(TrackedBase):
    """Receivable raised against a sub-client and cost centre."""

    __tablename__ = "client_invoices"

    invoice_number: Mapped[str] = mapped_column(
        String(80), nullable=False, unique=True,
    )
    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("clients.id"), nullable=True,
    )
    sub_client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("sub_clients.id"), nullable=True, index=True,
    )
    cost_centre_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("cost_centres.id"), nullable=True,
    )
    cc_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cc_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    financial_year: Mapped[str] = mapped_column(String(7), nullable=False)

    basic_amount: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    cgst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    sgst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    igst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=0)

    balance_basic_amount: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    balance_cgst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    balance_sgst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    balance_igst: Mapped[Decimal] = mapped_column(nullable=False, default=0)
    balance_total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=0)

    approval_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Approved",
    )
    invoice_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Submitted",
    )

    @validates("financial_year")
    def _check_financial_year(self, key, value):
        if not _FINANCIAL_YEAR_RE.match(value or ""):
            raise ValidationError(
                "financial_year", f"expected YYYY-YY, got {value!r}",
            )
        return value

    def __repr__(self) -> str:
        return f"<ClientInvoice {self.invoice_number} {self.total_amount}>"
