"""
Module: erp_kernel.models.cost_centre
Responsibility: Cost centre reference data.  Sub-client opening balances
    and invoices are attributed to a cost centre resolved by ``cc_no``.

Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import TrackedBase


class CostCentre(TrackedBase):
    """A financial/operational unit identified by ``cc_no``."""

    __tablename__ = "cost_centres"

    cc_no: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    cc_name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<CostCentre {self.cc_no} {self.cc_name}>"
