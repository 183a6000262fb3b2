"""
Module: erp_kernel.models.approvable
Responsibility: Column mixin shared by every entity that moves through the
    multi-level approval workflow.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status is one of Verification / Returned / Approved / Rejected
      (DB check constraint declared by each concrete table).
    - level_id is a positive integer; entities are created at level 1.
    - status and level_id are written only by the workflow engine, through
      a conditional UPDATE keyed on the expected (status, level_id).
"""

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

APPROVAL_STATUS_VALUES = ("Verification", "Returned", "Approved", "Rejected")


class ApprovableMixin:
    """Lifecycle columns for approvable entities."""

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="Verification",
        index=True,
    )
    level_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    workflow_id: Mapped[int] = mapped_column(Integer, nullable=False)

    @classmethod
    def approval_constraints(cls, table_name: str) -> tuple:
        """Check constraints every approvable table carries."""
        quoted = ", ".join(f"'{v}'" for v in APPROVAL_STATUS_VALUES)
        return (
            CheckConstraint(
                f"status IN ({quoted})",
                name=f"ck_{table_name}_valid_status",
            ),
            CheckConstraint(
                "level_id >= 1",
                name=f"ck_{table_name}_positive_level",
            ),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("Approved", "Rejected")
