"""
CodeGenerator -- human-readable identifiers from scoped counters.

Responsibility:
    Renders client codes (``SC001``), sub-client codes (``SC001001``) and
    invoice numbers (``EP/2024-25/001``) from per-scope sequence counters.

Architecture position:
    Kernel > Services.  Uses SequenceService for allocation and
    ``domain.codes`` / ``domain.fiscal`` for formatting.

Invariants enforced:
    - Codes within a scope are strictly increasing and unique, including
      under concurrent creation (atomic increment-and-read per scope).
    - A scope with zero prior codes starts at suffix 1.
    - When a scope's counter is created for the first time, numbering
      continues after the highest code already stored in that scope.

Failure modes:
    - CodeGenerationError if an existing code in scope is malformed or the
      scope lookup fails.  The caller aborts entity creation.
"""

from collections.abc import Iterable
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from erp_kernel.domain.codes import (
    CLIENT_CODE_PREFIX,
    CODE_WIDTH,
    DEFAULT_INVOICE_ORG,
    format_code,
    invoice_prefix,
    parse_suffix,
)
from erp_kernel.domain.fiscal import get_financial_year
from erp_kernel.exceptions import CodeGenerationError
from erp_kernel.logging_config import get_logger
from erp_kernel.models.client import Client, SubClient
from erp_kernel.models.invoice import ClientInvoice
from erp_kernel.services.sequence_service import SequenceService

logger = get_logger("services.code_generator")


class CodeGenerator:
    """
    Scoped identifier generation.

    Contract:
        ``next_code(scope, prefix, width)`` allocates the next number in
        ``scope`` and renders it after ``prefix``.  The convenience methods
        fix the scope and prefix for each identifier family.

    Non-goals:
        - Does NOT commit.  A rolled-back creation returns its number.
    """

    CLIENT_SCOPE = "code:client"

    def __init__(self, session: Session, sequences: SequenceService | None = None):
        self._session = session
        self._sequences = sequences or SequenceService(session)

    def next_code(
        self,
        scope: str,
        prefix: str,
        width: int = CODE_WIDTH,
        existing: Iterable[str] = (),
    ) -> str:
        """
        Allocate and render the next code in ``scope``.

        Args:
            scope: Counter name.
            prefix: Literal prefix of every code in the scope.
            width: Zero-pad width of the numeric suffix.
            existing: Codes already stored in the scope; read only when the
                counter does not exist yet.
        """
        floor = 0
        if self._sequences.current_value(scope) is None:
            floor = max(
                (parse_suffix(code, prefix, width) for code in existing),
                default=0,
            )
        seq = self._sequences.next_value(scope, floor=floor)
        code = format_code(prefix, seq, width)
        logger.info(
            "code_generated",
            extra={"scope": scope, "code": code, "value": seq},
        )
        return code

    def next_client_code(self) -> str:
        """Next ``SC###`` client code."""
        return self.next_code(
            self.CLIENT_SCOPE,
            CLIENT_CODE_PREFIX,
            existing=self._existing(
                self.CLIENT_SCOPE, select(Client.client_code)
            ),
        )

    def next_sub_client_code(self, parent_code: str) -> str:
        """Next sub-client code under the client ``parent_code``."""
        scope = f"code:sub_client:{parent_code}"
        return self.next_code(
            scope,
            parent_code,
            existing=self._existing(
                scope,
                select(SubClient.sub_client_code)
                .join(Client, SubClient.main_client_id == Client.id)
                .where(Client.client_code == parent_code),
            ),
        )

    def next_invoice_number(
        self,
        invoice_date: date,
        org: str = DEFAULT_INVOICE_ORG,
    ) -> str:
        """Next ``<org>/<FY>/###`` invoice number for the date's financial year."""
        financial_year = get_financial_year(invoice_date)
        scope = f"code:invoice:{org}:{financial_year}"
        prefix = invoice_prefix(org, financial_year)
        return self.next_code(
            scope,
            prefix,
            existing=self._existing(
                scope,
                select(ClientInvoice.invoice_number).where(
                    ClientInvoice.invoice_number.startswith(prefix, autoescape=True)
                ),
            ),
        )

    def _existing(self, scope: str, stmt) -> list[str]:
        if self._sequences.current_value(scope) is not None:
            return []
        try:
            return list(self._session.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            raise CodeGenerationError(scope, f"scope lookup failed: {exc}") from exc
