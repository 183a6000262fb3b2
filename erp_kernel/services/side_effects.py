"""
PostApprovalService -- derived records created when an entity is approved.

Responsibility:
    Posts the ledger of an approved bank account, loan or sub-client, and
    the opening-balance invoices of a sub-client (one per cost-centre line).

Architecture position:
    Kernel > Services.  Invoked by entity handlers from the WorkflowEngine,
    only on the terminal Approved transition.  The engine wraps each call
    in a SAVEPOINT; a failure is reported, never allowed to undo the
    approval.

Invariants enforced:
    - At most one LedgerEntry per source entity (checked here and by a
      unique constraint).
    - Opening-balance invoices are processed line by line, each inside its
      own SAVEPOINT: a bad line rolls back only itself, counts as a
      failure, and the remaining lines continue.
    - Invoice balance fields start equal to the original amounts.

Failure modes:
    - DependencyError: accounting group missing (whole handler fails), or
      cost centre missing (one line fails).
    - ValidationError: a line without cost centre code or name (one line
      fails).
    - DuplicateError: ledger or invoice already exists.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.codes import (
    OPENING_BALANCE_PO_NUMBER,
    opening_balance_invoice_number,
)
from erp_kernel.domain.fiscal import BalanceType, balance_type_for_nature, get_financial_year
from erp_kernel.domain.workflow import Actor, EntityType, SideEffectReport
from erp_kernel.exceptions import (
    DependencyError,
    DuplicateError,
    ErpKernelError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.models.accounts import AccountGroup, LedgerEntry
from erp_kernel.models.banking import BankAccount, Loan
from erp_kernel.models.client import CostCenterBalance, SubClient
from erp_kernel.models.cost_centre import CostCentre
from erp_kernel.models.invoice import ClientInvoice
from erp_kernel.services.base import BaseService

logger = get_logger("services.side_effects")

_ZERO = Decimal("0")


class PostApprovalService(BaseService):
    """
    Creates ledger entries and opening-balance invoices.

    Contract:
        Each public method returns a SideEffectReport listing the records
        it created, with ``failed``/``reasons`` for skipped invoice lines.
        A whole-handler failure is raised.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Ledger posting
    # ------------------------------------------------------------------

    def post_ledger(
        self,
        *,
        ledger_name: str,
        group_id: UUID,
        opening_balance: Decimal,
        balance_type: BalanceType,
        balance_as_on: date | None,
        source_entity_type: EntityType,
        source_entity_id: UUID,
        actor: Actor,
    ) -> LedgerEntry:
        """
        Insert the ledger of an approved entity.

        Raises:
            DuplicateError: the source entity already has a ledger, or the
                ledger name is taken.
        """
        existing = self.session.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.source_entity_id == source_entity_id
            )
        ).first()
        if existing is not None:
            raise DuplicateError(
                "ledger_entry", "source_entity_id", str(source_entity_id),
            )

        ledger = LedgerEntry(
            ledger_name=ledger_name,
            group_id=group_id,
            opening_balance=opening_balance,
            balance_type=BalanceType(balance_type).value,
            balance_as_on=balance_as_on,
            source_entity_type=EntityType(source_entity_type).value,
            source_entity_id=source_entity_id,
            created_by_id=actor.actor_id,
        )
        self.session.add(ledger)
        self._flush_or_duplicate("ledger_entry", "ledger_name", ledger_name)

        logger.info(
            "ledger_posted",
            extra={
                "ledger_name": ledger_name,
                "source_entity_type": ledger.source_entity_type,
                "source_entity_id": str(source_entity_id),
                "opening_balance": opening_balance,
                "balance_type": ledger.balance_type,
            },
        )
        return ledger

    def _group(self, group_id: UUID) -> AccountGroup:
        group = self.session.get(AccountGroup, group_id)
        if group is None:
            raise DependencyError(
                "account_group", str(group_id), "Account group not found",
            )
        return group

    def bank_account_ledger(self, account: BankAccount, actor: Actor) -> SideEffectReport:
        """OD accounts carry a credit balance; every other account type a debit."""
        self._group(account.accounting_group_id)
        balance_type = BalanceType.CR if account.is_overdraft else BalanceType.DR

        report = SideEffectReport()
        report.add(
            self.post_ledger(
                ledger_name=f"{account.bank_name} - {account.account_number}",
                group_id=account.accounting_group_id,
                opening_balance=Decimal(account.opening_balance or 0),
                balance_type=balance_type,
                balance_as_on=account.balance_as_on,
                source_entity_type=EntityType.BANK_ACCOUNT,
                source_entity_id=account.id,
                actor=actor,
            )
        )
        return report

    def loan_ledger(self, loan: Loan, actor: Actor) -> SideEffectReport:
        """Balance side follows the loan's account group nature."""
        group = self._group(loan.accounting_group_id)

        report = SideEffectReport()
        report.add(
            self.post_ledger(
                ledger_name=f"{loan.lender_name} - {loan.loan_number}",
                group_id=loan.accounting_group_id,
                opening_balance=Decimal(loan.opening_balance or 0),
                balance_type=balance_type_for_nature(group.nature),
                balance_as_on=loan.balance_as_on,
                source_entity_type=EntityType.LOAN,
                source_entity_id=loan.id,
                actor=actor,
            )
        )
        return report

    # ------------------------------------------------------------------
    # Sub-client: ledger plus opening-balance invoices
    # ------------------------------------------------------------------

    def sub_client_ledger_and_invoices(
        self, sub_client: SubClient, actor: Actor
    ) -> SideEffectReport:
        """
        Post the sub-client ledger, then one invoice per opening-balance line.

        The ledger is posted unconditionally.  Invoice lines are independent:
        each failure is counted and the loop continues.
        """
        self._group(sub_client.accounting_group_id)
        main_client = sub_client.main_client
        total = sub_client.opening_total
        has_opening = sub_client.has_opening_balance

        opening_balance = abs(total) if has_opening else _ZERO
        balance_type = (
            BalanceType.DR if has_opening and total >= 0 else BalanceType.CR
        )

        report = SideEffectReport()
        report.add(
            self.post_ledger(
                ledger_name=f"{main_client.client_name} - {sub_client.sub_client_code}",
                group_id=sub_client.accounting_group_id,
                opening_balance=opening_balance,
                balance_type=balance_type,
                balance_as_on=sub_client.balance_as_on,
                source_entity_type=EntityType.SUB_CLIENT,
                source_entity_id=sub_client.id,
                actor=actor,
            )
        )

        if not has_opening:
            return report

        sub_client_code = sub_client.sub_client_code
        for line in list(sub_client.cost_centre_balances):
            line_no, cc_code = line.line_no, line.cc_code
            savepoint = self.session.begin_nested()
            try:
                invoice = self._opening_invoice(sub_client, line, actor)
            except (ErpKernelError, IntegrityError) as exc:
                savepoint.rollback()
                report.fail(f"line {line_no} ({cc_code or '-'}): {exc}")
                logger.warning(
                    "side_effect_line_failed",
                    extra={
                        "sub_client_code": sub_client_code,
                        "line_no": line_no,
                        "cc_code": cc_code,
                        "reason": str(exc),
                    },
                )
                continue
            savepoint.commit()
            report.add(invoice)

        logger.info(
            "opening_balance_invoices_processed",
            extra={
                "sub_client_code": sub_client_code,
                "succeeded": report.succeeded,
                "failed": report.failed,
            },
        )
        return report

    def _opening_invoice(
        self,
        sub_client: SubClient,
        line: CostCenterBalance,
        actor: Actor,
    ) -> ClientInvoice:
        if not line.cc_code or not line.cc_name:
            raise ValidationError(
                "cost_centre_balances",
                f"line {line.line_no}: cost centre code and name are required",
            )

        cost_centre = self.session.execute(
            select(CostCentre).where(CostCentre.cc_no == line.cc_code)
        ).scalar_one_or_none()
        if cost_centre is None:
            raise DependencyError(
                "cost_centre", line.cc_code, f"Cost centre not found: {line.cc_code}",
            )

        invoice_number = opening_balance_invoice_number(
            sub_client.sub_client_code, line.cc_code
        )
        duplicate = self.session.execute(
            select(ClientInvoice.id).where(
                ClientInvoice.invoice_number == invoice_number
            )
        ).first()
        if duplicate is not None:
            raise DuplicateError("client_invoice", "invoice_number", invoice_number)

        balance_as_on = sub_client.balance_as_on
        basic = Decimal(line.basic_amount or 0)
        cgst = Decimal(line.cgst or 0)
        sgst = Decimal(line.sgst or 0)
        igst = Decimal(line.igst or 0)
        total = Decimal(line.total or 0)

        invoice = ClientInvoice(
            invoice_number=invoice_number,
            po_number=OPENING_BALANCE_PO_NUMBER,
            client_id=sub_client.main_client_id,
            sub_client_id=sub_client.id,
            cost_centre_id=cost_centre.id,
            cc_code=line.cc_code,
            cc_name=cost_centre.cc_name,
            invoice_date=balance_as_on,
            due_date=balance_as_on,
            financial_year=get_financial_year(balance_as_on),
            basic_amount=basic,
            cgst=cgst,
            sgst=sgst,
            igst=igst,
            total_amount=total,
            balance_basic_amount=basic,
            balance_cgst=cgst,
            balance_sgst=sgst,
            balance_igst=igst,
            balance_total_amount=total,
            approval_status="Approved",
            invoice_status="Submitted",
            created_by_id=actor.actor_id,
        )
        self.session.add(invoice)
        self.session.flush()
        return invoice
