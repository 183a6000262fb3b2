"""
Entity handlers -- per-type validation, construction and lifecycle hooks.

Responsibility:
    Turns a boundary payload (a plain dict) into an unsaved model instance
    for each approvable entity type, checking required fields, referenced
    records and uniqueness first.  Supplies notification wording and the
    post-approval side effect of each type.

Architecture position:
    Kernel > Services.  Registered with the EntityRegistry consumed by the
    WorkflowEngine.

Failure modes (all raised before anything is persisted):
    - ValidationError: missing or malformed field.
    - DependencyError: referenced group, client, sub-client or cost centre
      is missing or not usable.
    - DuplicateError: natural key already taken.
    - CodeGenerationError: client / sub-client code could not be allocated.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erp_kernel.domain.fiscal import AccountNature, balance_type_for_nature
from erp_kernel.domain.workflow import (
    ApprovalStatus,
    ClientPOStatus,
    EntityType,
    SideEffectReport,
)
from erp_kernel.exceptions import DependencyError, DuplicateError, ValidationError
from erp_kernel.models.accounts import AccountGroup, GeneralLedger, LedgerEntry
from erp_kernel.models.banking import BankAccount, Loan
from erp_kernel.models.client import Client, CostCenterBalance, SubClient
from erp_kernel.models.client_po import ClientPO
from erp_kernel.models.cost_centre import CostCentre
from erp_kernel.services.entity_registry import (
    EntityHandler,
    EntityRegistry,
    HandlerContext,
)

_ZERO = Decimal("0")

PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
GSTIN_RE = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
STATE_CODE_RE = re.compile(r"\d{2}")

CLIENT_TYPES = frozenset({
    "Individual",
    "Proprietorship",
    "Partnership",
    "PrivateLimited",
    "PublicLimited",
    "Government",
    "Trust",
    "Society",
})
GST_REQUIRED_CLIENT_TYPES = frozenset({"PrivateLimited", "PublicLimited", "Government"})
GST_TYPES = frozenset({"Regular", "Composite", "Unregistered"})
CLIENT_STATUSES = frozenset({"Active", "Inactive"})
BANK_ACCOUNT_TYPES = frozenset({"OD", "Current", "Savings"})
LOAN_TYPES = frozenset({"secured", "unsecured"})
LOAN_UPDATE_TYPES = frozenset({"new", "existing"})
BILLING_PLANS = frozenset({"Monthly", "Quarterly", "Completion_Based", "Custom"})
REPORT_TYPES = frozenset({"PL", "BS"})


# ---------------------------------------------------------------------------
# Payload readers
# ---------------------------------------------------------------------------


def _text(payload: dict[str, Any], field: str, required: bool = True) -> str | None:
    value = payload.get(field)
    if isinstance(value, str):
        value = value.strip()
    if value in (None, ""):
        if required:
            raise ValidationError(field, "is required")
        return None
    return str(value)


def _choice(
    payload: dict[str, Any],
    field: str,
    choices: frozenset[str],
    required: bool = True,
    default: str | None = None,
) -> str | None:
    value = _text(payload, field, required=required and default is None)
    if value is None:
        return default
    if value not in choices:
        raise ValidationError(field, f"must be one of {sorted(choices)}, got {value!r}")
    return value


def _decimal(
    payload: dict[str, Any],
    field: str,
    required: bool = False,
    default: Decimal | None = _ZERO,
) -> Decimal | None:
    value = payload.get(field)
    if value in (None, ""):
        if required:
            raise ValidationError(field, "is required")
        return default
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(field, f"not a number: {value!r}") from None


def _date(payload: dict[str, Any], field: str, required: bool = True) -> date | None:
    value = payload.get(field)
    if value in (None, ""):
        if required:
            raise ValidationError(field, "is required")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(field, f"not an ISO date: {value!r}") from None


def _bool(payload: dict[str, Any], field: str, default: bool = False) -> bool:
    value = payload.get(field, default)
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _int(payload: dict[str, Any], field: str, required: bool = False) -> int | None:
    value = payload.get(field)
    if value in (None, ""):
        if required:
            raise ValidationError(field, "is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(field, f"not an integer: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(field, f"not an integer: {value!r}") from None


def _uuid(payload: dict[str, Any], field: str, required: bool = True) -> UUID | None:
    value = payload.get(field)
    if value in (None, ""):
        if required:
            raise ValidationError(field, "is required")
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(field, f"not a UUID: {value!r}") from None


def _fetch(session: Session, model: type, entity_id: UUID, dependency: str) -> Any:
    record = session.get(model, entity_id)
    if record is None:
        raise DependencyError(dependency, str(entity_id))
    return record


def _ensure_unique(
    session: Session,
    column: Any,
    value: Any,
    entity_type: str,
    field: str,
    message: str = "",
) -> None:
    taken = session.execute(select(column).where(column == value).limit(1)).first()
    if taken is not None:
        raise DuplicateError(entity_type, field, value, message)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class AccountGroupHandler(EntityHandler):
    entity_type = EntityType.ACCOUNT_GROUP
    model = AccountGroup
    label = "Account group"
    unique_field = "group_name"

    def build(self, ctx: HandlerContext, payload: dict[str, Any]) -> AccountGroup:
        group_name = _text(payload, "group_name")
        nature = _int(payload, "nature", required=True)
        if nature not in {n.value for n in AccountNature}:
            raise ValidationError("nature", f"unknown account nature {nature}")
        parent_id = _uuid(payload, "group_under", required=False)
        if parent_id is not None:
            _fetch(ctx.session, AccountGroup, parent_id, "account_group")

        _ensure_unique(
            ctx.session, AccountGroup.group_name, group_name,
            "account_group", "group_name",
        )
        group_code = _text(payload, "group_code", required=False)
        if group_code is not None:
            _ensure_unique(
                ctx.session, AccountGroup.group_code, group_code,
                "account_group", "group_code",
            )

        return AccountGroup(
            group_code=group_code,
            group_name=group_name,
            group_under=parent_id,
            nature=nature,
            affects_gross_profit=_bool(payload, "affects_gross_profit"),
            report_type=_choice(payload, "report_type", REPORT_TYPES, required=False),
            report_index=_int(payload, "report_index"),
            is_built_in=_bool(payload, "is_built_in"),
        )


class GeneralLedgerHandler(EntityHandler):
    entity_type = EntityType.GENERAL_LEDGER
    model = GeneralLedger
    label = "Ledger"
    unique_field = "ledger_name"

    def build(self, ctx: HandlerContext, payload: dict[str, Any]) -> GeneralLedger:
        ledger_name = _text(payload, "ledger_name")
        group_id = _uuid(payload, "group_id")
        group = _fetch(ctx.session, AccountGroup, group_id, "account_group")

        for column in (GeneralLedger.ledger_name, LedgerEntry.ledger_name):
            _ensure_unique(
                ctx.session, column, ledger_name, "general_ledger", "ledger_name",
            )

        return GeneralLedger(
            ledger_name=ledger_name,
            group_id=group.id,
            opening_balance=_decimal(payload, "opening_balance"),
            balance_type=balance_type_for_nature(group.nature).value,
            balance_as_on=_date(payload, "balance_as_on", required=False),
            is_tds_applicable=_bool(payload, "is_tds_applicable"),
            is_tcs_applicable=_bool(payload, "is_tcs_applicable"),
            is_gst_applicable=_bool(payload, "is_gst_applicable"),
        )


class ClientHandler(EntityHandler):
    entity_type = EntityType.CLIENT
    model = Client
    label = "Client"
    unique_field = "client_code"

    def build(self, ctx: HandlerContext, payload: dict[str, Any]) -> Client:
        client_name = _text(payload, "client_name")
        client_type = _choice(payload, "client_type", CLIENT_TYPES)
        group_id = _uuid(payload, "accounting_group_id")
        _fetch(ctx.session, AccountGroup, group_id, "account_group")

        pan = _text(payload, "pan_number", required=client_type != "Individual")
        if pan is not None:
            pan = pan.upper()
            if not PAN_RE.match(pan):
                raise ValidationError("pan_number", f"invalid PAN format: {pan}")

        gst_number = _text(
            payload,
            "main_gst_number",
            required=client_type in GST_REQUIRED_CLIENT_TYPES,
        )
        if gst_number is not None:
            gst_number = gst_number.upper()
            if not GSTIN_RE.match(gst_number):
                raise ValidationError("main_gst_number", f"invalid GSTIN format: {gst_number}")

        credit_limit = _decimal(payload, "credit_limit", default=None)
        if credit_limit is not None and credit_limit < 0:
            raise ValidationError("credit_limit", "cannot be negative")

        return Client(
            client_code=ctx.codes.next_client_code(),
            client_name=client_name,
            client_type=client_type,
            pan_number=pan,
            gst_type=_choice(payload, "gst_type", GST_TYPES, required=False),
            main_gst_number=gst_number,
            credit_period=_int(payload, "credit_period"),
            credit_limit=credit_limit,
            client_status=_choice(
                payload, "client_status", CLIENT_STATUSES, default="Active",
            ),
            accounting_group_id=group_id,
        )

    def created_message(self, entity: Client) -> str:
        return f"New client registration: {entity.client_name} ({entity.client_code})"

    def advanced_message(self, entity: Client) -> str:
        return f"Client {entity.client_name} moved to next level of verification"

    def approved_message(self, entity: Client) -> str:
        return f"Client {entity.client_name} has been approved"

    def rejected_message(self, entity: Client) -> str:
        return f"Client {entity.client_name} has been rejected"


class SubClientHandler(EntityHandler):
    entity_type = EntityType.SUB_CLIENT
    model = SubClient
    label = "Sub-client"
    unique_field = "sub_client_code"

    def build(self, ctx: HandlerContext, payload: dict[str, Any]) -> SubClient:
        main_id = _uuid(payload, "main_client_id")
        main_client = _fetch(ctx.session, Client, main_id, "client")
        if (
            main_client.status != ApprovalStatus.APPROVED.value
            or main_client.client_status != "Active"
        ):
            raise DependencyError(
                "client",
                str(main_id),
                "Main client must be approved and active",
            )

        gst_number = _text(payload, "gst_number", required=False)
        if gst_number is not None:
            gst_number = gst_number.upper()
            if not GSTIN_RE.match(gst_number):
                raise ValidationError("gst_number", f"invalid GSTIN format: {gst_number}")
        state_code = _text(payload, "state_code", required=gst_number is None)
        if state_code is None:
            state_code = gst_number[:2]
        elif not STATE_CODE_RE.fullmatch(state_code):
            raise ValidationError("state_code", f"must be two digits: {state_code}")

        taken = ctx.session.execute(
            select(SubClient.id).where(
                SubClient.main_client_id == main_client.id,
                SubClient.state_code == state_code,
            )
        ).first()
        if taken is not None:
            raise DuplicateError(
                "sub_client",
                "state_code",
                state_code,
                "GST registration already exists for this state",
            )

        has_opening = _bool(payload, "has_opening_balance")
        balance_as_on = _date(payload, "balance_as_on", required=has_opening)
        lines = self._lines(payload.get("cost_centre_balances") or [])

        return SubClient(
            main_client_id=main_client.id,
            main_client=main_client,
            sub_client_code=ctx.codes.next_sub_client_code(main_client.client_code),
            gst_number=gst_number,
            state_code=state_code,
            billing_address=_text(payload, "billing_address", required=False),
            has_opening_balance=has_opening,
            balance_as_on=balance_as_on,
            accounting_group_id=main_client.accounting_group_id,
            cost_centre_balances=lines,
        )

    @staticmethod
    def _lines(raw_lines: list[dict[str, Any]]) -> list[CostCenterBalance]:
        lines = []
        for line_no, raw in enumerate(raw_lines, start=1):
            basic = _decimal(raw, "basic_amount")
            cgst = _decimal(raw, "cgst")
            sgst = _decimal(raw, "sgst")
            igst = _decimal(raw, "igst")
            lines.append(
                CostCenterBalance(
                    line_no=line_no,
                    cc_code=_text(raw, "cc_code", required=False),
                    cc_name=_text(raw, "cc_name", required=False),
                    basic_amount=basic,
                    cgst=cgst,
                    sgst=sgst,
                    igst=igst,
                    total=basic + cgst + sgst + igst,
                )
            )
        return lines

    def created_message(self, entity: SubClient) -> str:
        return f"New sub-client registration under {entity.main_client.client_name}"

    def advanced_message(self, entity: SubClient) -> str:
        return "Sub-client verification moved to next level"

    def approved_message(self, entity: SubClient) -> str:
        return "Sub-client has been approved"

    def rejected_message(self, entity: SubClient) -> str:
        return "Sub-client has been rejected"

    def on_approved(self, ctx: HandlerContext, entity: SubClient) -> SideEffectReport:
        return ctx.side_effects.sub_client_ledger_and_invoices(entity, ctx.actor)


class BankAccountHandler(EntityHandler):
    entity_type = EntityType.BANK_ACCOUNT
    model = BankAccount
    label = "Bank Account"
    unique_field = "account_number"

    def build(self, ctx: HandlerContext, payload: dict[str, Any]) -> BankAccount:
        account_type = _choice(payload, "account_type", BANK_ACCOUNT_TYPES)
        bank_name = _text(payload, "bank_name")
        account_number = _text(payload, "account_number")
        opening_date = _date(payload, "account_opening_date")
        balance_as_on = _date(payload, "balance_as_on")
        group_id = _uuid(payload, "accounting_group_id")
        _fetch(ctx.session, AccountGroup, group_id, "account_group")

        opening_balance = _decimal(payload, "opening_balance")
        minimum_balance = _decimal(payload, "minimum_balance")
        if account_type != "OD":
            if opening_balance < 0:
                raise ValidationError(
                    "opening_balance", "negative balance is only allowed for OD accounts",
                )
            if minimum_balance < 0:
                raise ValidationError(
                    "minimum_balance", "negative balance is only allowed for OD accounts",
                )

        taken = ctx.session.execute(
            select(BankAccount.id).where(
                func.lower(BankAccount.account_number) == account_number.lower()
            )
        ).first()
        if taken is not None:
            raise DuplicateError(
                "bank_account",
                "account_number",
                account_number,
                "Account number already exists",
            )

        return BankAccount(
            account_type=account_type,
            bank_name=bank_name,
            branch=_text(payload, "branch", required=False),
            account_number=account_number,
            ifsc_code=_text(payload, "ifsc_code", required=False),
            account_opening_date=opening_date,
            balance_as_on=balance_as_on,
            opening_balance=opening_balance,
            minimum_balance=minimum_balance,
            balance=opening_balance,
            accounting_group_id=group_id,
        )

    def display_name(self, entity: BankAccount) -> str:
        return f"{entity.bank_name} - {entity.account_number}"

    def created_message(self, entity: BankAccount) -> str:
        return f"New Bank Account Created: {self.display_name(entity)}"

    def on_approved(self, ctx: HandlerContext, entity: BankAccount) -> SideEffectReport:
        return ctx.side_effects.bank_account_ledger(entity, ctx.actor)


class LoanHandler(EntityHandler):
    entity_type = EntityType.LOAN
    model = Loan
    label = "Loan"
    unique_field = "loan_number"

    def build(self, ctx: HandlerContext, payload: dict[str, Any]) -> Loan:
        loan_type = _choice(payload, "loan_type", LOAN_TYPES)
        update_type = _choice(payload, "update_type", LOAN_UPDATE_TYPES, default="new")
        lender_name = _text(payload, "lender_name")
        loan_number = _text(payload, "loan_number")
        loan_amount = _decimal(payload, "loan_amount", required=True)
        if loan_amount <= 0:
            raise ValidationError("loan_amount", "must be positive")
        current_balance = _decimal(
            payload, "current_balance", required=update_type == "existing", default=None,
        )
        group_id = _uuid(payload, "accounting_group_id")
        _fetch(ctx.session, AccountGroup, group_id, "account_group")

        _ensure_unique(ctx.session, Loan.loan_number, loan_number, "loan", "loan_number")

        loan = Loan(
            loan_type=loan_type,
            update_type=update_type,
            lender_name=lender_name,
            loan_number=loan_number,
            loan_amount=loan_amount,
            current_balance=current_balance,
            interest_rate=_decimal(payload, "interest_rate", default=None),
            tenure_months=_int(payload, "tenure_months"),
            processing_charges=_decimal(payload, "processing_charges"),
            documentation_charges=_decimal(payload, "documentation_charges"),
            insurance_charges=_decimal(payload, "insurance_charges"),
            other_charges=_decimal(payload, "other_charges"),
            balance_as_on=_date(payload, "balance_as_on", required=False),
            accounting_group_id=group_id,
        )
        if update_type == "new":
            loan.disbursed_amount = loan_amount - loan.total_charges
            loan.opening_balance = loan_amount
        else:
            loan.disbursed_amount = loan_amount
            loan.opening_balance = current_balance
        return loan

    def display_name(self, entity: Loan) -> str:
        return f"{entity.lender_name} - {entity.loan_number}"

    def created_message(self, entity: Loan) -> str:
        if entity.update_type == "existing":
            return f"Existing Loan Updated: {self.display_name(entity)}"
        return f"New Loan Created: {self.display_name(entity)}"

    def on_approved(self, ctx: HandlerContext, entity: Loan) -> SideEffectReport:
        return ctx.side_effects.loan_ledger(entity, ctx.actor)


class ClientPOHandler(EntityHandler):
    """Mirrors the approval lifecycle into ``client_po_status``."""

    entity_type = EntityType.CLIENT_PO
    model = ClientPO
    label = "Client PO"
    unique_field = "po_number"

    def build(self, ctx: HandlerContext, payload: dict[str, Any]) -> ClientPO:
        po_number = _text(payload, "po_number")
        client_id = _uuid(payload, "client_id")
        _fetch(ctx.session, Client, client_id, "client")
        sub_client_id = _uuid(payload, "sub_client_id", required=False)
        if sub_client_id is not None:
            _fetch(ctx.session, SubClient, sub_client_id, "sub_client")
        cost_centre_id = _uuid(payload, "cost_centre_id", required=False)
        if cost_centre_id is not None:
            _fetch(ctx.session, CostCentre, cost_centre_id, "cost_centre")

        _ensure_unique(
            ctx.session, ClientPO.po_number, po_number, "client_po", "po_number",
        )

        return ClientPO(
            po_number=po_number,
            po_date=_date(payload, "po_date", required=False),
            client_id=client_id,
            sub_client_id=sub_client_id,
            cost_centre_id=cost_centre_id,
            po_value=_decimal(payload, "po_value"),
            billing_plan=_choice(payload, "billing_plan", BILLING_PLANS, required=False),
            description=_text(payload, "description", required=False),
            client_po_status=ClientPOStatus.DRAFT.value,
        )

    def created_message(self, entity: ClientPO) -> str:
        return f"New Client PO created: {entity.po_number}"

    def advanced_message(self, entity: ClientPO) -> str:
        return f"Client PO {entity.po_number} moved to next level"

    def on_advanced(self, ctx: HandlerContext, entity: ClientPO) -> None:
        entity.client_po_status = ClientPOStatus.IN_PROGRESS.value
        ctx.session.flush()

    def on_approved(self, ctx: HandlerContext, entity: ClientPO) -> SideEffectReport:
        entity.client_po_status = ClientPOStatus.APPROVED.value
        ctx.session.flush()
        return SideEffectReport()

    def on_rejected(self, ctx: HandlerContext, entity: ClientPO) -> None:
        entity.client_po_status = ClientPOStatus.DRAFT.value
        ctx.session.flush()


def default_registry() -> EntityRegistry:
    """Registry with a handler for every EntityType."""
    return EntityRegistry((
        AccountGroupHandler(),
        GeneralLedgerHandler(),
        ClientHandler(),
        SubClientHandler(),
        BankAccountHandler(),
        LoanHandler(),
        ClientPOHandler(),
    ))
