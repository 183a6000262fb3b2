"""
Tests for WorkflowEngine -- the multi-level approval lifecycle.

Covers:
- create(): Verification at level 1, generated code, creation signature,
  level-1 notification and signal, validation and dependency failures
- verify(): advance to the next configured level, approve at the last,
  notification retargeted then closed, pending-count signals
- reject(): terminal Rejected, no side effects, later verify fails
- guards: remarks required, role access, stale expected level,
  unknown entity type, malformed and missing ids
- list_for_verification(): per-role queue, no access vs no work, ordering
- approval_history(): creation first, then each level
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from erp_kernel.domain.workflow import ApprovalStatus, TransitionKind
from erp_kernel.exceptions import (
    AccessDeniedError,
    DependencyError,
    DuplicateError,
    EntityAlreadyProcessedError,
    EntityNotFoundError,
    ImmutabilityViolationError,
    RemarksRequiredError,
    UnknownEntityTypeError,
    ValidationError,
)
from erp_kernel.models import (
    Client,
    ClientPO,
    LedgerEntry,
    PendingNotification,
    SignatureTrail,
)


# Role ids from the bundled workflows.yaml
EXECUTIVE = 2
MANAGER = 3
FINANCE_HEAD = 4


def _notification(session, entity_id) -> PendingNotification:
    return session.execute(
        select(PendingNotification).where(
            PendingNotification.related_entity_id == entity_id
        )
    ).scalar_one()


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


class TestCreate:
    def test_client_enters_verification_at_level_one(
        self, session, workflow_engine, client_payload, executive
    ):
        client = workflow_engine.create("client", client_payload(), executive)

        assert client.status == ApprovalStatus.VERIFICATION.value
        assert client.level_id == 1
        assert client.workflow_id == 154
        assert client.client_code == "SC001"
        assert client.created_by_id == executive.actor_id

    def test_creation_signature_at_level_zero(
        self, session, workflow_engine, client_payload, executive
    ):
        client = workflow_engine.create("client", client_payload(), executive)

        history = workflow_engine.approval_history("client", client.id)
        assert len(history) == 1
        assert history[0].level_id == 0
        assert history[0].action == "created"
        assert history[0].remarks == "Client Created"
        assert history[0].actor_id == executive.actor_id

    def test_notifies_level_one_role(
        self, session, workflow_engine, client_payload, executive, received_signals
    ):
        client = workflow_engine.create("client", client_payload(), executive)

        notification = _notification(session, client.id)
        assert notification.status == "Pending"
        assert (notification.level_id, notification.role_id, notification.path_id) == (1, EXECUTIVE, 1)
        assert notification.message == "New client registration: Acme Infra (SC001)"
        assert [(s.role_id, s.delta) for s in received_signals] == [(EXECUTIVE, 1)]

    def test_codes_increment(self, workflow_engine, client_payload, executive):
        first = workflow_engine.create("client", client_payload(), executive)
        second = workflow_engine.create(
            "client", client_payload(client_name="Beta Works"), executive,
        )
        assert (first.client_code, second.client_code) == ("SC001", "SC002")

    def test_pan_required_for_companies(self, workflow_engine, client_payload, executive):
        with pytest.raises(ValidationError) as exc_info:
            workflow_engine.create("client", client_payload(pan_number=""), executive)
        assert exc_info.value.field == "pan_number"

    def test_individual_needs_neither_pan_nor_gst(
        self, workflow_engine, client_payload, executive
    ):
        client = workflow_engine.create(
            "client",
            client_payload(client_type="Individual", pan_number=None, main_gst_number=None),
            executive,
        )
        assert client.pan_number is None

    def test_invalid_gstin(self, workflow_engine, client_payload, executive):
        with pytest.raises(ValidationError):
            workflow_engine.create(
                "client", client_payload(main_gst_number="27ABCDE"), executive,
            )

    def test_failed_create_leaves_nothing_behind(
        self, session, workflow_engine, client_payload, executive
    ):
        with pytest.raises(ValidationError):
            workflow_engine.create("client", client_payload(client_type="Alien"), executive)
        assert session.execute(select(Client)).first() is None
        assert session.execute(select(PendingNotification)).first() is None

    def test_missing_accounting_group(self, workflow_engine, client_payload, executive):
        with pytest.raises(DependencyError):
            workflow_engine.create(
                "client", client_payload(accounting_group_id=str(uuid4())), executive,
            )

    def test_unknown_entity_type(self, workflow_engine, executive):
        with pytest.raises(UnknownEntityTypeError):
            workflow_engine.create("purchase_order", {}, executive)

    def test_duplicate_loan_number(self, workflow_engine, liability_group, manager):
        payload = {
            "loan_type": "secured",
            "lender_name": "SBI",
            "loan_number": "LN-1",
            "loan_amount": "100000",
            "accounting_group_id": str(liability_group.id),
        }
        workflow_engine.create("loan", payload, manager)
        with pytest.raises(DuplicateError):
            workflow_engine.create("loan", payload, manager)

    def test_logs_creation(self, workflow_engine, client_payload, executive, captured_logs):
        client = workflow_engine.create("client", client_payload(), executive)
        created = [r for r in captured_logs() if r["message"] == "entity_created"]
        assert created[0]["entity_id"] == str(client.id)
        assert created[0]["entity_type"] == "client"
        assert created[0]["actor_id"] == str(executive.actor_id)


# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------


class TestVerify:
    def test_advance_then_approve(
        self, session, workflow_engine, client_payload, executive, manager
    ):
        client = workflow_engine.create("client", client_payload(), executive)

        advanced = workflow_engine.verify("client", client.id, executive, "KYC ok")
        assert advanced.kind is TransitionKind.ADVANCED
        assert advanced.level_id == 2
        assert client.status == "Verification"
        assert client.level_id == 2
        notification = _notification(session, client.id)
        assert (notification.level_id, notification.role_id) == (2, MANAGER)
        assert notification.status == "Pending"

        approved = workflow_engine.verify("client", client.id, manager, "approved")
        assert approved.kind is TransitionKind.APPROVED
        assert approved.success
        assert client.status == "Approved"
        assert client.level_id == 2
        assert _notification(session, client.id).status == "Approved"

    def test_single_notification_row_per_entity(
        self, session, workflow_engine, client_payload, executive, manager
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.verify("client", client.id, executive, "ok")
        workflow_engine.verify("client", client.id, manager, "ok")

        rows = session.execute(
            select(PendingNotification).where(
                PendingNotification.related_entity_id == client.id
            )
        ).scalars().all()
        assert len(rows) == 1

    def test_signals_follow_the_notification(
        self, workflow_engine, client_payload, executive, manager, received_signals
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.verify("client", client.id, executive, "ok")
        workflow_engine.verify("client", client.id, manager, "ok")

        assert [(s.role_id, s.delta) for s in received_signals] == [
            (EXECUTIVE, 1),
            (EXECUTIVE, -1),
            (MANAGER, 1),
            (MANAGER, -1),
        ]

    def test_pending_counts_from_storage(
        self, workflow_engine, client_payload, executive
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        assert workflow_engine.notifications.pending_count(EXECUTIVE) == 1
        workflow_engine.verify("client", client.id, executive, "ok")
        assert workflow_engine.notifications.pending_count(EXECUTIVE) == 0
        assert workflow_engine.notifications.pending_count(MANAGER) == 1

    def test_remarks_required(self, workflow_engine, client_payload, executive):
        client = workflow_engine.create("client", client_payload(), executive)
        for remarks in ("", "   ", None):
            with pytest.raises(RemarksRequiredError):
                workflow_engine.verify("client", client.id, executive, remarks)
        assert client.level_id == 1

    def test_role_outside_workflow_denied(
        self, workflow_engine, client_payload, executive, outsider
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        with pytest.raises(AccessDeniedError):
            workflow_engine.verify("client", client.id, outsider, "ok")
        assert client.level_id == 1

    def test_stale_expected_level(
        self, workflow_engine, client_payload, executive, manager
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.verify("client", client.id, executive, "ok", expected_level=1)

        with pytest.raises(EntityAlreadyProcessedError) as exc_info:
            workflow_engine.verify("client", client.id, manager, "ok", expected_level=1)
        assert exc_info.value.expected_level == 1
        assert client.level_id == 2

    def test_approved_entity_cannot_be_verified_again(
        self, workflow_engine, approved_client, manager
    ):
        with pytest.raises(EntityNotFoundError):
            workflow_engine.verify("client", approved_client.id, manager, "again")

    def test_missing_entity(self, workflow_engine, manager):
        with pytest.raises(EntityNotFoundError):
            workflow_engine.verify("client", uuid4(), manager, "ok")

    def test_malformed_id(self, workflow_engine, manager):
        with pytest.raises(EntityNotFoundError, match="malformed id"):
            workflow_engine.verify("client", "not-a-uuid", manager, "ok")

    def test_string_id_accepted(self, workflow_engine, client_payload, executive):
        client = workflow_engine.create("client", client_payload(), executive)
        outcome = workflow_engine.verify("client", str(client.id), executive, "ok")
        assert outcome.kind is TransitionKind.ADVANCED

    def test_advanced_response(self, workflow_engine, client_payload, executive):
        client = workflow_engine.create("client", client_payload(), executive)
        response = workflow_engine.verify("client", client.id, executive, "ok").to_response()
        assert response == {
            "success": True,
            "result": "advanced",
            "entity_id": str(client.id),
            "status": "Verification",
            "level_id": 2,
            "derived_records": 0,
        }


# ---------------------------------------------------------------------------
# reject
# ---------------------------------------------------------------------------


class TestReject:
    def test_reject_is_terminal(
        self, session, workflow_engine, client_payload, executive, manager
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.verify("client", client.id, executive, "ok")

        outcome = workflow_engine.reject("client", client.id, manager, "PAN mismatch")
        assert outcome.kind is TransitionKind.REJECTED
        assert client.status == "Rejected"
        assert client.level_id == 2
        assert _notification(session, client.id).status == "Rejected"

        with pytest.raises(EntityNotFoundError):
            workflow_engine.verify("client", client.id, manager, "ok")

    def test_reject_requires_remarks(self, workflow_engine, client_payload, executive):
        client = workflow_engine.create("client", client_payload(), executive)
        with pytest.raises(RemarksRequiredError):
            workflow_engine.reject("client", client.id, executive, "")

    def test_rejected_loan_posts_no_ledger(
        self, session, workflow_engine, liability_group, manager
    ):
        loan = workflow_engine.create(
            "loan",
            {
                "loan_type": "unsecured",
                "lender_name": "HDFC",
                "loan_number": "LN-9",
                "loan_amount": "50000",
                "accounting_group_id": str(liability_group.id),
            },
            manager,
        )
        workflow_engine.reject("loan", loan.id, manager, "not needed")
        assert session.execute(select(LedgerEntry)).first() is None

    def test_rejection_signature_recorded(
        self, workflow_engine, client_payload, executive
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.reject("client", client.id, executive, "duplicate client")
        history = workflow_engine.approval_history("client", client.id)
        assert [(s.level_id, s.action) for s in history] == [(0, "created"), (1, "rejected")]
        assert history[1].remarks == "duplicate client"

    def test_reject_approved_entity_not_found(
        self, workflow_engine, approved_client, manager
    ):
        with pytest.raises(EntityNotFoundError):
            workflow_engine.reject("client", approved_client.id, manager, "too late")
        assert approved_client.status == "Approved"

    def test_reject_twice_not_found(self, workflow_engine, client_payload, executive):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.reject("client", client.id, executive, "incomplete")
        with pytest.raises(EntityNotFoundError):
            workflow_engine.reject("client", client.id, executive, "incomplete")
        history = workflow_engine.approval_history("client", client.id)
        assert [s.action for s in history] == ["created", "rejected"]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestListForVerification:
    def test_queue_follows_current_level(
        self, workflow_engine, client_payload, executive
    ):
        client = workflow_engine.create("client", client_payload(), executive)

        queue = workflow_engine.list_for_verification("client", EXECUTIVE)
        assert queue.has_access
        assert [item.entity.id for item in queue.entities] == [client.id]
        assert len(queue.entities[0].signatures) == 1

        assert len(workflow_engine.list_for_verification("client", MANAGER)) == 0

        workflow_engine.verify("client", client.id, executive, "ok")
        assert len(workflow_engine.list_for_verification("client", EXECUTIVE)) == 0
        queue = workflow_engine.list_for_verification("client", MANAGER)
        assert [item.entity.id for item in queue.entities] == [client.id]
        assert len(queue.entities[0].signatures) == 2

    def test_role_without_routing_has_no_access(self, workflow_engine):
        queue = workflow_engine.list_for_verification("client", FINANCE_HEAD)
        assert not queue.has_access
        assert len(queue) == 0

    def test_role_with_access_but_no_work(self, workflow_engine):
        queue = workflow_engine.list_for_verification("client", MANAGER)
        assert queue.has_access
        assert len(queue) == 0

    def test_oldest_first(
        self, workflow_engine, client_payload, executive, deterministic_clock
    ):
        first = workflow_engine.create("client", client_payload(), executive)
        deterministic_clock.tick()
        second = workflow_engine.create(
            "client", client_payload(client_name="Beta Works"), executive,
        )
        queue = workflow_engine.list_for_verification("client", EXECUTIVE)
        assert [item.entity.id for item in queue.entities] == [first.id, second.id]

    @pytest.mark.parametrize("role_id", ["abc", None, True])
    def test_role_must_be_integer(self, workflow_engine, role_id):
        with pytest.raises(ValidationError):
            workflow_engine.list_for_verification("client", role_id)

    def test_numeric_string_role(self, workflow_engine, client_payload, executive):
        workflow_engine.create("client", client_payload(), executive)
        assert len(workflow_engine.list_for_verification("client", str(EXECUTIVE))) == 1


class TestApprovalHistory:
    def test_full_trail(self, workflow_engine, client_payload, executive, manager):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.verify("client", client.id, executive, "level one ok")
        workflow_engine.verify("client", client.id, manager, "level two ok")

        history = workflow_engine.approval_history("client", client.id)
        assert [(s.level_id, s.role_id, s.action) for s in history] == [
            (0, EXECUTIVE, "created"),
            (1, EXECUTIVE, "verified"),
            (2, MANAGER, "verified"),
        ]
        assert history[2].actor_name == manager.display_name

    def test_missing_entity(self, workflow_engine):
        with pytest.raises(EntityNotFoundError):
            workflow_engine.approval_history("client", uuid4())

    def test_signatures_are_append_only(
        self, session, workflow_engine, client_payload, executive
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        signature = session.execute(
            select(SignatureTrail).where(SignatureTrail.entity_id == client.id)
        ).scalar_one()
        signature.remarks = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


# ---------------------------------------------------------------------------
# Client PO status mirror
# ---------------------------------------------------------------------------


class TestClientPOStatus:
    @pytest.fixture
    def po_payload(self, approved_client):
        return {
            "po_number": "PO-2024-001",
            "client_id": str(approved_client.id),
            "po_value": "1250000",
            "billing_plan": "Monthly",
        }

    def test_status_mirrors_lifecycle(
        self, workflow_engine, po_payload, manager, finance_head
    ):
        po = workflow_engine.create("client_po", po_payload, manager)
        assert po.client_po_status == "Draft"
        workflow_engine.verify("client_po", po.id, manager, "ok")
        assert po.client_po_status == "InProgress"
        workflow_engine.verify("client_po", po.id, finance_head, "ok")
        assert po.client_po_status == "Approved"
        assert po.status == "Approved"

    def test_reject_returns_to_draft(
        self, session, workflow_engine, po_payload, manager, finance_head
    ):
        po = workflow_engine.create("client_po", po_payload, manager)
        workflow_engine.verify("client_po", po.id, manager, "ok")
        workflow_engine.reject("client_po", po.id, finance_head, "value too high")
        stored = session.get(ClientPO, po.id)
        assert stored.client_po_status == "Draft"
        assert stored.status == "Rejected"
