"""
Race safety of workflow transitions and code allocation.

Two approvers acting on the same level must produce exactly one
transition: the loser gets EntityAlreadyProcessedError (or, once the
entity is terminal, EntityNotFoundError) and never a second signature,
ledger or notification.

The sequential tests run on any backend.  The threaded tests need real
row locks and run only against PostgreSQL.

Run with: pytest tests/concurrency -v
Skip with: pytest -m "not slow_locks"
"""

import inspect
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from erp_kernel.domain.clock import DeterministicClock
from erp_kernel.domain.fiscal import AccountNature
from erp_kernel.domain.workflow import Actor
from erp_kernel.exceptions import EntityAlreadyProcessedError, EntityNotFoundError
from erp_kernel.models import AccountGroup, Client, LedgerEntry, SignatureTrail
from erp_kernel.services.sequence_service import SequenceService
from erp_kernel.services.workflow_engine import WorkflowEngine

pytestmark = pytest.mark.slow_locks


def _count(session, column, *criteria) -> int:
    return session.execute(select(func.count(column)).where(*criteria)).scalar_one()


# ---------------------------------------------------------------------------
# Sequential (stale read) races
# ---------------------------------------------------------------------------


class TestStaleApprover:
    def test_second_verifier_at_same_level_loses(
        self, session, workflow_engine, client_payload, executive
    ):
        second_executive = Actor(uuid4(), executive.role_id, "Other Executive")
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.verify("client", client.id, executive, "ok", expected_level=1)

        with pytest.raises(EntityAlreadyProcessedError):
            workflow_engine.verify(
                "client", client.id, second_executive, "ok too", expected_level=1,
            )

        assert client.level_id == 2
        assert _count(
            session, SignatureTrail.id,
            SignatureTrail.entity_id == client.id, SignatureTrail.level_id == 1,
        ) == 1

    def test_reject_after_advance_loses(
        self, workflow_engine, client_payload, executive, manager
    ):
        client = workflow_engine.create("client", client_payload(), executive)
        workflow_engine.verify("client", client.id, executive, "ok", expected_level=1)

        with pytest.raises(EntityAlreadyProcessedError):
            workflow_engine.reject("client", client.id, manager, "no", expected_level=1)
        assert client.status == "Verification"

    def test_double_final_approval_posts_one_ledger(
        self, session, workflow_engine, asset_group, finance_head
    ):
        account = workflow_engine.create(
            "bank_account",
            {
                "account_type": "Savings",
                "bank_name": "ICICI",
                "account_number": "000401234567",
                "account_opening_date": "2022-01-10",
                "balance_as_on": "2024-03-31",
                "opening_balance": "1000",
                "accounting_group_id": str(asset_group.id),
            },
            finance_head,
        )
        workflow_engine.verify("bank_account", account.id, finance_head, "ok")

        with pytest.raises(EntityNotFoundError):
            workflow_engine.verify("bank_account", account.id, finance_head, "again")
        assert _count(session, LedgerEntry.id, LedgerEntry.source_entity_id == account.id) == 1


# ---------------------------------------------------------------------------
# Threaded races (PostgreSQL only)
# ---------------------------------------------------------------------------


@pytest.fixture
def committed_group(committing_session_factory, test_actor_id):
    session = committing_session_factory()
    group = AccountGroup(
        group_name=f"Debtors {uuid4().hex[:6]}",
        nature=int(AccountNature.ASSET),
        status="Approved",
        level_id=1,
        workflow_id=159,
        created_by_id=test_actor_id,
    )
    session.add(group)
    session.commit()
    return group.id


def _client_payload(group_id, name):
    return {
        "client_name": name,
        "client_type": "Individual",
        "accounting_group_id": str(group_id),
    }


@pytest.mark.postgres
class TestConcurrentTransitions:
    def test_parallel_verify_single_winner(
        self, committing_session_factory, routing, committed_group
    ):
        clock = DeterministicClock(datetime(2024, 6, 3, tzinfo=timezone.utc))
        creator = Actor(uuid4(), 2, "Creator")

        setup = committing_session_factory()
        client = WorkflowEngine(setup, routing, clock).create(
            "client", _client_payload(committed_group, "Race Co"), creator,
        )
        setup.commit()
        client_id = client.id

        barrier = threading.Barrier(4)

        def approve(n: int) -> str:
            session = committing_session_factory()
            engine = WorkflowEngine(session, routing, clock)
            actor = Actor(uuid4(), 2, f"Approver {n}")
            barrier.wait()
            try:
                engine.verify("client", client_id, actor, "ok", expected_level=1)
                session.commit()
                return "won"
            except EntityAlreadyProcessedError:
                session.rollback()
                return "lost"

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(approve, range(4)))

        assert results.count("won") == 1
        assert results.count("lost") == 3

        check = committing_session_factory()
        stored = check.get(Client, client_id)
        assert (stored.status, stored.level_id) == ("Verification", 2)
        assert _count(
            check, SignatureTrail.id,
            SignatureTrail.entity_id == client_id, SignatureTrail.level_id == 1,
        ) == 1

    def test_parallel_creates_get_distinct_codes(
        self, committing_session_factory, routing, committed_group
    ):
        clock = DeterministicClock()
        barrier = threading.Barrier(6)

        def create(n: int) -> str:
            session = committing_session_factory()
            engine = WorkflowEngine(session, routing, clock)
            barrier.wait()
            client = engine.create(
                "client",
                _client_payload(committed_group, f"Parallel {n}"),
                Actor(uuid4(), 2, f"Creator {n}"),
            )
            session.commit()
            return client.client_code

        with ThreadPoolExecutor(max_workers=6) as pool:
            codes = list(pool.map(create, range(6)))

        assert sorted(codes) == [f"SC{n:03d}" for n in range(1, 7)]


# ---------------------------------------------------------------------------
# Counter locking
# ---------------------------------------------------------------------------


class TestCounterLocking:
    def test_counter_read_is_locked(self):
        source = Path(inspect.getfile(SequenceService)).read_text()
        match = re.search(
            r"def _locked_counter\s*\(.*?(?=\n    def \w|\nclass \w|\Z)",
            source,
            re.DOTALL,
        )
        assert match, "SequenceService._locked_counter not found"
        assert "with_for_update()" in match.group(0)

    def test_no_read_max_then_write(self):
        source = inspect.getsource(SequenceService)
        assert not re.search(r"func\.max|MAX\s*\(", source)
