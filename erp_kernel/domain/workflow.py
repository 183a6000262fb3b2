"""
Workflow domain types (``erp_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the multi-level approval engine: the entity
lifecycle states, actors, routing tables, and transition outcomes.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle: ``APPROVAL_TRANSITIONS`` lists the only valid status
  transitions.  Approved and Rejected have no outgoing edges.
* Linear routing: the next level is always ``level_id + 1``.  When
  several steps share a level, ``step_at`` returns the first configured
  one (first match advances; no unanimous sign-off).
* Routing tables are immutable at runtime (frozen dataclasses, tuples).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Protocol
from uuid import UUID

from erp_kernel.exceptions import (
    RoutingNotFoundError,
    SideEffectError,
    UnknownEntityTypeError,
)


# =========================================================================
# Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approvable entity lifecycle states."""

    VERIFICATION = "Verification"
    RETURNED = "Returned"
    APPROVED = "Approved"
    REJECTED = "Rejected"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.VERIFICATION: frozenset({
        ApprovalStatus.VERIFICATION,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.RETURNED: frozenset({ApprovalStatus.VERIFICATION}),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
})


def can_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS.get(current, frozenset())


class NotificationStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ClientPOStatus(str, Enum):
    """User-facing status mirrored from a client PO's approval lifecycle."""

    DRAFT = "Draft"
    IN_PROGRESS = "InProgress"
    APPROVED = "Approved"


class EntityType(str, Enum):
    """Approvable entity types known to the engine."""

    CLIENT = "client"
    SUB_CLIENT = "sub_client"
    BANK_ACCOUNT = "bank_account"
    LOAN = "loan"
    GENERAL_LEDGER = "general_ledger"
    CLIENT_PO = "client_po"
    ACCOUNT_GROUP = "account_group"

    @classmethod
    def parse(cls, value: str | EntityType) -> EntityType:
        """Coerce a string to an EntityType or raise UnknownEntityTypeError."""
        try:
            return cls(value)
        except ValueError:
            raise UnknownEntityTypeError(str(value)) from None


class TransitionKind(str, Enum):
    ADVANCED = "advanced"
    APPROVED = "approved"
    REJECTED = "rejected"


# =========================================================================
# Actors and routing
# =========================================================================


@dataclass(frozen=True)
class Actor:
    """Resolved caller identity supplied by the auth layer."""

    actor_id: UUID
    role_id: int
    display_name: str = ""


@dataclass(frozen=True)
class RoutingStep:
    """One configured approver at one level of a workflow."""

    level_id: int
    role_id: int
    path_id: int
    approval_limit: Decimal | None = None


@dataclass(frozen=True)
class WorkflowRouting:
    """Ordered routing table for a single workflow id."""

    workflow_id: int
    name: str
    steps: tuple[RoutingStep, ...] = ()

    @property
    def levels(self) -> tuple[int, ...]:
        """Distinct level numbers, ascending."""
        return tuple(sorted({s.level_id for s in self.steps}))

    @property
    def max_level(self) -> int:
        return max((s.level_id for s in self.steps), default=0)

    def step_at(self, level_id: int) -> RoutingStep | None:
        """First configured step at ``level_id``, or None past the last level."""
        for step in self.steps:
            if step.level_id == level_id:
                return step
        return None

    def steps_for_role(self, role_id: int) -> tuple[RoutingStep, ...]:
        return tuple(s for s in self.steps if s.role_id == role_id)

    def has_role(self, role_id: int) -> bool:
        return any(s.role_id == role_id for s in self.steps)


class RoutingSource(Protocol):
    """Read-only routing configuration store."""

    def get_routing(self, workflow_id: int) -> WorkflowRouting: ...

    def workflow_for(self, entity_type: EntityType) -> int: ...


class StaticRoutingSource:
    """
    In-memory RoutingSource built from already-validated routings.

    Contract:
        ``routings`` and ``bindings`` are copied at construction; later
        mutation of the caller's dicts has no effect.
    """

    def __init__(
        self,
        routings: Mapping[int, WorkflowRouting],
        bindings: Mapping[EntityType, int],
    ):
        self._routings = dict(routings)
        self._bindings = {EntityType(k): int(v) for k, v in bindings.items()}

    def get_routing(self, workflow_id: int) -> WorkflowRouting:
        try:
            return self._routings[workflow_id]
        except KeyError:
            raise RoutingNotFoundError(workflow_id) from None

    def workflow_for(self, entity_type: EntityType) -> int:
        entity_type = EntityType.parse(entity_type)
        try:
            return self._bindings[entity_type]
        except KeyError:
            raise UnknownEntityTypeError(entity_type.value) from None

    @property
    def workflow_ids(self) -> tuple[int, ...]:
        return tuple(sorted(self._routings))


# =========================================================================
# Outcomes
# =========================================================================


@dataclass
class SideEffectReport:
    """Derived records produced by a post-approval handler."""

    records: list[Any] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    reasons: list[str] = field(default_factory=list)

    def add(self, record: Any) -> None:
        self.records.append(record)
        self.succeeded += 1

    def fail(self, reason: str) -> None:
        self.failed += 1
        self.reasons.append(reason)

    @property
    def ok(self) -> bool:
        return self.failed == 0


@dataclass
class TransitionOutcome:
    """
    Result of ``verify`` or ``reject``.

    ``side_effect_error`` is set when the entity reached Approved but a
    post-approval handler failed wholly or partially.  The approval itself
    stands.
    """

    entity: Any
    kind: TransitionKind
    level_id: int
    derived_records: tuple[Any, ...] = ()
    side_effect_error: SideEffectError | None = None

    @property
    def success(self) -> bool:
        return self.side_effect_error is None

    def to_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {
            "success": self.success,
            "result": self.kind.value,
            "entity_id": str(self.entity.id),
            "status": self.entity.status,
            "level_id": self.level_id,
            "derived_records": len(self.derived_records),
        }
        if self.side_effect_error is not None:
            response["code"] = self.side_effect_error.code
            response["message"] = str(self.side_effect_error)
            response["succeeded"] = self.side_effect_error.succeeded
            response["failed"] = self.side_effect_error.failed
            response["reasons"] = list(self.side_effect_error.reasons)
        return response


@dataclass(frozen=True)
class QueueItem:
    """An entity awaiting action, with its signatures so far."""

    entity: Any
    signatures: tuple[Any, ...] = ()


@dataclass
class VerificationQueue:
    """
    Entities awaiting a role's action.

    ``has_access`` is False when the role has no routing entries at all;
    an empty ``entities`` list with access is simply "no pending work".
    """

    entities: list[QueueItem] = field(default_factory=list)
    has_access: bool = True
    message: str = ""

    def __len__(self) -> int:
        return len(self.entities)
