"""Pure domain layer: value objects and rules with zero I/O."""

from erp_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from erp_kernel.domain.fiscal import (
    AccountNature,
    BalanceType,
    balance_type_for_nature,
    get_financial_year,
)
from erp_kernel.domain.workflow import (
    Actor,
    ApprovalStatus,
    ClientPOStatus,
    EntityType,
    NotificationStatus,
    QueueItem,
    RoutingSource,
    RoutingStep,
    SideEffectReport,
    StaticRoutingSource,
    TransitionKind,
    TransitionOutcome,
    VerificationQueue,
    WorkflowRouting,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "AccountNature",
    "BalanceType",
    "balance_type_for_nature",
    "get_financial_year",
    "Actor",
    "ApprovalStatus",
    "ClientPOStatus",
    "EntityType",
    "NotificationStatus",
    "QueueItem",
    "RoutingSource",
    "RoutingStep",
    "SideEffectReport",
    "StaticRoutingSource",
    "TransitionKind",
    "TransitionOutcome",
    "VerificationQueue",
    "WorkflowRouting",
]
