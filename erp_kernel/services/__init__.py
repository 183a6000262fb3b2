"""Write services.  Every service flushes; none commits."""

from erp_kernel.services.code_generator import CodeGenerator
from erp_kernel.services.entity_builders import default_registry
from erp_kernel.services.entity_registry import EntityHandler, EntityRegistry, HandlerContext
from erp_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    NullSignalBus,
    PendingSignal,
    SignalBus,
)
from erp_kernel.services.sequence_service import SequenceService
from erp_kernel.services.side_effects import PostApprovalService
from erp_kernel.services.signature_trail import SignatureTrailService
from erp_kernel.services.workflow_engine import WorkflowEngine

__all__ = [
    "CodeGenerator",
    "default_registry",
    "EntityHandler",
    "EntityRegistry",
    "HandlerContext",
    "NotificationDispatcher",
    "NullSignalBus",
    "PendingSignal",
    "SignalBus",
    "SequenceService",
    "PostApprovalService",
    "SignatureTrailService",
    "WorkflowEngine",
]
