"""
EntityRegistry -- entity type to handler dispatch.

Responsibility:
    Maps each approvable entity type to the handler that knows how to build
    it from a payload, word its notifications, and react to lifecycle
    transitions.  The WorkflowEngine is generic; everything type-specific
    lives behind this registry.

Architecture position:
    Kernel > Services.  Handlers are defined in ``entity_builders``.

Invariants enforced:
    - One handler per entity type; registering a second raises ValueError.
    - ``on_approved`` is the only hook that produces derived records.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from sqlalchemy.orm import Session

from erp_kernel.domain.clock import Clock
from erp_kernel.domain.workflow import Actor, EntityType, SideEffectReport
from erp_kernel.exceptions import UnknownEntityTypeError
from erp_kernel.services.code_generator import CodeGenerator
from erp_kernel.services.side_effects import PostApprovalService


@dataclass(frozen=True)
class HandlerContext:
    """Collaborators a handler may use during one engine call."""

    session: Session
    clock: Clock
    codes: CodeGenerator
    side_effects: PostApprovalService
    actor: Actor


class EntityHandler:
    """
    Type-specific behaviour plugged into the WorkflowEngine.

    Subclasses set ``entity_type``, ``model`` and ``label`` and implement
    ``build``.  The lifecycle hooks default to no-ops.
    """

    entity_type: ClassVar[EntityType]
    model: ClassVar[type]
    label: ClassVar[str]
    # Natural key; named in DuplicateError and in notification messages
    unique_field: ClassVar[str] = "id"

    def build(self, ctx: HandlerContext, payload: dict[str, Any]) -> Any:
        """Validate ``payload`` and return an unsaved model instance."""
        raise NotImplementedError

    def display_name(self, entity: Any) -> str:
        return str(getattr(entity, self.unique_field, entity.id))

    def created_message(self, entity: Any) -> str:
        return f"New {self.label} created: {self.display_name(entity)}"

    def advanced_message(self, entity: Any) -> str:
        return f"{self.label} {self.display_name(entity)} moved to next level of verification"

    def approved_message(self, entity: Any) -> str:
        return f"{self.label} {self.display_name(entity)} has been approved"

    def rejected_message(self, entity: Any) -> str:
        return f"{self.label} {self.display_name(entity)} has been rejected"

    def on_created(self, ctx: HandlerContext, entity: Any) -> None:
        return None

    def on_advanced(self, ctx: HandlerContext, entity: Any) -> None:
        return None

    def on_approved(self, ctx: HandlerContext, entity: Any) -> SideEffectReport:
        return SideEffectReport()

    def on_rejected(self, ctx: HandlerContext, entity: Any) -> None:
        return None


class EntityRegistry:
    """Registry of entity handlers keyed by EntityType."""

    def __init__(self, handlers: tuple[EntityHandler, ...] = ()):
        self._handlers: dict[EntityType, EntityHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: EntityHandler) -> None:
        if handler.entity_type in self._handlers:
            existing = self._handlers[handler.entity_type]
            raise ValueError(
                f"Handler already registered for {handler.entity_type.value}: "
                f"{existing.__class__.__name__}"
            )
        self._handlers[handler.entity_type] = handler

    def get(self, entity_type: str | EntityType) -> EntityHandler:
        entity_type = EntityType.parse(entity_type)
        try:
            return self._handlers[entity_type]
        except KeyError:
            raise UnknownEntityTypeError(entity_type.value) from None

    @property
    def entity_types(self) -> tuple[EntityType, ...]:
        return tuple(self._handlers)
