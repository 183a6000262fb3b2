"""
WorkflowEngine -- the generic multi-level approval state machine.

Responsibility:
    Creates approvable entities at level 1, advances them level by level
    through their workflow's routing table, approves them when no next
    level exists, and rejects them at any level.  Every entity type plugs
    in through the EntityRegistry; the engine itself is type-agnostic.

Architecture position:
    Kernel > Services.  Orchestrates CodeGenerator (via handlers),
    SignatureTrailService, NotificationDispatcher and PostApprovalService.
    Reads routing through a RoutingSource (see ``erp_config``).

Invariants enforced:
    - Lifecycle: entities start in Verification at level 1.  level_id only
      increases while in Verification; Approved and Rejected are terminal.
    - Compare-and-swap: every transition is a conditional UPDATE on the
      expected (status='Verification', level_id).  A losing concurrent
      writer gets EntityAlreadyProcessedError; it can never double-advance
      or create a second ledger.
    - One open notification per entity, updated in place on advance and
      closed on the terminal transition.
    - Side effects run only on Approved, after the transition itself is
      recorded, in a SAVEPOINT of their own.  Their failure is reported in
      the outcome and leaves the entity Approved.
    - Reject never runs a post-approval side effect.

Failure modes:
    - ValidationError / RemarksRequiredError / UnknownEntityTypeError.
    - EntityNotFoundError: entity absent or not in Verification.
    - EntityAlreadyProcessedError: stale expected level or lost race.
    - AccessDeniedError: actor's role has no routing in the workflow.
    - RoutingNotFoundError, DuplicateError, DependencyError,
      CodeGenerationError from creation.

Audit relevance:
    Each transition appends a SignatureTrail row and logs an
    ``entity_*`` event bound to actor, entity and workflow.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.workflow import (
    Actor,
    ApprovalStatus,
    EntityType,
    NotificationStatus,
    RoutingSource,
    TransitionKind,
    TransitionOutcome,
    VerificationQueue,
    WorkflowRouting,
)
from erp_kernel.exceptions import (
    AccessDeniedError,
    EntityAlreadyProcessedError,
    EntityNotFoundError,
    ErpKernelError,
    RemarksRequiredError,
    RoutingNotFoundError,
    SideEffectError,
    ValidationError,
)
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.models.signature import SignatureTrail
from erp_kernel.selectors.workflow_selector import WorkflowSelector
from erp_kernel.services.base import BaseService
from erp_kernel.services.code_generator import CodeGenerator
from erp_kernel.services.entity_builders import default_registry
from erp_kernel.services.entity_registry import (
    EntityHandler,
    EntityRegistry,
    HandlerContext,
)
from erp_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    SignalBus,
)
from erp_kernel.services.side_effects import PostApprovalService
from erp_kernel.services.signature_trail import SignatureTrailService

logger = get_logger("services.workflow_engine")


class WorkflowEngine(BaseService):
    """
    Approval lifecycle for every registered entity type.

    Contract:
        ``create`` -> entity in Verification at level 1, notified to the
        level-1 approver.  ``verify`` -> advanced or approved outcome.
        ``reject`` -> rejected outcome.  ``list_for_verification`` -> the
        role's queue (never an error for "no work").

    Guarantees:
        - All writes of one call happen in one SAVEPOINT, so a failed call
          leaves no partial state in the caller's transaction.
        - The approval SAVEPOINT is released before side effects start.

    Non-goals:
        - Does NOT commit.  The caller owns the transaction.
        - Does NOT retry.
        - Does NOT authenticate; ``actor`` is trusted as resolved.
    """

    def __init__(
        self,
        session: Session,
        routing: RoutingSource,
        clock: Clock | None = None,
        signals: SignalBus | None = None,
        registry: EntityRegistry | None = None,
    ):
        super().__init__(session)
        self._routing = routing
        self._clock = clock or SystemClock()
        self._registry = registry or default_registry()
        self._codes = CodeGenerator(session)
        self._signatures = SignatureTrailService(session, self._clock)
        self._notifications = NotificationDispatcher(session, self._clock, signals)
        self._side_effects = PostApprovalService(session, self._clock)
        self._selector = WorkflowSelector(session, routing)

    @property
    def notifications(self) -> NotificationDispatcher:
        return self._notifications

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create(
        self,
        entity_type: str | EntityType,
        payload: dict[str, Any],
        actor: Actor,
        remarks: str | None = None,
    ) -> Any:
        """
        Validate and persist a new entity in Verification at level 1.

        The creator's signature is recorded at level 0 and the level-1
        approver is notified.

        Raises:
            ValidationError, DependencyError, DuplicateError,
            CodeGenerationError, RoutingNotFoundError.
        """
        handler = self._registry.get(entity_type)
        et = handler.entity_type
        workflow_id = self._routing.workflow_for(et)
        first_step = self._routing.get_routing(workflow_id).step_at(1)
        if first_step is None:
            raise RoutingNotFoundError(workflow_id, 1)

        ctx = self._context(actor)
        with LogContext.bind(
            actor_id=str(actor.actor_id),
            entity_type=et.value,
            workflow_id=str(workflow_id),
        ):
            with self.session.begin_nested():
                entity = handler.build(ctx, dict(payload))
                entity.status = ApprovalStatus.VERIFICATION.value
                entity.level_id = 1
                entity.workflow_id = workflow_id
                entity.created_by_id = actor.actor_id
                entity.created_at = self._clock.now()
                self.session.add(entity)
                self._flush_or_duplicate(
                    et.value,
                    handler.unique_field,
                    getattr(entity, handler.unique_field, None),
                )

                handler.on_created(ctx, entity)
                self._signatures.sign(
                    et.value,
                    entity.id,
                    workflow_id,
                    0,
                    actor,
                    "created",
                    remarks or f"{handler.label} Created",
                )
                self._notifications.open(
                    workflow_id,
                    et.value,
                    entity.id,
                    first_step.level_id,
                    first_step.role_id,
                    first_step.path_id,
                    handler.created_message(entity),
                )

            logger.info(
                "entity_created",
                extra={
                    "entity_id": str(entity.id),
                    "natural_key": str(getattr(entity, handler.unique_field, "")),
                    "level_id": 1,
                    "role_id": first_step.role_id,
                },
            )
        return entity

    # ------------------------------------------------------------------
    # verify / reject
    # ------------------------------------------------------------------

    def verify(
        self,
        entity_type: str | EntityType,
        entity_id: UUID | str,
        actor: Actor,
        remarks: str,
        expected_level: int | None = None,
    ) -> TransitionOutcome:
        """
        Sign the current level and advance, or approve at the last level.

        Args:
            expected_level: The level the approver acted on.  Defaults to
                the level read at the start of the call; either way the
                update only applies if the entity is still there.

        Raises:
            RemarksRequiredError, EntityNotFoundError,
            EntityAlreadyProcessedError, AccessDeniedError.
        """
        handler = self._registry.get(entity_type)
        self._require_remarks(remarks, "verification")
        entity = self._load_in_verification(handler, entity_id)
        routing = self._authorize(entity, actor)
        current_level = self._current_level(handler, entity, expected_level)
        next_step = routing.step_at(current_level + 1)
        ctx = self._context(actor)

        with self._bind(handler, entity, actor):
            with self.session.begin_nested():
                if next_step is not None:
                    self._compare_and_swap(
                        handler, entity, current_level,
                        ApprovalStatus.VERIFICATION, next_step.level_id, actor,
                    )
                else:
                    self._compare_and_swap(
                        handler, entity, current_level,
                        ApprovalStatus.APPROVED, current_level, actor,
                    )
                self._signatures.sign(
                    handler.entity_type.value,
                    entity.id,
                    entity.workflow_id,
                    current_level,
                    actor,
                    "verified",
                    remarks,
                )
                if next_step is not None:
                    handler.on_advanced(ctx, entity)
                    self._notifications.retarget(
                        entity.id,
                        next_step.level_id,
                        next_step.role_id,
                        next_step.path_id,
                        handler.advanced_message(entity),
                    )
                else:
                    self._notifications.close(
                        entity.id,
                        NotificationStatus.APPROVED,
                        handler.approved_message(entity),
                    )

            if next_step is not None:
                logger.info(
                    "entity_advanced",
                    extra={
                        "from_level": current_level,
                        "level_id": next_step.level_id,
                        "role_id": next_step.role_id,
                    },
                )
                return TransitionOutcome(
                    entity=entity,
                    kind=TransitionKind.ADVANCED,
                    level_id=next_step.level_id,
                )

            logger.info("entity_approved", extra={"level_id": current_level})
            derived, error = self._run_side_effects(handler, ctx, entity)
            return TransitionOutcome(
                entity=entity,
                kind=TransitionKind.APPROVED,
                level_id=current_level,
                derived_records=derived,
                side_effect_error=error,
            )

    def reject(
        self,
        entity_type: str | EntityType,
        entity_id: UUID | str,
        actor: Actor,
        remarks: str,
        expected_level: int | None = None,
    ) -> TransitionOutcome:
        """
        Reject at the current level.  No post-approval side effect runs.

        Raises:
            RemarksRequiredError, EntityNotFoundError,
            EntityAlreadyProcessedError, AccessDeniedError.
        """
        handler = self._registry.get(entity_type)
        self._require_remarks(remarks, "rejection")
        entity = self._load_in_verification(handler, entity_id)
        self._authorize(entity, actor)
        current_level = self._current_level(handler, entity, expected_level)
        ctx = self._context(actor)

        with self._bind(handler, entity, actor):
            with self.session.begin_nested():
                self._compare_and_swap(
                    handler, entity, current_level,
                    ApprovalStatus.REJECTED, current_level, actor,
                )
                self._signatures.sign(
                    handler.entity_type.value,
                    entity.id,
                    entity.workflow_id,
                    current_level,
                    actor,
                    "rejected",
                    remarks,
                )
                handler.on_rejected(ctx, entity)
                self._notifications.close(
                    entity.id,
                    NotificationStatus.REJECTED,
                    handler.rejected_message(entity),
                )

            logger.info("entity_rejected", extra={"level_id": current_level})
        return TransitionOutcome(
            entity=entity,
            kind=TransitionKind.REJECTED,
            level_id=current_level,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_for_verification(
        self,
        entity_type: str | EntityType,
        role_id: int,
    ) -> VerificationQueue:
        """
        Entities waiting on ``role_id``, oldest first.

        A role without routing entries gets ``has_access=False``; a role
        with access but nothing pending gets an empty queue.  Neither is an
        error.

        Raises:
            ValidationError: ``role_id`` is not an integer.
        """
        handler = self._registry.get(entity_type)
        if isinstance(role_id, bool):
            raise ValidationError("role_id", f"not an integer: {role_id!r}")
        try:
            role_id = int(role_id)
        except (TypeError, ValueError):
            raise ValidationError("role_id", f"not an integer: {role_id!r}") from None

        workflow_id = self._routing.workflow_for(handler.entity_type)
        return self._selector.verification_queue(
            handler.model, handler.label, workflow_id, role_id,
        )

    def approval_history(
        self,
        entity_type: str | EntityType,
        entity_id: UUID | str,
    ) -> list[SignatureTrail]:
        """Signatures of an entity ordered by level, creation first."""
        handler = self._registry.get(entity_type)
        entity_uuid = self._as_uuid(handler, entity_id)
        if self.session.get(handler.model, entity_uuid) is None:
            raise EntityNotFoundError(handler.entity_type.value, str(entity_uuid))
        return self._signatures.history(entity_uuid)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _context(self, actor: Actor) -> HandlerContext:
        return HandlerContext(
            session=self.session,
            clock=self._clock,
            codes=self._codes,
            side_effects=self._side_effects,
            actor=actor,
        )

    @staticmethod
    def _bind(handler: EntityHandler, entity: Any, actor: Actor):
        return LogContext.bind(
            actor_id=str(actor.actor_id),
            entity_type=handler.entity_type.value,
            entity_id=str(entity.id),
            workflow_id=str(entity.workflow_id),
        )

    @staticmethod
    def _require_remarks(remarks: str | None, action: str) -> None:
        if remarks is None or not str(remarks).strip():
            raise RemarksRequiredError(action)

    @staticmethod
    def _as_uuid(handler: EntityHandler, entity_id: UUID | str) -> UUID:
        if isinstance(entity_id, UUID):
            return entity_id
        try:
            return UUID(str(entity_id))
        except ValueError:
            raise EntityNotFoundError(
                handler.entity_type.value, str(entity_id), "malformed id",
            ) from None

    def _load_in_verification(self, handler: EntityHandler, entity_id: UUID | str) -> Any:
        entity_uuid = self._as_uuid(handler, entity_id)
        model = handler.model
        entity = self.session.execute(
            select(model)
            .where(
                model.id == entity_uuid,
                model.status == ApprovalStatus.VERIFICATION.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entity is None:
            raise EntityNotFoundError(
                handler.entity_type.value, str(entity_uuid), "not in Verification",
            )
        return entity

    def _authorize(self, entity: Any, actor: Actor) -> WorkflowRouting:
        routing = self._routing.get_routing(entity.workflow_id)
        if not routing.has_role(actor.role_id):
            logger.warning(
                "access_denied",
                extra={
                    "workflow_id": entity.workflow_id,
                    "role_id": actor.role_id,
                    "entity_id": str(entity.id),
                },
            )
            raise AccessDeniedError(entity.workflow_id, actor.role_id)
        return routing

    @staticmethod
    def _current_level(
        handler: EntityHandler, entity: Any, expected_level: int | None
    ) -> int:
        if expected_level is None:
            return entity.level_id
        if expected_level != entity.level_id:
            raise EntityAlreadyProcessedError(
                handler.entity_type.value, str(entity.id), expected_level,
            )
        return expected_level

    def _compare_and_swap(
        self,
        handler: EntityHandler,
        entity: Any,
        expected_level: int,
        new_status: ApprovalStatus,
        new_level: int,
        actor: Actor,
    ) -> None:
        """Conditional UPDATE keyed on (id, Verification, expected_level)."""
        model = handler.model
        result = self.session.execute(
            update(model)
            .where(
                model.id == entity.id,
                model.status == ApprovalStatus.VERIFICATION.value,
                model.level_id == expected_level,
            )
            .values(
                status=new_status.value,
                level_id=new_level,
                updated_by_id=actor.actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "transition_lost_race",
                extra={
                    "expected_level": expected_level,
                    "target_status": new_status.value,
                },
            )
            raise EntityAlreadyProcessedError(
                handler.entity_type.value, str(entity.id), expected_level,
            )
        self.session.refresh(entity)

    def _run_side_effects(
        self,
        handler: EntityHandler,
        ctx: HandlerContext,
        entity: Any,
    ) -> tuple[tuple[Any, ...], SideEffectError | None]:
        entity_type = handler.entity_type.value
        entity_id = str(entity.id)

        savepoint = self.session.begin_nested()
        try:
            report = handler.on_approved(ctx, entity)
            self.session.flush()
        except (ErpKernelError, SQLAlchemyError) as exc:
            savepoint.rollback()
            logger.error(
                "side_effect_failed",
                extra={"entity_id": entity_id, "reason": str(exc)},
                exc_info=True,
            )
            return (), SideEffectError(entity_type, entity_id, 0, 1, (str(exc),))
        savepoint.commit()

        if report.failed:
            logger.warning(
                "side_effect_partial",
                extra={
                    "entity_id": entity_id,
                    "succeeded": report.succeeded,
                    "failed": report.failed,
                },
            )
            return tuple(report.records), SideEffectError(
                entity_type,
                entity_id,
                report.succeeded,
                report.failed,
                tuple(report.reasons),
            )

        logger.info(
            "side_effects_completed",
            extra={"entity_id": entity_id, "derived_records": report.succeeded},
        )
        return tuple(report.records), None
