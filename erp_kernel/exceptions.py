"""
Typed Exception Hierarchy for the ERP approval kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval and posting errors must be handled precisely by the boundary layer.
Parsing message strings is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has a STATUS_CODE attribute (HTTP-ish mapping)
  4. Exceptions carry structured DATA (not just a message string)

Example - WRONG way:
    try:
        engine.verify("loan", loan_id, actor, remarks)
    except Exception as e:
        if "not found" in str(e):
            ...

Example - RIGHT way:
    try:
        engine.verify("loan", loan_id, actor, remarks)
    except EntityAlreadyProcessedError as e:
        return error_response(e)   # {"success": False, "code": ..., ...}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ErpKernelError (base)
    |
    +-- ValidationError
    |   +-- RemarksRequiredError
    |   +-- UnknownEntityTypeError
    |   +-- InvalidRoutingError
    |
    +-- NotFoundError
    |   +-- EntityNotFoundError
    |   +-- EntityAlreadyProcessedError
    |   +-- RoutingNotFoundError
    |   +-- NotificationNotFoundError
    |
    +-- AccessDeniedError
    +-- DuplicateError
    +-- DependencyError
    +-- SideEffectError
    +-- CodeGenerationError
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_FAILED           | Missing/malformed required input
                | REMARKS_REQUIRED            | verify/reject without remarks
                | UNKNOWN_ENTITY_TYPE         | Type not registered with the engine
                | INVALID_ROUTING             | Routing levels not contiguous from 1
----------------|-----------------------------|-----------------------------------------
Not found       | NOT_FOUND                   | Generic lookup miss
                | ENTITY_NOT_FOUND            | Entity absent or not in Verification
                | ENTITY_ALREADY_PROCESSED    | Lost a compare-and-swap race
                | ROUTING_NOT_FOUND           | No routing for workflow / level
                | NOTIFICATION_NOT_FOUND      | No pending notification for entity
----------------|-----------------------------|-----------------------------------------
Access          | ACCESS_DENIED               | Role not configured in the workflow
Duplicate       | DUPLICATE                   | Unique code/number/field collision
Dependency      | DEPENDENCY_MISSING          | Referenced group/cost centre/client absent
Side effect     | SIDE_EFFECT_FAILED          | Post-approval derived record(s) failed
Code generation | CODE_GENERATION_FAILED      | Malformed existing code in scope
Immutability    | IMMUTABILITY_VIOLATION      | Mutating an append-only record

===============================================================================
DESIGN DECISIONS
===============================================================================

1. SideEffectError is usually RETURNED inside a transition outcome rather
   than raised: the entity is already Approved when a handler fails, and
   raising would make the caller roll back the approval.

2. status_code lives on the class so that boundary layers can map errors
   without a lookup table.

===============================================================================
"""

from typing import Any


class ErpKernelError(Exception):
    """
    Base exception for all ERP kernel errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification and a `status_code` for boundary mapping.
    """

    code: str = "ERP_KERNEL_ERROR"
    status_code: int = 500


def error_response(exc: ErpKernelError) -> dict[str, Any]:
    """Render an exception as the boundary ``{success: False, ...}`` shape."""
    return {
        "success": False,
        "code": exc.code,
        "status_code": exc.status_code,
        "message": str(exc),
    }


# Validation exceptions


class ValidationError(ErpKernelError):
    """Required input missing or malformed. No state change."""

    code: str = "VALIDATION_FAILED"
    status_code: int = 400

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class RemarksRequiredError(ValidationError):
    """verify/reject called with empty remarks."""

    code: str = "REMARKS_REQUIRED"

    def __init__(self, action: str):
        self.action = action
        super().__init__("remarks", f"Remarks are required for {action}")


class UnknownEntityTypeError(ValidationError):
    """Entity type is not registered with the workflow engine."""

    code: str = "UNKNOWN_ENTITY_TYPE"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__("entity_type", f"Unknown entity type: {entity_type}")


class InvalidRoutingError(ValidationError):
    """Routing table violates the contiguous-levels-from-1 rule."""

    code: str = "INVALID_ROUTING"

    def __init__(self, workflow_id: int, reason: str):
        self.workflow_id = workflow_id
        super().__init__("routing", f"workflow {workflow_id}: {reason}")


# Not-found exceptions


class NotFoundError(ErpKernelError):
    """Base exception for lookups that miss. No state change."""

    code: str = "NOT_FOUND"
    status_code: int = 404


class EntityNotFoundError(NotFoundError):
    """Entity absent, or not in the state required for the transition."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str, detail: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        msg = f"{entity_type} not found: {entity_id}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class EntityAlreadyProcessedError(EntityNotFoundError):
    """
    The entity's (status, level) no longer matches the expected pre-state.

    Raised to the losing writer of a concurrent verify/reject.
    """

    code: str = "ENTITY_ALREADY_PROCESSED"

    def __init__(self, entity_type: str, entity_id: str, expected_level: int):
        self.expected_level = expected_level
        super().__init__(
            entity_type,
            entity_id,
            f"already processed at level {expected_level}",
        )


class RoutingNotFoundError(NotFoundError):
    """No routing configured for the workflow (or the requested level)."""

    code: str = "ROUTING_NOT_FOUND"

    def __init__(self, workflow_id: int, level_id: int | None = None):
        self.workflow_id = workflow_id
        self.level_id = level_id
        if level_id is None:
            super().__init__(f"Workflow not found: {workflow_id}")
        else:
            super().__init__(
                f"Workflow {workflow_id} has no routing for level {level_id}"
            )


class NotificationNotFoundError(NotFoundError):
    """No pending notification exists for the entity."""

    code: str = "NOTIFICATION_NOT_FOUND"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"No pending notification for entity {entity_id}")


# Access


class AccessDeniedError(ErpKernelError):
    """Actor's role has no routing entries in the workflow."""

    code: str = "ACCESS_DENIED"
    status_code: int = 403

    def __init__(self, workflow_id: int, role_id: int):
        self.workflow_id = workflow_id
        self.role_id = role_id
        super().__init__(
            f"Access denied: role {role_id} has no routing in workflow {workflow_id}"
        )


# Duplicates and dependencies


class DuplicateError(ErpKernelError):
    """A unique code, number or field collided. Creation is aborted."""

    code: str = "DUPLICATE"
    status_code: int = 409

    def __init__(self, entity_type: str, field: str, value: Any, message: str = ""):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(
            message or f"{entity_type} with {field}={value!r} already exists"
        )


class DependencyError(ErpKernelError):
    """A referenced record (group, cost centre, client...) is missing."""

    code: str = "DEPENDENCY_MISSING"
    status_code: int = 422

    def __init__(self, dependency: str, reference: Any, message: str = ""):
        self.dependency = dependency
        self.reference = reference
        super().__init__(message or f"{dependency} not found: {reference}")


# Side effects


class SideEffectError(ErpKernelError):
    """
    Post-approval derived-record creation failed (wholly or for some lines).

    The entity remains Approved. ``succeeded`` / ``failed`` count the
    derived records; ``reasons`` lists one message per failure.
    """

    code: str = "SIDE_EFFECT_FAILED"
    status_code: int = 422

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        succeeded: int,
        failed: int,
        reasons: tuple[str, ...] = (),
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.succeeded = succeeded
        self.failed = failed
        self.reasons = reasons
        super().__init__(
            f"{entity_type} {entity_id} approved but post-approval processing "
            f"failed: {succeeded} succeeded, {failed} failed"
        )


# Code generation


class CodeGenerationError(ErpKernelError):
    """Scope lookup failed or an existing code in scope is malformed."""

    code: str = "CODE_GENERATION_FAILED"
    status_code: int = 500

    def __init__(self, scope: str, reason: str):
        self.scope = scope
        self.reason = reason
        super().__init__(f"Error generating code for scope {scope}: {reason}")


# Immutability


class ImmutabilityViolationError(ErpKernelError):
    """Attempt to update or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"
    status_code: int = 409

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
