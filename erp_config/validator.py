"""
Configuration validator (``erp_config.validator``).

Responsibility
--------------
Load-time checks on a parsed ``WorkflowConfigSet``.  A configuration
that fails any check is never turned into a routing source.

Rules
-----
* Level numbers are positive integers and, taken as a set, form the
  contiguous run ``1..N``.
* Role and path ids are non-negative integers.
* Workflow ids are unique within the document.
* Every binding names a known entity type and a defined workflow.
"""

from __future__ import annotations

from erp_config.schema import WorkflowConfigSet, WorkflowDef
from erp_kernel.domain.workflow import EntityType
from erp_kernel.exceptions import InvalidRoutingError


def routing_errors(workflow: WorkflowDef) -> list[str]:
    """All rule violations of one workflow (empty when valid)."""
    errors: list[str] = []
    if not workflow.steps:
        errors.append("no routing steps")
        return errors

    for step in workflow.steps:
        if step.level_id < 1:
            errors.append(f"level {step.level_id} is not positive")
        if step.role_id < 0:
            errors.append(f"role {step.role_id} at level {step.level_id} is negative")
        if step.path_id < 0:
            errors.append(f"path {step.path_id} at level {step.level_id} is negative")

    levels = sorted({s.level_id for s in workflow.steps})
    if levels and levels != list(range(1, levels[-1] + 1)):
        errors.append(f"levels {levels} are not contiguous from 1")
    return errors


def validate_configuration(config_set: WorkflowConfigSet) -> None:
    """
    Raise on the first invalid workflow or binding.

    Raises:
        InvalidRoutingError: a workflow breaks a routing rule, is defined
            twice, or a binding points at an undefined workflow.
        UnknownEntityTypeError: a binding names an unknown entity type.
    """
    seen: set[int] = set()
    for workflow in config_set.workflows:
        if workflow.workflow_id in seen:
            raise InvalidRoutingError(workflow.workflow_id, "defined more than once")
        seen.add(workflow.workflow_id)
        errors = routing_errors(workflow)
        if errors:
            raise InvalidRoutingError(workflow.workflow_id, "; ".join(errors))

    for entity_type, workflow_id in config_set.bindings.items():
        EntityType.parse(entity_type)
        if workflow_id not in seen:
            raise InvalidRoutingError(
                workflow_id, f"bound to {entity_type} but not defined",
            )
