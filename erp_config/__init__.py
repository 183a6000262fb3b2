"""
Workflow routing configuration (``erp_config``).

Responsibility
--------------
Single entrypoint that turns the workflow YAML into the kernel's
``RoutingSource``.  Loads, validates, then builds an immutable
``StaticRoutingSource``.  Nothing else in the system reads the YAML.

Failure modes
-------------
* ``InvalidRoutingError`` when a workflow breaks a routing rule.
* ``UnknownEntityTypeError`` when a binding names an unknown entity type.
* ``FileNotFoundError`` / ``yaml.YAMLError`` from the loader.
"""

from __future__ import annotations

import logging
from pathlib import Path

from erp_config.loader import load_config_set
from erp_config.schema import RoutingStepDef, WorkflowConfigSet, WorkflowDef
from erp_config.validator import validate_configuration
from erp_kernel.domain.workflow import (
    EntityType,
    RoutingStep,
    StaticRoutingSource,
    WorkflowRouting,
)

_logger = logging.getLogger("erp_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_FILE = _DEFAULT_CONFIG_DIR / "workflows.yaml"


def to_routing(workflow: WorkflowDef) -> WorkflowRouting:
    return WorkflowRouting(
        workflow_id=workflow.workflow_id,
        name=workflow.name,
        steps=tuple(
            RoutingStep(
                level_id=s.level_id,
                role_id=s.role_id,
                path_id=s.path_id,
                approval_limit=s.approval_limit,
            )
            for s in workflow.steps
        ),
    )


def build_routing_source(config_set: WorkflowConfigSet) -> StaticRoutingSource:
    """Validate ``config_set`` and build a routing source from it."""
    validate_configuration(config_set)
    routings = {w.workflow_id: to_routing(w) for w in config_set.workflows}
    bindings = {EntityType.parse(k): v for k, v in config_set.bindings.items()}
    return StaticRoutingSource(routings, bindings)


def get_routing_source(path: Path | str | None = None) -> StaticRoutingSource:
    """
    Load the workflow configuration and return its routing source.

    Args:
        path: YAML file to load.  Defaults to the bundled
            ``sets/workflows.yaml``.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_FILE
    config_set = load_config_set(config_path)
    source = build_routing_source(config_set)

    _logger.info(
        "ERP_CONFIG_TRACE",
        extra={
            "trace_type": "ERP_CONFIG_TRACE",
            "config_name": config_set.name,
            "config_version": config_set.version,
            "checksum": config_set.checksum,
            "workflow_count": len(config_set.workflows),
        },
    )
    return source


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "RoutingStepDef",
    "WorkflowConfigSet",
    "WorkflowDef",
    "build_routing_source",
    "get_routing_source",
    "to_routing",
]
