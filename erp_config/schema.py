"""
Workflow configuration schema (``erp_config.schema``).

Frozen dataclasses parsed from the workflow YAML.  They mirror the document
structure one-to-one; conversion into kernel ``WorkflowRouting`` objects
happens in ``erp_config.__init__``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class RoutingStepDef:
    level_id: int
    role_id: int
    path_id: int
    approval_limit: Decimal | None = None


@dataclass(frozen=True)
class WorkflowDef:
    workflow_id: int
    name: str
    steps: tuple[RoutingStepDef, ...] = ()


@dataclass(frozen=True)
class WorkflowConfigSet:
    """One workflow configuration document."""

    name: str
    version: int
    workflows: tuple[WorkflowDef, ...] = ()
    # entity type value -> workflow id
    bindings: dict[str, int] = field(default_factory=dict)
    checksum: str = ""
