"""
Configuration Loader (``erp_config.loader``).

Responsibility
--------------
Loads the workflow YAML document and parses it into typed
``erp_config.schema`` dataclass instances.  Callers obtain routing through
``erp_config.get_routing_source()``, which validates what this module
parses.

Invariants enforced
-------------------
* Required keys raise ``KeyError`` when missing; there are no silent
  defaults for level, role or path.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  document for configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Non-integer level/role/path  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from erp_config.schema import RoutingStepDef, WorkflowConfigSet, WorkflowDef


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON rendering of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"{what} must be an integer, got {value!r}")
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{what} must be an integer, got {value!r}") from None


def parse_step(data: dict[str, Any]) -> RoutingStepDef:
    limit = data.get("approval_limit")
    return RoutingStepDef(
        level_id=_as_int(data["level"], "level"),
        role_id=_as_int(data["role"], "role"),
        path_id=_as_int(data.get("path", 1), "path"),
        approval_limit=Decimal(str(limit)) if limit is not None else None,
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDef:
    """
    Parse a ``WorkflowDef``.

    Steps keep their document order: when a level lists several roles,
    the first one listed is the one a level transition routes to.
    """
    return WorkflowDef(
        workflow_id=_as_int(data["workflow_id"], "workflow_id"),
        name=data.get("name", ""),
        steps=tuple(parse_step(s) for s in data.get("steps", ())),
    )


def parse_config_set(data: dict[str, Any]) -> WorkflowConfigSet:
    bindings = {
        str(entity_type): _as_int(workflow_id, f"binding {entity_type}")
        for entity_type, workflow_id in (data.get("bindings") or {}).items()
    }
    return WorkflowConfigSet(
        name=data.get("name", "default"),
        version=_as_int(data.get("version", 1), "version"),
        workflows=tuple(parse_workflow(w) for w in data.get("workflows", ())),
        bindings=bindings,
        checksum=compute_checksum(data),
    )


def load_config_set(path: Path) -> WorkflowConfigSet:
    return parse_config_set(load_yaml_file(path))
