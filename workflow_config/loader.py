"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into ``WorkflowDefinition`` and
``EngineSettings`` instances.  Parsing is structural only; graph checks
live in ``workflow_config.validator``.

Architecture position
---------------------
**Config layer** -- sits above ``workflow_kernel``.  The kernel never
imports from ``workflow_config``.

Invariants enforced
-------------------
* Required keys have no silent defaults: a missing ``id`` or state list
  raises ``KeyError``.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any, Mapping
from uuid import UUID

import yaml

from workflow_config.schema import DEFAULT_DATABASE_URL, EngineSettings
from workflow_kernel.domain.permissions import StaticOwnershipResolver, StaticPermissionProvider
from workflow_kernel.domain.workflow import (
    ConfigTransition,
    State,
    WorkflowDefinition,
    WorkflowSettings,
)

DATABASE_URL_ENV = "WORKFLOW_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_state(data: dict[str, Any], position: int) -> State:
    """Parse a State.  Weight defaults to the position in the file."""
    return State(
        state_id=str(data["id"]),
        label=data.get("label", str(data["id"])),
        weight=int(data.get("weight", position)),
        is_active=bool(data.get("active", True)),
        is_creation_state=bool(data.get("creation", False)),
    )


def parse_transition(data: dict[str, Any]) -> ConfigTransition:
    roles = data.get("roles", ())
    if isinstance(roles, str):
        roles = (roles,)
    return ConfigTransition(
        from_state=str(data["from"]),
        to_state=str(data["to"]),
        roles=frozenset(str(r) for r in roles),
    )


def parse_settings(data: dict[str, Any] | None) -> WorkflowSettings:
    data = data or {}
    defaults = WorkflowSettings()
    return WorkflowSettings(
        schedule_enabled=bool(data.get("schedule_enabled", defaults.schedule_enabled)),
        schedule_timezone=bool(data.get("schedule_timezone", defaults.schedule_timezone)),
        log_transitions=bool(data.get("log_transitions", defaults.log_transitions)),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDefinition:
    """
    Parse a ``WorkflowDefinition`` from a dict.

    Preconditions:
        - ``data`` contains ``id`` and a ``states`` list.
    Raises:
        KeyError: if required keys are missing.
    """
    workflow_id = str(data["id"])
    states = tuple(parse_state(s, i) for i, s in enumerate(data["states"]))
    return WorkflowDefinition(
        workflow_id=workflow_id,
        label=data.get("label", workflow_id),
        states=states,
        transitions=tuple(parse_transition(t) for t in data.get("transitions", [])),
        settings=parse_settings(data.get("settings")),
    )


def parse_workflows(data: dict[str, Any]) -> tuple[WorkflowDefinition, ...]:
    """Parse every entry of a file's ``workflows`` list."""
    return tuple(parse_workflow(w) for w in data.get("workflows", []))


def parse_engine_settings(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Parse the ``engine`` section.  ``WORKFLOW_DATABASE_URL`` overrides the
    configured database URL.
    """
    environ = os.environ if environ is None else environ
    engine = data.get("engine", {}) or {}
    defaults = EngineSettings()
    return EngineSettings(
        database_url=environ.get(
            DATABASE_URL_ENV, engine.get("database_url", DEFAULT_DATABASE_URL),
        ),
        tick_interval_seconds=float(
            engine.get("tick_interval_seconds", defaults.tick_interval_seconds)
        ),
        batch_size=int(engine.get("batch_size", defaults.batch_size)),
        claim_timeout_seconds=float(
            engine.get("claim_timeout_seconds", defaults.claim_timeout_seconds)
        ),
        log_level=str(engine.get("log_level", defaults.log_level)).upper(),
    )


def compute_checksum(data: Any) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_access(data: dict[str, Any]) -> StaticPermissionProvider:
    """
    Parse the ``access`` section into a ``StaticPermissionProvider``.

    ``roles`` maps a role to permission names, ``actors`` maps an actor id
    to its roles and ``super_users`` lists actor ids.
    """
    access = data.get("access", {}) or {}
    return StaticPermissionProvider(
        role_permissions={
            str(role): tuple(perms or ()) for role, perms in (access.get("roles") or {}).items()
        },
        actor_roles={
            UUID(str(actor_id)): tuple(roles or ())
            for actor_id, roles in (access.get("actors") or {}).items()
        },
        super_users=[UUID(str(a)) for a in access.get("super_users", []) or []],
    )


def parse_ownership(data: dict[str, Any]) -> StaticOwnershipResolver | None:
    """
    Parse the ``ownership`` section into a ``StaticOwnershipResolver``.

    Each item names an ``entity_type``, an ``entity_id`` and its ``owner``
    actor id.  Returns None when the section is absent, so callers can tell
    "no owners configured" from "no resolver configured".
    """
    if "ownership" not in data:
        return None
    return StaticOwnershipResolver({
        (str(item["entity_type"]), str(item["entity_id"])): UUID(str(item["owner"]))
        for item in data["ownership"] or ()
    })
