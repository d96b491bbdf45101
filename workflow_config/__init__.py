"""
workflow_config -- loads workflow definitions and engine settings from YAML.

Responsibility:
    Builds the ``WorkflowRegistry`` the kernel runs against.  Every file is
    parsed, validated, and checksummed before any definition is registered.

Architecture position:
    Configuration -- sits above ``workflow_kernel``.  The kernel MUST NEVER
    import from ``workflow_config``.

Failure modes:
    - ``FileNotFoundError`` / ``yaml.YAMLError`` from the loader.
    - ``InvalidWorkflowDefinitionError`` listing every structural error.

Audit relevance:
    Every successful load emits a ``workflow_config_loaded`` log entry with
    the workflow ids and the checksum of the raw configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from workflow_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_access,
    parse_engine_settings,
    parse_ownership,
    parse_workflows,
)
from workflow_config.schema import EngineSettings, WorkflowConfigurationSet
from workflow_config.validator import raise_for_errors, validate_workflows
from workflow_kernel.domain.permissions import StaticOwnershipResolver, StaticPermissionProvider
from workflow_kernel.domain.registry import WorkflowRegistry
from workflow_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_WORKFLOW_DIR = Path(__file__).parent / "workflows"


def _workflow_files(paths: Iterable[Path | str] | None) -> list[Path]:
    if paths is None:
        paths = [DEFAULT_WORKFLOW_DIR]
    files: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(sorted(path.glob("*.yaml")) + sorted(path.glob("*.yml")))
        else:
            files.append(path)
    return files


def load_workflow_configuration(
    paths: Iterable[Path | str] | None = None,
) -> WorkflowConfigurationSet:
    """Load, validate and checksum every workflow in ``paths``.

    Directories contribute their ``*.yaml`` / ``*.yml`` files in name order.
    Defaults to the workflows shipped with this package.
    """
    files = _workflow_files(paths)
    raw = [load_yaml_file(path) for path in files]

    workflows = tuple(w for data in raw for w in parse_workflows(data))
    results = validate_workflows(workflows)
    for workflow_id, result in results.items():
        for warning in result.warnings:
            logger.warning(
                "workflow_config_warning",
                extra={"workflow_id": workflow_id, "warning": warning},
            )
    raise_for_errors(results)

    config = WorkflowConfigurationSet(
        workflows=workflows,
        checksum=compute_checksum(raw),
        sources=tuple(str(path) for path in files),
    )
    logger.info(
        "workflow_config_loaded",
        extra={
            "workflow_ids": list(config.workflow_ids),
            "checksum": config.checksum,
            "sources": list(config.sources),
        },
    )
    return config


def load_workflow_registry(paths: Iterable[Path | str] | None = None) -> WorkflowRegistry:
    """The registry of every workflow in ``paths``."""
    return WorkflowRegistry(load_workflow_configuration(paths).workflows)


def load_engine_settings(path: Path | str | None = None) -> EngineSettings:
    """Engine settings from an optional YAML file plus the environment."""
    data = load_yaml_file(Path(path)) if path is not None else {}
    return parse_engine_settings(data)


def load_access(path: Path | str | None = None) -> StaticPermissionProvider:
    """Permission grants from the ``access`` section of an engine file."""
    data = load_yaml_file(Path(path)) if path is not None else {}
    return parse_access(data)


def load_ownership(path: Path | str | None = None) -> StaticOwnershipResolver | None:
    """Entity owners from the ``ownership`` section of an engine file, if any."""
    data = load_yaml_file(Path(path)) if path is not None else {}
    return parse_ownership(data)


__all__ = [
    "EngineSettings",
    "WorkflowConfigurationSet",
    "load_access",
    "load_engine_settings",
    "load_ownership",
    "load_workflow_configuration",
    "load_workflow_registry",
]
