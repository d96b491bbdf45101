"""
Workflow configuration schema.

Workflow files parse straight into the kernel's frozen
``WorkflowDefinition`` value objects; this module holds the types that
only exist at the configuration layer: engine settings for the
scheduler process and the loaded configuration set.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from workflow_kernel.domain.workflow import WorkflowDefinition

DEFAULT_DATABASE_URL = "sqlite:///workflow.db"


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings of a scheduler process."""

    database_url: str = DEFAULT_DATABASE_URL
    tick_interval_seconds: float = 60.0
    batch_size: int = 100
    claim_timeout_seconds: float = 900.0
    log_level: str = "INFO"


@dataclass(frozen=True)
class WorkflowConfigurationSet:
    """Workflow definitions loaded together, with the checksum of their source."""

    workflows: tuple[WorkflowDefinition, ...]
    checksum: str
    sources: tuple[str, ...] = field(default_factory=tuple)

    @property
    def workflow_ids(self) -> tuple[str, ...]:
        return tuple(w.workflow_id for w in self.workflows)
