"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (time comes from an injected Clock)

All domain objects are immutable and deterministic.
"""

from workflow_kernel.domain.access import (
    AccessControl,
    AccessDecision,
    Actor,
    Operation,
    Scope,
)
from workflow_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
)
from workflow_kernel.domain.permissions import (
    PermissionInfo,
    StaticOwnershipResolver,
    StaticPermissionProvider,
    permission_catalogue,
    permission_name,
)
from workflow_kernel.domain.registry import WorkflowRegistry
from workflow_kernel.domain.transition import (
    EntityRef,
    HistoryEntry,
    TickItemResult,
    TickOutcome,
    TickReport,
    Transition,
    TransitionNotification,
    TransitionOptions,
    TransitionPhase,
    TransitionRequest,
    TransitionStatus,
)
from workflow_kernel.domain.validator import TransitionValidator, ValidationResult
from workflow_kernel.domain.workflow import (
    ANY_ROLE,
    AUTHOR_ROLE,
    ConfigTransition,
    State,
    WorkflowDefinition,
    WorkflowSettings,
)

__all__ = [
    "ANY_ROLE",
    "AUTHOR_ROLE",
    "AccessControl",
    "AccessDecision",
    "Actor",
    "Clock",
    "ConfigTransition",
    "DeterministicClock",
    "EntityRef",
    "HistoryEntry",
    "Operation",
    "PermissionInfo",
    "Scope",
    "State",
    "StaticOwnershipResolver",
    "StaticPermissionProvider",
    "SystemClock",
    "TickItemResult",
    "TickOutcome",
    "TickReport",
    "Transition",
    "TransitionNotification",
    "TransitionOptions",
    "TransitionPhase",
    "TransitionRequest",
    "TransitionStatus",
    "TransitionValidator",
    "ValidationResult",
    "WorkflowDefinition",
    "WorkflowRegistry",
    "WorkflowSettings",
    "permission_catalogue",
    "permission_name",
]
