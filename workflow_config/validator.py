"""
Configuration Validator (``workflow_config.validator``).

Responsibility
--------------
Checks the structure of a ``WorkflowDefinition`` before it is registered.

Invariants enforced
-------------------
* Exactly one creation state, and it is active.
* State ids are unique.
* Every edge references known states.
* At least one edge leaves the creation state.
* Workflow ids are unique across a configuration set.

Failure modes
-------------
* Errors -> ``InvalidWorkflowDefinitionError`` listing every error; the
  definition MUST NOT be registered.
* Warnings (edges no role can take, duplicate edges) are logged only.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import InvalidWorkflowDefinitionError


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_workflow(definition: WorkflowDefinition) -> ConfigValidationResult:
    result = ConfigValidationResult()
    state_ids = [s.state_id for s in definition.states]

    if not state_ids:
        result.add_error("workflow has no states")

    for state_id, count in Counter(state_ids).items():
        if count > 1:
            result.add_error(f"duplicate state id '{state_id}'")

    creation = [s for s in definition.states if s.is_creation_state]
    if len(creation) != 1:
        result.add_error(f"expected exactly one creation state, found {len(creation)}")
    elif not creation[0].is_active:
        result.add_error(f"creation state '{creation[0].state_id}' is inactive")

    known = set(state_ids)
    for edge in definition.transitions:
        for end in (edge.from_state, edge.to_state):
            if end not in known:
                result.add_error(
                    f"transition {edge.from_state} -> {edge.to_state} "
                    f"references unknown state '{end}'"
                )
        if not edge.roles:
            result.add_warning(
                f"transition {edge.from_state} -> {edge.to_state} has no roles"
            )

    edge_keys = Counter((e.from_state, e.to_state) for e in definition.transitions)
    for (from_state, to_state), count in edge_keys.items():
        if count > 1:
            result.add_warning(f"transition {from_state} -> {to_state} is declared {count} times")

    if len(creation) == 1 and not definition.edges_from(creation[0].state_id):
        result.add_error(f"no transition leaves creation state '{creation[0].state_id}'")

    return result


def validate_workflows(definitions: Iterable[WorkflowDefinition]) -> dict[str, ConfigValidationResult]:
    """Validate a configuration set, keyed by workflow id.

    Duplicate workflow ids are reported against the repeated id.
    """
    results: dict[str, ConfigValidationResult] = {}
    for definition in definitions:
        result = validate_workflow(definition)
        if definition.workflow_id in results:
            result.add_error(f"duplicate workflow id '{definition.workflow_id}'")
            results[definition.workflow_id].errors.extend(result.errors)
            results[definition.workflow_id].warnings.extend(result.warnings)
        else:
            results[definition.workflow_id] = result
    return results


def raise_for_errors(results: dict[str, ConfigValidationResult]) -> None:
    """Raise for the first workflow with errors, listing all of its errors."""
    for workflow_id, result in results.items():
        if not result.is_valid:
            raise InvalidWorkflowDefinitionError(workflow_id, result.errors)
