"""
WorkflowRegistry -- process-wide lookup of workflow definitions.

Definitions are immutable; replacing one (e.g. after a state is
deactivated) swaps the reference under a lock so concurrent readers always
see a complete definition.
"""

from __future__ import annotations

import threading
from typing import Iterable, Iterator

from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import WorkflowNotFoundError


class WorkflowRegistry:
    """Holds the active ``WorkflowDefinition`` per workflow id."""

    def __init__(self, definitions: Iterable[WorkflowDefinition] = ()):
        self._lock = threading.Lock()
        self._definitions: dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            self._definitions[definition.workflow_id] = definition

    def register(self, definition: WorkflowDefinition) -> None:
        with self._lock:
            self._definitions[definition.workflow_id] = definition

    def get(self, workflow_id: str) -> WorkflowDefinition:
        """Raises WorkflowNotFoundError for unknown ids."""
        definition = self._definitions.get(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(workflow_id)
        return definition

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._definitions

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(list(self._definitions.values()))

    def __len__(self) -> int:
        return len(self._definitions)
