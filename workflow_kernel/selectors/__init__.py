"""Read-only query selectors."""

from workflow_kernel.selectors.transition_selector import (
    HistoryRow,
    TransitionSelector,
    state_label,
)

__all__ = [
    "HistoryRow",
    "TransitionSelector",
    "state_label",
]
