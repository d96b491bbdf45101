"""SQLAlchemy ORM models for the workflow kernel."""

from workflow_kernel.models.history import HistoryEntryModel
from workflow_kernel.models.tracked_field import TrackedFieldModel
from workflow_kernel.models.transition import TransitionModel

__all__ = [
    "HistoryEntryModel",
    "TrackedFieldModel",
    "TransitionModel",
]
