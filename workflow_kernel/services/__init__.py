"""Services for the workflow kernel (write side)."""

from workflow_kernel.services.entity_state_store import SqlEntityStateStore
from workflow_kernel.services.history_ledger import HistoryLedger
from workflow_kernel.services.notifications import (
    FanOutNotificationSink,
    LoggingNotificationSink,
    NullNotificationSink,
)
from workflow_kernel.services.scheduler import TransitionScheduler
from workflow_kernel.services.scheduling_service import SchedulingService
from workflow_kernel.services.sequence_service import SequenceService
from workflow_kernel.services.transition_executor import TransitionExecutor
from workflow_kernel.services.workflow_service import WorkflowService

__all__ = [
    "FanOutNotificationSink",
    "HistoryLedger",
    "LoggingNotificationSink",
    "NullNotificationSink",
    "SchedulingService",
    "SequenceService",
    "SqlEntityStateStore",
    "TransitionExecutor",
    "TransitionScheduler",
    "WorkflowService",
]
