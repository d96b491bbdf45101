"""
Notification sinks for executed and reverted transitions.

The executor emits one TransitionNotification per executed transition and
does not know who listens.  A sink that raises never undoes the transition:
FanOutNotificationSink isolates each subscriber and the executor logs any
failure of the sink it was given.
"""

from __future__ import annotations

from typing import Iterable

from workflow_kernel.domain.protocols import NotificationSink
from workflow_kernel.domain.transition import TransitionNotification
from workflow_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class LoggingNotificationSink:
    """Writes one structured INFO line per notification."""

    def notify(self, notification: TransitionNotification) -> None:
        transition = notification.transition
        logger.info(
            "transition_notified",
            extra={
                "phase": notification.phase.value,
                "transition_id": str(transition.transition_id),
                "workflow_id": transition.workflow_id,
                "entity_ref": str(transition.entity_ref),
                "from_state_id": transition.from_state_id,
                "to_state_id": transition.to_state_id,
                "owner_id": str(transition.owner_id),
                "forced": transition.forced,
                "occurred_at": notification.occurred_at.isoformat(),
            },
        )


class NullNotificationSink:
    def notify(self, notification: TransitionNotification) -> None:
        return None


class FanOutNotificationSink:
    """Delivers to every subscriber; one failing subscriber doesn't stop the rest."""

    def __init__(self, sinks: Iterable[NotificationSink] = ()):
        self._sinks: list[NotificationSink] = list(sinks)

    def subscribe(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def notify(self, notification: TransitionNotification) -> None:
        for sink in self._sinks:
            try:
                sink.notify(notification)
            except Exception:
                logger.exception(
                    "notification_sink_failed",
                    extra={
                        "sink": type(sink).__name__,
                        "transition_id": str(notification.transition.transition_id),
                        "phase": notification.phase.value,
                    },
                )
