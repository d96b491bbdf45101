"""
TransitionScheduler -- In-process polling scheduler for due transitions.

Contract:
    ``tick()`` claims every pending transition whose timestamp is due, in
    ascending (timestamp, sequence) order, and executes each one in its own
    session and transaction via ``TransitionExecutor``.  Claims are taken a
    page of ``batch_size`` rows at a time and each page runs before the next
    is claimed; the tick ends when nothing due is left.  ``start()`` /
    ``stop()`` run ticks on a background thread.

Architecture: workflow_kernel/services.  Uses SchedulingService for
    claims and status bookkeeping and a factory-built TransitionExecutor
    per transition.  ``executor_factory_for`` is the one wiring of that
    factory, shared by the runner script and the tests.

Invariants enforced:
    - A tick's ``now`` is the execution instant of everything it runs, so
      nothing is recorded as executed before its scheduled timestamp.
    - Failure isolation: a rejected or failing transition is recorded as
      ``failed`` with its error code and reason, logged, and never stops the
      tick.  Nothing raised by one transition escapes ``tick()``.
    - No automatic retry: a stale transition stays unexecuted.
    - Claims left behind by a scheduler that died mid-tick are returned to
      pending once older than ``claim_timeout_seconds``.
    - Graceful shutdown: the stop signal is honoured between ticks; a tick
      always finishes the transitions it claimed.

Non-goals:
    - NOT a distributed scheduler (no leader election).  Several processes
      may tick against one database; the status compare-and-set makes each
      transition claimable exactly once.  The claim timeout must exceed the
      time one page of transitions takes to execute.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from workflow_kernel.domain.access import AccessControl
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.protocols import NotificationSink, OwnershipResolver
from workflow_kernel.domain.registry import WorkflowRegistry
from workflow_kernel.domain.transition import (
    EntityRef,
    TickItemResult,
    TickOutcome,
    TickReport,
    Transition,
)
from workflow_kernel.exceptions import (
    OwnershipResolverRequiredError,
    SchedulerExecutionFailure,
    WorkflowKernelError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.services.entity_state_store import SqlEntityStateStore
from workflow_kernel.services.scheduling_service import SchedulingService
from workflow_kernel.services.transition_executor import TransitionExecutor

logger = get_logger("services.scheduler")


def executor_factory_for(
    registry: WorkflowRegistry,
    access: AccessControl,
    *,
    ownership: OwnershipResolver | None = None,
    notifier: NotificationSink | None = None,
    clock: Clock | None = None,
) -> Callable[[Session], TransitionExecutor]:
    """
    Build the per-session executor factory a TransitionScheduler runs with.

    Scheduled transitions are re-validated as their owner at tick time, so
    a workflow with edges opened to ``workflow_author`` cannot be executed
    without an ownership resolver.

    Raises:
        OwnershipResolverRequiredError: ``ownership`` is None and some
            registered workflow uses the author role.
    """
    if ownership is None:
        needs_owner = sorted(d.workflow_id for d in registry if d.uses_author_role)
        if needs_owner:
            raise OwnershipResolverRequiredError(needs_owner)

    clock = clock or SystemClock()

    def _make(session: Session) -> TransitionExecutor:
        return TransitionExecutor(
            session,
            registry,
            SqlEntityStateStore(session, clock),
            access,
            ownership=ownership,
            notifier=notifier,
            clock=clock,
        )

    return _make


class TransitionScheduler:
    """Executes scheduled transitions when they become due.

    Contract:
        - ``enqueue`` / ``cancel`` / ``cancel_all_for`` each commit in their
          own unit of work.
        - ``tick()`` never raises; its outcome is the returned TickReport
          and the structured log.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor_factory: Callable[[Session], TransitionExecutor],
        clock: Clock | None = None,
        tick_interval_seconds: float = 60,
        batch_size: int = 100,
        claim_timeout_seconds: float = 900,
    ):
        self._session_factory = session_factory
        self._executor_factory = executor_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._batch_size = batch_size
        self._claim_timeout = timedelta(seconds=claim_timeout_seconds)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Queue operations
    # -------------------------------------------------------------------------

    def enqueue(self, transition: Transition) -> Transition:
        return self._in_session(lambda svc: svc.enqueue(transition))

    def cancel(self, transition_id: UUID) -> Transition:
        return self._in_session(lambda svc: svc.cancel(transition_id))

    def cancel_all_for(self, entity_ref: EntityRef) -> list[UUID]:
        return self._in_session(lambda svc: svc.cancel_all_for(entity_ref))

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> TickReport:
        """Claim and execute all due transitions.

        ``now`` defaults to the clock and is used as the execution instant
        of every transition run by this tick.  Returns a TickReport listing
        every claimed transition's outcome.
        """
        as_of = now or self._clock.now()
        self._release_expired_claims()

        items: list[TickItemResult] = []
        while True:
            claimed = self._claim_page(as_of)
            if not claimed:
                break
            items.extend(self._execute_one(transition, as_of) for transition in claimed)

        report = TickReport(as_of=as_of, items=tuple(items))

        if items:
            logger.info(
                "scheduler_tick_completed",
                extra={
                    "as_of": as_of.isoformat(),
                    "executed": len(report.executed),
                    "rejected": len(report.rejected),
                    "failed": len(report.failed),
                },
            )
        return report

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="workflow-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _claim_page(self, as_of: datetime) -> list[Transition]:
        session = self._session_factory()
        try:
            claimed = SchedulingService(session, self._clock).claim_due(
                as_of, self._batch_size,
            )
            session.commit()
            return claimed
        except Exception:
            session.rollback()
            logger.exception("scheduler_claim_failed", extra={"as_of": as_of.isoformat()})
            return []
        finally:
            session.close()

    def _release_expired_claims(self) -> list[UUID]:
        cutoff = self._clock.now() - self._claim_timeout
        session = self._session_factory()
        try:
            released = SchedulingService(session, self._clock).release_expired_claims(cutoff)
            session.commit()
            return released
        except Exception:
            session.rollback()
            logger.exception(
                "scheduler_claim_release_failed", extra={"claimed_before": cutoff.isoformat()},
            )
            return []
        finally:
            session.close()

    def _execute_one(self, transition: Transition, as_of: datetime) -> TickItemResult:
        transition_id = transition.transition_id
        with LogContext.bind(
            transition_id=str(transition_id),
            workflow_id=transition.workflow_id,
            entity_ref=str(transition.entity_ref),
        ):
            session = self._session_factory()
            try:
                self._executor_factory(session).execute(transition, as_of=as_of)
                session.commit()
                return TickItemResult(transition_id=transition_id, outcome=TickOutcome.EXECUTED)
            except WorkflowKernelError as exc:
                session.rollback()
                logger.warning(
                    "scheduled_transition_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                self._record_failure(transition_id, exc.code, str(exc))
                return TickItemResult(
                    transition_id=transition_id,
                    outcome=TickOutcome.REJECTED,
                    error_code=exc.code,
                    reason=str(exc),
                )
            except Exception as exc:
                session.rollback()
                failure = SchedulerExecutionFailure(str(transition_id), repr(exc))
                logger.exception(
                    "scheduled_transition_failed",
                    extra={"error_code": failure.code},
                )
                self._record_failure(transition_id, failure.code, str(failure))
                return TickItemResult(
                    transition_id=transition_id,
                    outcome=TickOutcome.FAILED,
                    error_code=failure.code,
                    reason=str(failure),
                )
            finally:
                session.close()

    def _record_failure(self, transition_id: UUID, code: str, reason: str) -> None:
        session = self._session_factory()
        try:
            SchedulingService(session, self._clock).mark_failed(transition_id, code, reason)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "scheduled_transition_status_update_failed",
                extra={"transition_id": str(transition_id), "error_code": code},
            )
        finally:
            session.close()

    def _in_session(self, operation):
        session = self._session_factory()
        try:
            result = operation(SchedulingService(session, self._clock))
            session.commit()
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
