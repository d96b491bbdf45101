"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine must react differently to a transition that is not in
the graph, an actor that lacks a capability, and a transition whose entity
moved on while it waited in the queue.  Parsing message strings for that is
fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.request_transition(request)
    except StalenessConflictError as e:
        log.warning("entity moved", extra={"actual": e.actual_state_id})
        api_response(code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowKernelError:

    WorkflowKernelError (base)
    |
    +-- ConfigurationError
    |   +-- WorkflowNotFoundError
    |   +-- UnknownStateError
    |   +-- InvalidWorkflowDefinitionError
    |   +-- OwnershipResolverRequiredError
    |
    +-- ValidationError
    |   +-- TransitionRejectedError
    |   +-- SchedulingNotAllowedError
    |   +-- EntityIsNewError
    |   +-- InvalidScheduleTimeError
    |   +-- NotMostRecentTransitionError
    |   +-- TransitionNotExecutedError
    |
    +-- AccessDeniedError
    |   +-- VetoedRevertError
    |
    +-- ConcurrencyError
    |   +-- StalenessConflictError
    |       +-- OutOfOrderTransitionError
    |
    +-- SchedulerError
    |   +-- TransitionNotFoundError
    |   +-- TransitionAlreadyExecutedError
    |   +-- TransitionInFlightError
    |   +-- TransitionNotPendingError
    |   +-- SchedulerExecutionFailure
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | WORKFLOW_NOT_FOUND          | Workflow id not registered
                | UNKNOWN_STATE               | State id not in the workflow
                | INVALID_WORKFLOW_DEFINITION | Definition failed structural checks
                | OWNERSHIP_RESOLVER_REQUIRED | Owner edges but no OwnershipResolver
----------------|-----------------------------|-----------------------------------------
Validation      | TRANSITION_REJECTED         | Target not reachable from current state
                | SCHEDULING_NOT_ALLOWED      | Workflow/actor may not schedule
                | ENTITY_IS_NEW               | Entity never persisted
                | INVALID_SCHEDULE_TIME       | Scheduled time not in the future
                | NOT_MOST_RECENT_TRANSITION  | Revert of an older history entry
                | TRANSITION_NOT_EXECUTED     | Operation needs an executed transition
----------------|-----------------------------|-----------------------------------------
Access          | ACCESS_DENIED               | AccessControl returned Deny
                | REVERT_VETOED               | A veto hook blocked a revert
----------------|-----------------------------|-----------------------------------------
Concurrency     | STALENESS_CONFLICT          | Stored state differs from expected
----------------|-----------------------------|-----------------------------------------
Scheduler       | TRANSITION_NOT_FOUND        | Transition id doesn't exist
                | TRANSITION_ALREADY_EXECUTED | Cancel of an executed transition
                | TRANSITION_IN_FLIGHT        | Cancel after the tick claimed it
                | TRANSITION_NOT_PENDING      | Cancel of a cancelled/failed transition
                | SCHEDULER_EXECUTION_FAILURE | Unexpected failure inside a tick
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row

===============================================================================
HANDLING GUIDANCE
===============================================================================

1. VALIDATION ERRORS (recoverable, nothing was written):

    except ValidationError as e:
        show_form_error(e.code)

2. ACCESS ERRORS (VetoedRevertError is handled exactly like AccessDeniedError):

    except AccessDeniedError as e:
        return forbidden(e.operation)

3. STALENESS (never auto-retry; the author intended a different source state):

    except StalenessConflictError as e:
        notify_owner(e.expected_state_id, e.actual_state_id)

4. SCHEDULER ERRORS inside tick() are logged and recorded on the transition;
   they never propagate out of the tick loop.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group. Inheriting from
   built-in types mixes domain errors with programming errors.

2. WHY code CLASS ATTRIBUTE (not instance)?
   Codes are static per exception type and can be read without an instance.

3. WHY STORE ALL CONTEXT AS ATTRIBUTES?
   Exceptions are logged by the JSON formatter, which copies public
   attributes into exc_* fields.  Parsed message strings don't survive that.

===============================================================================
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Configuration-related exceptions


class ConfigurationError(WorkflowKernelError):
    """Base exception for workflow configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class WorkflowNotFoundError(ConfigurationError):
    """Workflow with given id is not registered."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class UnknownStateError(ConfigurationError):
    """State id is not defined in the workflow."""

    code: str = "UNKNOWN_STATE"

    def __init__(self, workflow_id: str, state_id: str):
        self.workflow_id = workflow_id
        self.state_id = state_id
        super().__init__(f"Unknown state {state_id!r} in workflow {workflow_id}")


class InvalidWorkflowDefinitionError(ConfigurationError):
    """Workflow definition failed structural validation."""

    code: str = "INVALID_WORKFLOW_DEFINITION"

    def __init__(self, workflow_id: str, errors: list[str]):
        self.workflow_id = workflow_id
        self.errors = list(errors)
        super().__init__(
            f"Invalid workflow definition {workflow_id}: " + "; ".join(self.errors)
        )


class OwnershipResolverRequiredError(ConfigurationError):
    """Workflows open edges to the entity owner but no resolver is wired."""

    code: str = "OWNERSHIP_RESOLVER_REQUIRED"

    def __init__(self, workflow_ids: list[str]):
        self.workflow_ids = list(workflow_ids)
        super().__init__(
            "An ownership resolver is required to execute transitions of "
            + ", ".join(self.workflow_ids)
        )


# Validation-related exceptions


class ValidationError(WorkflowKernelError):
    """Base exception for requests rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class TransitionRejectedError(ValidationError):
    """Requested target state is not legal from the current state."""

    code: str = "TRANSITION_REJECTED"

    def __init__(
        self,
        workflow_id: str,
        from_state_id: str,
        to_state_id: str,
        reason: str,
    ):
        self.workflow_id = workflow_id
        self.from_state_id = from_state_id
        self.to_state_id = to_state_id
        self.reason = reason
        super().__init__(
            f"Transition {from_state_id} -> {to_state_id} rejected in "
            f"workflow {workflow_id}: {reason}"
        )


class SchedulingNotAllowedError(ValidationError):
    """Scheduling is disabled for the workflow or not permitted for the actor."""

    code: str = "SCHEDULING_NOT_ALLOWED"

    def __init__(self, workflow_id: str, actor_id: str, reason: str):
        self.workflow_id = workflow_id
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(
            f"Scheduling not allowed in workflow {workflow_id} "
            f"for actor {actor_id}: {reason}"
        )


class EntityIsNewError(ValidationError):
    """Entity has never been persisted, so it has no state to schedule away from."""

    code: str = "ENTITY_IS_NEW"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Entity {entity_type} {entity_id} has not been saved yet")


class InvalidScheduleTimeError(ValidationError):
    """Scheduled transitions must be due strictly after now."""

    code: str = "INVALID_SCHEDULE_TIME"

    def __init__(self, timestamp: str, now: str):
        self.timestamp = timestamp
        self.now = now
        super().__init__(
            f"Scheduled timestamp {timestamp} is not after current time {now}"
        )


class NotMostRecentTransitionError(ValidationError):
    """Only the newest executed transition of a field may be reverted."""

    code: str = "NOT_MOST_RECENT_TRANSITION"

    def __init__(self, transition_id: str, latest_transition_id: str | None):
        self.transition_id = transition_id
        self.latest_transition_id = latest_transition_id
        super().__init__(
            f"Transition {transition_id} is not the most recent executed "
            f"transition (latest: {latest_transition_id})"
        )


class TransitionNotExecutedError(ValidationError):
    """Operation requires an executed transition."""

    code: str = "TRANSITION_NOT_EXECUTED"

    def __init__(self, transition_id: str, status: str):
        self.transition_id = transition_id
        self.status = status
        super().__init__(
            f"Transition {transition_id} is not executed (status: {status})"
        )


# Access-related exceptions


class AccessDeniedError(WorkflowKernelError):
    """AccessControl denied the operation."""

    code: str = "ACCESS_DENIED"

    def __init__(self, operation: str, workflow_id: str, actor_id: str, reason: str):
        self.operation = operation
        self.workflow_id = workflow_id
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(
            f"Access denied: {operation} on workflow {workflow_id} "
            f"for actor {actor_id} ({reason})"
        )


class VetoedRevertError(AccessDeniedError):
    """A veto hook blocked a revert."""

    code: str = "REVERT_VETOED"

    def __init__(self, transition_id: str, workflow_id: str, actor_id: str):
        self.transition_id = transition_id
        super().__init__(
            operation="revert",
            workflow_id=workflow_id,
            actor_id=actor_id,
            reason=f"revert of transition {transition_id} vetoed",
        )


# Concurrency-related exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StalenessConflictError(ConcurrencyError):
    """
    Entity state no longer matches what the transition expected.

    Raised at execution time.  The transition stays unexecuted and is
    never retried automatically.
    """

    code: str = "STALENESS_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        field_name: str,
        expected_state_id: str,
        actual_state_id: str | None,
        reason: str = "entity state changed since scheduling",
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.field_name = field_name
        self.expected_state_id = expected_state_id
        self.actual_state_id = actual_state_id
        self.reason = reason
        super().__init__(
            f"Stale transition on {entity_type} {entity_id}.{field_name}: "
            f"expected {expected_state_id}, found {actual_state_id} ({reason})"
        )


class OutOfOrderTransitionError(StalenessConflictError):
    """
    Transition is dated before the newest history entry of its field.

    The state itself may match; the conflict is in time, so the message
    names both instants instead of the two states.
    """

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        field_name: str,
        state_id: str,
        transition_timestamp: str,
        latest_timestamp: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.field_name = field_name
        self.expected_state_id = state_id
        self.actual_state_id = state_id
        self.transition_timestamp = transition_timestamp
        self.latest_timestamp = latest_timestamp
        self.reason = "transition is older than the latest history entry"
        ConcurrencyError.__init__(
            self,
            f"Out-of-order transition on {entity_type} {entity_id}.{field_name}: "
            f"dated {transition_timestamp}, latest history entry at {latest_timestamp}",
        )


# Scheduler-related exceptions


class SchedulerError(WorkflowKernelError):
    """Base exception for scheduled transition errors."""

    code: str = "SCHEDULER_ERROR"


class TransitionNotFoundError(SchedulerError):
    """Transition with given id was not found."""

    code: str = "TRANSITION_NOT_FOUND"

    def __init__(self, transition_id: str):
        self.transition_id = transition_id
        super().__init__(f"Transition not found: {transition_id}")


class TransitionAlreadyExecutedError(SchedulerError):
    """Executed transitions cannot be cancelled; revert them instead."""

    code: str = "TRANSITION_ALREADY_EXECUTED"

    def __init__(self, transition_id: str):
        self.transition_id = transition_id
        super().__init__(
            f"Transition {transition_id} is already executed; use revert instead"
        )


class TransitionInFlightError(SchedulerError):
    """The scheduler has claimed the transition for execution."""

    code: str = "TRANSITION_IN_FLIGHT"

    def __init__(self, transition_id: str):
        self.transition_id = transition_id
        super().__init__(f"Transition {transition_id} is already being executed")


class TransitionNotPendingError(SchedulerError):
    """Transition is neither pending nor in a state that allows the operation."""

    code: str = "TRANSITION_NOT_PENDING"

    def __init__(self, transition_id: str, status: str):
        self.transition_id = transition_id
        self.status = status
        super().__init__(
            f"Transition {transition_id} is not pending (status: {status})"
        )


class SchedulerExecutionFailure(SchedulerError):
    """Unexpected failure while a tick executed one transition."""

    code: str = "SCHEDULER_EXECUTION_FAILURE"

    def __init__(self, transition_id: str, cause: str):
        self.transition_id = transition_id
        self.cause = cause
        super().__init__(
            f"Scheduled transition {transition_id} failed unexpectedly: {cause}"
        )


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    History entries are append-only; executed transitions may only have
    their comment edited.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
