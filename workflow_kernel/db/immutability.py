"""
ORM-Level Immutability Enforcement for transition history.

===============================================================================
WHY THIS EXISTS
===============================================================================

The history of a tracked field is the record of who moved it where and
when.  Once written it may only grow: a mistaken transition is undone by a
revert, which appends a new transition, never by editing or deleting the
old one.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

Bulk Core statements (``update()``/``delete()`` executed directly) bypass
these listeners.  The services only use Core UPDATEs for compare-and-set
on tracked fields and transition status claims, neither of which touches
an executed row.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable             | What may still change
--------------------|----------------------------|----------------------
HistoryEntryModel   | ALWAYS (from creation)     | comment
TransitionModel     | After status = executed    | comment

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY ALLOW comment CHANGES?
   Editing the comment of an executed transition is a supported, access
   controlled operation.  The comment is metadata, not state.

2. WHY CHECK "WAS EXECUTED" NOT "IS EXECUTED"?
   The executor itself sets status=executed on a claimed row.  That
   transition is allowed; any change after it is flushed is not.

3. WHY INLINE IMPORTS?
   Avoids circular imports. Models import from db, db imports from models.

===============================================================================
USAGE
===============================================================================

Called once at startup:

    from workflow_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from workflow_kernel.exceptions import ImmutabilityViolationError
from workflow_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields that stay editable on otherwise immutable rows.
MUTABLE_AFTER_EXECUTION = frozenset({"comment"})


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _changed_protected_field(target) -> str | None:
    for attr in inspect(target).attrs:
        if attr.key in MUTABLE_AFTER_EXECUTION:
            continue
        if attr.history.has_changes():
            return attr.key
    return None


def _check_history_entry_immutability(mapper, connection, target):
    """History entries never change except for their comment."""
    from workflow_kernel.models.history import HistoryEntryModel

    if not isinstance(target, HistoryEntryModel):
        return

    field = _changed_protected_field(target)
    if field is not None:
        _blocked(
            "HistoryEntry",
            str(target.entry_id),
            "UPDATE",
            f"Cannot modify field '{field}' on a history entry",
            field,
        )


def _check_history_entry_delete(mapper, connection, target):
    from workflow_kernel.models.history import HistoryEntryModel

    if not isinstance(target, HistoryEntryModel):
        return

    _blocked(
        "HistoryEntry",
        str(target.entry_id),
        "DELETE",
        "History entries cannot be deleted",
    )


def _was_executed(target) -> bool:
    status_history = get_history(target, "status")
    if status_history.deleted:
        return status_history.deleted[0] == "executed"
    if status_history.added:
        return False
    return target.status == "executed"


def _check_transition_immutability(mapper, connection, target):
    """
    Executed transitions are frozen except for their comment.

    pending/claimed -> executed is the execution itself and is allowed.
    """
    from workflow_kernel.models.transition import TransitionModel

    if not isinstance(target, TransitionModel):
        return
    if not _was_executed(target):
        return

    field = _changed_protected_field(target)
    if field is not None:
        _blocked(
            "Transition",
            str(target.transition_id),
            "UPDATE",
            f"Cannot modify field '{field}' on an executed transition",
            field,
        )


def _check_transition_delete(mapper, connection, target):
    from workflow_kernel.models.transition import TransitionModel

    if not isinstance(target, TransitionModel):
        return
    if not _was_executed(target):
        return

    _blocked(
        "Transition",
        str(target.transition_id),
        "DELETE",
        "Executed transitions cannot be deleted; revert them instead",
    )


_LISTENERS = (
    ("HistoryEntryModel", "before_update", _check_history_entry_immutability),
    ("HistoryEntryModel", "before_delete", _check_history_entry_delete),
    ("TransitionModel", "before_update", _check_transition_immutability),
    ("TransitionModel", "before_delete", _check_transition_delete),
)


def _models():
    from workflow_kernel.models.history import HistoryEntryModel
    from workflow_kernel.models.transition import TransitionModel

    return {
        "HistoryEntryModel": HistoryEntryModel,
        "TransitionModel": TransitionModel,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call this after models are importable but before any database
    operations begin.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        _safe_remove_listener(models[model_name], event_name, listener_fn)
