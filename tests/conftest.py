"""
Pytest fixtures for the workflow kernel test suite.

Provides:
- In-memory SQLite engine, session factory and sessions (one database per test)
- The editorial workflow, actors and static permission grants
- WorkflowService / TransitionScheduler wiring with a DeterministicClock
- Structured log capture

The editorial workflow used throughout:

    draft --(*)--> review --(editor)--> published --(editor)--> archived (inactive)
                     |  ^                   |
    (author, editor) v  +-----(editor)------+
                   draft
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from workflow_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from workflow_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from workflow_kernel.domain.access import AccessControl, Actor, Operation, Scope
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.permissions import (
    StaticOwnershipResolver,
    StaticPermissionProvider,
    permission_name,
)
from workflow_kernel.domain.registry import WorkflowRegistry
from workflow_kernel.domain.transition import EntityRef, TransitionNotification
from workflow_kernel.domain.workflow import (
    ANY_ROLE,
    AUTHOR_ROLE,
    ConfigTransition,
    State,
    WorkflowDefinition,
)
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.services.scheduler import TransitionScheduler, executor_factory_for
from workflow_kernel.services.sequence_service import SequenceService
from workflow_kernel.services.workflow_service import WorkflowService

WORKFLOW_ID = "editorial"

AUTHOR_ID = uuid4()
EDITOR_ID = uuid4()
READER_ID = uuid4()
ADMIN_ID = uuid4()

START_TIME = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_editorial_definition() -> WorkflowDefinition:
    return WorkflowDefinition(
        workflow_id=WORKFLOW_ID,
        label="Editorial",
        states=(
            State("draft", "Draft", weight=0, is_creation_state=True),
            State("review", "In review", weight=10),
            State("published", "Published", weight=20),
            State("archived", "Archived", weight=30, is_active=False),
        ),
        transitions=(
            ConfigTransition("draft", "review", frozenset({ANY_ROLE})),
            ConfigTransition("review", "draft", frozenset({AUTHOR_ROLE, "editor"})),
            ConfigTransition("review", "published", frozenset({"editor"})),
            ConfigTransition("published", "review", frozenset({"editor"})),
            ConfigTransition("published", "archived", frozenset({"editor"})),
        ),
    )


def grants(*operations: Operation, scope: Scope) -> set[str]:
    return {permission_name(op, WORKFLOW_ID, scope) for op in operations}


class RecordingSink:
    """NotificationSink that keeps every notification."""

    def __init__(self):
        self.notifications: list[TransitionNotification] = []

    def notify(self, notification: TransitionNotification) -> None:
        self.notifications.append(notification)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow_service):
            ...
            logs = captured_logs()
            assert any(r["message"] == "transition_executed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database with tables, counters and immutability listeners."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    register_immutability_listeners()

    session = get_session_factory()()
    SequenceService(session).initialize_sequences()
    session.commit()
    session.close()

    yield get_engine()

    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=START_TIME)


@pytest.fixture
def definition():
    return make_editorial_definition()


@pytest.fixture
def registry(definition):
    return WorkflowRegistry([definition])


@pytest.fixture
def author():
    return Actor(actor_id=AUTHOR_ID, roles=frozenset({"author"}))


@pytest.fixture
def editor():
    return Actor(actor_id=EDITOR_ID, roles=frozenset({"editor"}))


@pytest.fixture
def reader():
    return Actor(actor_id=READER_ID)


@pytest.fixture
def admin():
    return Actor(actor_id=ADMIN_ID)


@pytest.fixture
def permissions():
    author_grants = grants(
        Operation.VIEW,
        Operation.VIEW_HISTORY,
        Operation.EDIT_COMMENT,
        Operation.REVERT,
        Operation.SCHEDULE_CREATE,
        scope=Scope.OWN,
    )
    editor_grants = grants(
        Operation.VIEW,
        Operation.VIEW_HISTORY,
        Operation.SCHEDULE_CREATE,
        Operation.FORCE,
        scope=Scope.ANY,
    ) | grants(Operation.EDIT_COMMENT, Operation.REVERT, scope=Scope.OWN)

    return StaticPermissionProvider(
        role_permissions={"author": author_grants, "editor": editor_grants},
        actor_roles={AUTHOR_ID: {"author"}, EDITOR_ID: {"editor"}},
        super_users={ADMIN_ID},
    )


@pytest.fixture
def access(permissions):
    return AccessControl(permissions)


@pytest.fixture
def article():
    return EntityRef("article", "a1", "status")


@pytest.fixture
def ownership(article):
    return StaticOwnershipResolver({(article.entity_type, article.entity_id): AUTHOR_ID})


@pytest.fixture
def sink():
    return RecordingSink()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def make_service(registry, access, ownership, sink, clock):
    """Build a WorkflowService bound to a given session."""

    def _make(session: Session) -> WorkflowService:
        return WorkflowService(
            session,
            registry,
            access,
            ownership=ownership,
            notifier=sink,
            clock=clock,
        )

    return _make


@pytest.fixture
def workflow_service(db_session, make_service) -> WorkflowService:
    return make_service(db_session)


@pytest.fixture
def executor_factory(registry, access, ownership, sink, clock):
    """The executor wiring the scheduler runner uses."""
    return executor_factory_for(
        registry, access, ownership=ownership, notifier=sink, clock=clock,
    )


@pytest.fixture
def scheduler(session_factory, executor_factory, clock):
    return TransitionScheduler(
        session_factory=session_factory,
        executor_factory=executor_factory,
        clock=clock,
        tick_interval_seconds=1,
    )


@pytest.fixture
def article_in_review(workflow_service, db_session, article, author):
    """Article registered and moved to review by its author, committed."""
    workflow_service.register_entity(WORKFLOW_ID, article)
    workflow_service.apply_given_state(WORKFLOW_ID, article, author, "review")
    db_session.commit()
    return article
