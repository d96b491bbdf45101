"""
Tests for WorkflowService, the caller-facing entry point.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from workflow_kernel.domain.registry import WorkflowRegistry
from workflow_kernel.domain.transition import (
    EntityRef,
    TransitionRequest,
    TransitionStatus,
)
from workflow_kernel.domain.workflow import WorkflowSettings
from workflow_kernel.exceptions import (
    AccessDeniedError,
    EntityIsNewError,
    InvalidWorkflowDefinitionError,
    SchedulingNotAllowedError,
    TransitionRejectedError,
    UnknownStateError,
    WorkflowNotFoundError,
)
from workflow_kernel.services.workflow_service import (
    DEACTIVATED_STATE_COMMENT,
    NO_NEXT_STATE_REASON,
    WorkflowService,
)


def _later(ref, actor, to_state, clock, minutes=60):
    return TransitionRequest(
        workflow_id="editorial",
        entity_ref=ref,
        to_state_id=to_state,
        actor=actor,
        timestamp=clock.now() + timedelta(minutes=minutes),
    )


# =============================================================================
# request_transition
# =============================================================================


class TestRequestTransition:
    def test_immediate_request_executes(self, workflow_service, article, author):
        workflow_service.register_entity("editorial", article)

        result = workflow_service.apply_given_state(
            "editorial", article, author, "review", comment="ready",
        )

        assert result.status == TransitionStatus.EXECUTED
        assert not result.scheduled
        assert result.comment == "ready"
        assert workflow_service.current_state("editorial", article) == "review"

    def test_unknown_target(self, workflow_service, article, author):
        with pytest.raises(UnknownStateError):
            workflow_service.apply_given_state("editorial", article, author, "limbo")

    def test_unknown_workflow(self, workflow_service, article, author):
        with pytest.raises(WorkflowNotFoundError):
            workflow_service.apply_given_state("newsroom", article, author, "review")

    def test_future_request_is_scheduled(self, workflow_service, article_in_review, editor, clock):
        result = workflow_service.request_transition(
            _later(article_in_review, editor, "published", clock),
        )

        assert result.status == TransitionStatus.PENDING
        assert result.scheduled
        assert result.from_state_id == "review"
        assert workflow_service.current_state("editorial", article_in_review) == "review"
        assert workflow_service.scheduling.pending_for(article_in_review) == [result]

    def test_immediate_request_leaves_pending_schedule(
        self, workflow_service, article_in_review, editor, clock,
    ):
        scheduled = workflow_service.request_transition(
            _later(article_in_review, editor, "published", clock),
        )
        workflow_service.apply_given_state("editorial", article_in_review, editor, "draft")

        pending = workflow_service.scheduling.pending_for(article_in_review)
        assert [t.transition_id for t in pending] == [scheduled.transition_id]

    def test_new_entity_cannot_schedule(self, workflow_service, article, editor, clock):
        with pytest.raises(EntityIsNewError):
            workflow_service.request_transition(_later(article, editor, "review", clock))

    def test_scheduling_disabled(
        self, db_session, definition, access, article_in_review, editor, clock,
    ):
        registry = WorkflowRegistry([
            replace(definition, settings=WorkflowSettings(schedule_enabled=False)),
        ])
        service = WorkflowService(db_session, registry, access, clock=clock)

        with pytest.raises(SchedulingNotAllowedError):
            service.request_transition(_later(article_in_review, editor, "published", clock))

    def test_scheduled_target_must_be_allowed(
        self, workflow_service, article_in_review, author, clock,
    ):
        with pytest.raises(TransitionRejectedError):
            workflow_service.request_transition(
                _later(article_in_review, author, "published", clock),
            )

    def test_actor_without_schedule_capability(
        self, workflow_service, article, reader, clock,
    ):
        workflow_service.register_entity("editorial", article)
        with pytest.raises(SchedulingNotAllowedError):
            workflow_service.request_transition(_later(article, reader, "review", clock))

    def test_forced_request_needs_force_capability(
        self, workflow_service, article, author, editor,
    ):
        workflow_service.register_entity("editorial", article)

        with pytest.raises(TransitionRejectedError):
            workflow_service.apply_given_state(
                "editorial", article, author, "published", forced=True,
            )

        forced = workflow_service.apply_given_state(
            "editorial", article, editor, "published", forced=True,
        )
        assert forced.forced
        assert workflow_service.current_state("editorial", article) == "published"


# =============================================================================
# advance_to_next_state
# =============================================================================


class TestAdvance:
    def test_moves_to_next_allowed_state(self, workflow_service, article_in_review, editor):
        result = workflow_service.advance_to_next_state("editorial", article_in_review, editor)
        assert result.to_state_id == "published"

    def test_from_creation_state(self, workflow_service, article, reader):
        workflow_service.register_entity("editorial", article)
        result = workflow_service.advance_to_next_state("editorial", article, reader)
        assert (result.from_state_id, result.to_state_id) == ("draft", "review")

    def test_no_next_state(self, workflow_service, article_in_review, editor, author):
        workflow_service.apply_given_state("editorial", article_in_review, editor, "published")

        with pytest.raises(TransitionRejectedError) as exc_info:
            workflow_service.advance_to_next_state("editorial", article_in_review, author)
        assert exc_info.value.reason == NO_NEXT_STATE_REASON


# =============================================================================
# cancel_scheduled / history / options_for
# =============================================================================


class TestCancelScheduled:
    @pytest.fixture
    def scheduled(self, workflow_service, article_in_review, editor, clock):
        return workflow_service.request_transition(
            _later(article_in_review, editor, "published", clock),
        )

    def test_owner_cancels(self, workflow_service, scheduled, editor):
        cancelled = workflow_service.cancel_scheduled(scheduled.transition_id, editor)
        assert cancelled.status == TransitionStatus.CANCELLED

    def test_schedule_own_is_not_enough_for_others(self, workflow_service, scheduled, author):
        with pytest.raises(AccessDeniedError):
            workflow_service.cancel_scheduled(scheduled.transition_id, author)

    def test_super_user_cancels(self, workflow_service, scheduled, admin):
        cancelled = workflow_service.cancel_scheduled(scheduled.transition_id, admin)
        assert cancelled.status == TransitionStatus.CANCELLED


class TestHistory:
    def test_reader_denied(self, workflow_service, article_in_review, reader):
        with pytest.raises(AccessDeniedError) as exc_info:
            workflow_service.history("editorial", article_in_review, reader)
        assert exc_info.value.operation == "view_history"

    def test_owner_sees_own_history(self, workflow_service, article_in_review, author, editor):
        workflow_service.apply_given_state("editorial", article_in_review, editor, "published")

        history = workflow_service.history("editorial", article_in_review, author)

        assert [e.to_state_id for e in history] == ["published", "review"]
        assert len(workflow_service.history("editorial", article_in_review, editor, limit=1)) == 1

    def test_own_scope_does_not_cover_other_entities(self, workflow_service, author):
        other = EntityRef("article", "a2", "status")
        workflow_service.register_entity("editorial", other)
        with pytest.raises(AccessDeniedError):
            workflow_service.history("editorial", other, author)


class TestOptions:
    def test_owner_in_review(self, workflow_service, article_in_review, author):
        options = workflow_service.options_for("editorial", article_in_review, author)

        assert options.current_state_id == "review"
        assert options.targets == ("draft", "review")
        assert options.must_offer_choice
        assert options.can_schedule

    def test_editor_in_review(self, workflow_service, article_in_review, editor):
        options = workflow_service.options_for("editorial", article_in_review, editor)
        assert options.targets == ("draft", "review", "published")

    def test_reader_has_single_option(self, workflow_service, article_in_review, reader):
        options = workflow_service.options_for("editorial", article_in_review, reader)

        assert options.targets == ("review",)
        assert not options.must_offer_choice
        assert not options.can_schedule

    def test_new_entity_cannot_schedule(self, workflow_service, editor):
        fresh = EntityRef("article", "new", "status")
        options = workflow_service.options_for("editorial", fresh, editor)

        assert options.current_state_id == "draft"
        assert options.targets == ("review",)
        assert not options.can_schedule


# =============================================================================
# Entity and state lifecycle
# =============================================================================


class TestEntityLifecycle:
    def test_register_defaults_to_creation_state(self, workflow_service, article):
        assert workflow_service.register_entity("editorial", article) == "draft"

    def test_register_in_explicit_state(self, workflow_service, article):
        assert workflow_service.register_entity("editorial", article, "published") == "published"

    def test_register_unknown_state(self, workflow_service, article):
        with pytest.raises(UnknownStateError):
            workflow_service.register_entity("editorial", article, "limbo")

    def test_entity_deleted_cancels_and_forgets(
        self, workflow_service, article_in_review, editor, clock, captured_logs,
    ):
        scheduled = workflow_service.request_transition(
            _later(article_in_review, editor, "published", clock),
        )

        cancelled = workflow_service.entity_deleted("article", "a1")

        assert cancelled == [scheduled.transition_id]
        assert workflow_service.scheduling.get(scheduled.transition_id).status == (
            TransitionStatus.CANCELLED
        )
        assert workflow_service.current_state("editorial", article_in_review) == "draft"
        assert any(r["message"] == "entity_deleted" for r in captured_logs())


class TestDeactivateState:
    def test_fields_moved_and_state_deactivated(
        self, workflow_service, db_session, registry, article_in_review, admin, editor,
    ):
        moved = workflow_service.deactivate_state("editorial", "review", "draft", admin)
        db_session.commit()

        assert len(moved) == 1
        assert moved[0].entity_ref == article_in_review
        assert moved[0].comment == DEACTIVATED_STATE_COMMENT
        assert moved[0].forced
        assert workflow_service.current_state("editorial", article_in_review) == "draft"
        assert not registry.get("editorial").is_active_state("review")
        assert "review" not in workflow_service.options_for(
            "editorial", article_in_review, editor,
        ).targets

    def test_registry_unchanged_until_commit(
        self, workflow_service, db_session, registry, article_in_review, admin,
    ):
        workflow_service.deactivate_state("editorial", "review", "draft", admin)

        assert registry.get("editorial").is_active_state("review")

    def test_rollback_keeps_state_active(
        self, workflow_service, db_session, registry, article_in_review, admin, captured_logs,
    ):
        workflow_service.deactivate_state("editorial", "review", "draft", admin)
        db_session.rollback()
        db_session.commit()

        assert registry.get("editorial").is_active_state("review")
        assert workflow_service.current_state("editorial", article_in_review) == "review"
        assert any(r["message"] == "workflow_definition_discarded" for r in captured_logs())

    def test_savepoint_commit_does_not_register(
        self, workflow_service, db_session, registry, article_in_review, admin,
    ):
        workflow_service.deactivate_state("editorial", "review", "draft", admin)
        db_session.begin_nested().commit()

        assert registry.get("editorial").is_active_state("review")

    def test_non_super_user_denied(self, workflow_service, article_in_review, editor):
        with pytest.raises(AccessDeniedError):
            workflow_service.deactivate_state("editorial", "review", "draft", editor)
        assert workflow_service.current_state("editorial", article_in_review) == "review"

    @pytest.mark.parametrize(
        "state_id, replacement",
        [("draft", "review"), ("review", "review"), ("review", "archived")],
    )
    def test_invalid_requests(self, workflow_service, admin, state_id, replacement):
        with pytest.raises(InvalidWorkflowDefinitionError):
            workflow_service.deactivate_state("editorial", state_id, replacement, admin)

    def test_unknown_state(self, workflow_service, admin):
        with pytest.raises(UnknownStateError):
            workflow_service.deactivate_state("editorial", "limbo", "draft", admin)
