"""
Tests for workflow_config: YAML parsing, validation and engine settings.
"""

from dataclasses import fields
from uuid import uuid4

import pytest
import yaml

from workflow_config import (
    load_access,
    load_engine_settings,
    load_ownership,
    load_workflow_configuration,
    load_workflow_registry,
)
from workflow_config.loader import (
    DATABASE_URL_ENV,
    compute_checksum,
    parse_engine_settings,
    parse_state,
    parse_transition,
    parse_workflow,
)
from workflow_config.schema import DEFAULT_DATABASE_URL
from workflow_config.validator import validate_workflow, validate_workflows
from workflow_kernel.domain.access import Actor, Operation, Scope
from workflow_kernel.domain.transition import EntityRef
from workflow_kernel.domain.workflow import ANY_ROLE, WorkflowSettings
from workflow_kernel.exceptions import InvalidWorkflowDefinitionError


def _workflow(**overrides):
    data = {
        "id": "ticket",
        "states": [
            {"id": "open", "creation": True},
            {"id": "closed"},
        ],
        "transitions": [{"from": "open", "to": "closed", "roles": "agent"}],
    }
    data.update(overrides)
    return data


def _write(tmp_path, name, workflows):
    path = tmp_path / name
    path.write_text(yaml.safe_dump({"workflows": workflows}))
    return path


class TestParsing:
    def test_state_defaults(self):
        state = parse_state({"id": "open"}, 3)
        assert (state.label, state.weight, state.is_active, state.is_creation_state) == (
            "open", 3, True, False,
        )

    def test_transition_role_string(self):
        assert parse_transition({"from": "a", "to": "b", "roles": "agent"}).roles == {"agent"}

    def test_workflow_settings(self):
        definition = parse_workflow(_workflow(settings={"schedule_enabled": False}))
        assert not definition.settings.schedule_enabled
        assert definition.settings.log_transitions

    def test_unsupported_setting_is_ignored(self):
        definition = parse_workflow(_workflow(settings={"always_update_entity": True}))
        assert definition.settings == WorkflowSettings()
        assert {f.name for f in fields(WorkflowSettings)} == {
            "schedule_enabled", "schedule_timezone", "log_transitions",
        }

    def test_missing_id_raises(self):
        with pytest.raises(KeyError):
            parse_workflow({"states": []})

    def test_checksum_is_deterministic(self):
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})


class TestValidation:
    def test_valid_workflow(self):
        assert validate_workflow(parse_workflow(_workflow())).is_valid

    def test_two_creation_states(self):
        result = validate_workflow(parse_workflow(_workflow(states=[
            {"id": "open", "creation": True},
            {"id": "closed", "creation": True},
        ])))
        assert "expected exactly one creation state, found 2" in result.errors

    def test_inactive_creation_state(self):
        result = validate_workflow(parse_workflow(_workflow(states=[
            {"id": "open", "creation": True, "active": False},
            {"id": "closed"},
        ])))
        assert not result.is_valid

    def test_edge_to_unknown_state(self):
        result = validate_workflow(parse_workflow(_workflow(
            transitions=[
                {"from": "open", "to": "closed", "roles": "agent"},
                {"from": "closed", "to": "limbo", "roles": "agent"},
            ],
        )))
        assert any("limbo" in e for e in result.errors)

    def test_creation_state_without_exit(self):
        result = validate_workflow(parse_workflow(_workflow(transitions=[])))
        assert "no transition leaves creation state 'open'" in result.errors

    def test_duplicate_state_id(self):
        result = validate_workflow(parse_workflow(_workflow(states=[
            {"id": "open", "creation": True},
            {"id": "open"},
        ])))
        assert "duplicate state id 'open'" in result.errors

    def test_edge_without_roles_warns(self):
        result = validate_workflow(parse_workflow(_workflow(
            transitions=[{"from": "open", "to": "closed"}],
        )))
        assert result.is_valid
        assert result.warnings

    def test_duplicate_workflow_ids(self):
        definition = parse_workflow(_workflow())
        results = validate_workflows([definition, definition])
        assert "duplicate workflow id 'ticket'" in results["ticket"].errors


class TestLoading:
    def test_shipped_editorial_workflow(self, captured_logs):
        registry = load_workflow_registry()
        editorial = registry.get("editorial")

        assert editorial.creation_state_id == "draft"
        assert not editorial.is_active_state("archived")
        assert editorial.allowed_targets("draft") == {"review"}
        assert ANY_ROLE in editorial.edges_from("draft")[0].roles
        assert any(r["message"] == "workflow_config_loaded" for r in captured_logs())

    def test_directory_and_checksum(self, tmp_path):
        _write(tmp_path, "a.yaml", [_workflow()])
        _write(tmp_path, "b.yml", [_workflow(id="incident")])

        config = load_workflow_configuration([tmp_path])

        assert config.workflow_ids == ("ticket", "incident")
        assert len(config.sources) == 2
        assert config.checksum == load_workflow_configuration([tmp_path]).checksum

    def test_invalid_file_rejected(self, tmp_path):
        path = _write(tmp_path, "bad.yaml", [_workflow(transitions=[])])

        with pytest.raises(InvalidWorkflowDefinitionError) as exc_info:
            load_workflow_configuration([path])
        assert exc_info.value.workflow_id == "ticket"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workflow_configuration([tmp_path / "absent.yaml"])


class TestEngineSettings:
    def test_defaults(self):
        settings = parse_engine_settings({}, environ={})
        assert settings.database_url == DEFAULT_DATABASE_URL
        assert settings.log_level == "INFO"
        assert settings.claim_timeout_seconds == 900.0

    def test_file_values_and_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump({"engine": {
            "database_url": "sqlite:///file.db",
            "tick_interval_seconds": 5,
            "batch_size": 10,
            "claim_timeout_seconds": 120,
            "log_level": "debug",
        }}))
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)

        settings = load_engine_settings(path)
        assert (settings.database_url, settings.tick_interval_seconds, settings.batch_size) == (
            "sqlite:///file.db", 5.0, 10,
        )
        assert settings.log_level == "DEBUG"
        assert settings.claim_timeout_seconds == 120.0

        monkeypatch.setenv(DATABASE_URL_ENV, "postgresql://localhost/workflows")
        assert load_engine_settings(path).database_url == "postgresql://localhost/workflows"

    def test_access_section(self, tmp_path):
        editor_id, admin_id = uuid4(), uuid4()
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump({"access": {
            "roles": {"editor": ["editorial.revert.any"]},
            "actors": {str(editor_id): ["editor"]},
            "super_users": [str(admin_id)],
        }}))

        provider = load_access(path)
        editor = provider.resolve_actor(editor_id)

        assert editor.roles == {"editor"}
        assert provider.has_capability(editor, Operation.REVERT, "editorial", Scope.ANY)
        assert provider.is_super_user(Actor(actor_id=admin_id))

    def test_ownership_section(self, tmp_path):
        owner_id = uuid4()
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump({"ownership": [
            {"entity_type": "article", "entity_id": "a1", "owner": str(owner_id)},
        ]}))

        resolver = load_ownership(path)

        assert resolver.is_owner(Actor(actor_id=owner_id), EntityRef("article", "a1", "status"))
        assert not resolver.is_owner(Actor(actor_id=uuid4()), EntityRef("article", "a1", "status"))

    def test_no_ownership_section(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump({"engine": {"batch_size": 5}}))
        assert load_ownership(path) is None
        assert load_ownership() is None
