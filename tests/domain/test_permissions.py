"""
Tests for permission naming, the catalogue and the static providers.
"""

from uuid import uuid4

from workflow_kernel.domain.access import Actor, Operation, Scope
from workflow_kernel.domain.permissions import (
    StaticOwnershipResolver,
    StaticPermissionProvider,
    permission_catalogue,
    permission_name,
)
from workflow_kernel.domain.protocols import OwnershipResolver, PermissionProvider
from workflow_kernel.domain.transition import EntityRef


class TestPermissionNames:
    def test_name_format(self):
        assert permission_name(Operation.REVERT, "editorial", Scope.OWN) == "editorial.revert.own"

    def test_catalogue_skips_ungated_operations(self, definition):
        names = {p.name for p in permission_catalogue(definition)}

        assert "editorial.view_history.any" in names
        assert "editorial.force.own" in names
        assert not any(".delete." in n for n in names)
        assert not any(".view_state_label." in n for n in names)

    def test_catalogue_covers_both_scopes(self, definition):
        catalogue = permission_catalogue(definition)
        gated = [op for op in Operation if op not in (Operation.DELETE, Operation.VIEW_STATE_LABEL)]
        assert len(catalogue) == 2 * len(gated)
        assert all(p.title.startswith("Editorial: ") for p in catalogue)


class TestStaticPermissionProvider:
    def test_satisfies_protocol(self):
        assert isinstance(StaticPermissionProvider(), PermissionProvider)

    def test_actor_grant(self):
        actor = Actor(actor_id=uuid4())
        provider = StaticPermissionProvider(
            actor_permissions={actor.actor_id: {"editorial.view.any"}},
        )
        assert provider.has_capability(actor, Operation.VIEW, "editorial", Scope.ANY)
        assert not provider.has_capability(actor, Operation.VIEW, "editorial", Scope.OWN)

    def test_role_grant_through_actor_roles(self):
        actor_id = uuid4()
        provider = StaticPermissionProvider(
            role_permissions={"editor": {"editorial.revert.any"}},
            actor_roles={actor_id: {"editor"}},
        )
        assert provider.has_capability(
            Actor(actor_id=actor_id), Operation.REVERT, "editorial", Scope.ANY,
        )

    def test_resolve_actor_carries_roles(self):
        actor_id = uuid4()
        provider = StaticPermissionProvider(actor_roles={actor_id: {"editor"}})
        assert provider.resolve_actor(actor_id) == Actor(actor_id, frozenset({"editor"}))
        assert provider.resolve_actor(uuid4()).roles == frozenset()

    def test_super_user(self):
        admin_id = uuid4()
        provider = StaticPermissionProvider(super_users={admin_id})
        assert provider.is_super_user(Actor(admin_id))
        assert not provider.is_super_user(Actor(uuid4()))


class TestStaticOwnershipResolver:
    def test_owner_matches_by_entity(self):
        owner = Actor(uuid4())
        resolver = StaticOwnershipResolver()
        resolver.set_owner("article", "a1", owner.actor_id)

        assert isinstance(resolver, OwnershipResolver)
        assert resolver.is_owner(owner, EntityRef("article", "a1", "status"))
        assert resolver.is_owner(owner, EntityRef("article", "a1", "other_field"))
        assert not resolver.is_owner(owner, EntityRef("article", "a2", "status"))
        assert not resolver.is_owner(Actor(uuid4()), EntityRef("article", "a1", "status"))
