"""Tests for DocumentRoleStore."""

from __future__ import annotations

import pytest
from conftest import TeamRole
from ninja_identity_store.exceptions import ConcurrencyFailureError, DuplicateRoleNameError, ValidationFailureError
from ninja_identity_store.models import Claim, IdentityRole, IdentityUser
from ninja_identity_store.role_store import DocumentRoleStore


async def test_create_and_find(role_store: DocumentRoleStore):
    role = await role_store.create(IdentityRole(name="Admin"))
    assert role.id and role.etag
    assert role.normalized_name == "ADMIN"
    assert (await role_store.find_by_id(role.id)).name == "Admin"
    assert (await role_store.find_by_name("ADMIN")).id == role.id


async def test_find_ignores_user_documents(role_store: DocumentRoleStore, make_user):
    """A user named like a role is not a role."""
    user = await make_user("ADMIN")
    assert await role_store.find_by_id(user.id) is None
    assert await role_store.find_by_name("ADMIN") is None


async def test_duplicate_role_name_raises(role_store: DocumentRoleStore, make_role):
    await make_role("Admin")
    with pytest.raises(DuplicateRoleNameError):
        await role_store.create(IdentityRole(name="admin"))


async def test_role_and_user_name_spaces_are_separate(role_store: DocumentRoleStore, make_user):
    """Uniqueness is checked among documents of the same kind only."""
    await make_user("shared")
    role = await role_store.create(IdentityRole(name="shared"))
    assert role.id


async def test_rename_role(role_store: DocumentRoleStore, make_role):
    role = await make_role("Editor")
    await role_store.set_role_name(role, "Writer")
    assert (await role_store.find_by_name("WRITER")).id == role.id
    assert await role_store.find_by_name("EDITOR") is None


async def test_rename_to_taken_name_raises(role_store: DocumentRoleStore, make_role):
    await make_role("A")
    b = await make_role("B")
    with pytest.raises(DuplicateRoleNameError):
        await role_store.set_normalized_role_name(b, "A")


async def test_stale_role_update_fails(role_store: DocumentRoleStore, make_role):
    role = await make_role("Ops")
    stale = await role_store.find_by_id(role.id)
    await role_store.add_claim(role, Claim(type="perm", value="deploy"))

    stale.name = "Operations"
    with pytest.raises(ConcurrencyFailureError):
        await role_store.update(stale)
    assert (await role_store.find_by_id(role.id)).name == "Ops"


async def test_delete_role(role_store: DocumentRoleStore, make_role):
    role = await make_role("Temp")
    await role_store.delete(role)
    assert await role_store.find_by_id(role.id) is None


async def test_stale_role_delete_fails(role_store: DocumentRoleStore, make_role):
    role = await make_role("Legacy")
    stale = await role_store.find_by_id(role.id)
    await role_store.set_role_name(role, "Legacy2")

    with pytest.raises(ConcurrencyFailureError):
        await role_store.delete(stale)
    assert (await role_store.find_by_id(role.id)).name == "Legacy2"


async def test_update_to_taken_name_raises(role_store: DocumentRoleStore, make_role):
    """update() rechecks uniqueness when the normalized name changed."""
    await make_role("Taken")
    other = await make_role("Free")

    other.name = "taken"
    other.normalized_name = "TAKEN"
    with pytest.raises(DuplicateRoleNameError):
        await role_store.update(other)
    assert (await role_store.find_by_id(other.id)).normalized_name == "FREE"


async def test_role_claims(role_store: DocumentRoleStore, make_role):
    role = await make_role("Support")
    await role_store.add_claim(role, Claim(type="perm", value="read"))
    await role_store.add_claim(role, Claim(type="perm", value="read"))
    await role_store.add_claim(role, Claim(type="perm", value="write"))

    stored = await role_store.find_by_id(role.id)
    assert [c.value for c in await role_store.get_claims(stored)] == ["read", "write"]

    await role_store.remove_claim(stored, Claim(type="perm", value="read"))
    assert [c.value for c in (await role_store.find_by_id(role.id)).claims] == ["write"]


async def test_role_claim_must_be_claim(role_store: DocumentRoleStore, make_role):
    role = await make_role("Strict")
    with pytest.raises(ValidationFailureError):
        await role_store.add_claim(role, "perm:read")  # type: ignore[arg-type]


async def test_derived_role_round_trip(role_store: DocumentRoleStore):
    role = await role_store.create(TeamRole(name="Core", team_size=4))
    found = await role_store.find_by_name("CORE")
    assert isinstance(found, TeamRole)
    assert found.team_size == 4


async def test_iter_roles(role_store: DocumentRoleStore, make_role, user_store):
    await make_role("One")
    await make_role("Two")
    await user_store.create(IdentityUser(user_name="not-a-role"))
    assert sorted([r.name async for r in role_store.iter_roles()]) == ["One", "Two"]
