"""Shared fixtures for ninja-identity-store tests."""

from __future__ import annotations

from typing import ClassVar

import pytest
from ninja_identity_store.adapters.memory import InMemoryDocumentClient
from ninja_identity_store.codec import DocumentTypeRegistry
from ninja_identity_store.models import IdentityRole, IdentityUser
from ninja_identity_store.role_store import DocumentRoleStore
from ninja_identity_store.user_store import DocumentUserStore


class EmployeeUser(IdentityUser):
    """Derived user type with its own discriminator and extension fields."""

    document_type: ClassVar[str] = "EmployeeUser"
    extension_fields: ClassVar[tuple[str, ...]] = ("department", "badge_number")

    department: str | None = None
    badge_number: int | None = None


class TeamRole(IdentityRole):
    document_type: ClassVar[str] = "TeamRole"
    extension_fields: ClassVar[tuple[str, ...]] = ("team_size",)

    team_size: int = 0


@pytest.fixture
def registry() -> DocumentTypeRegistry:
    registry = DocumentTypeRegistry()
    registry.register(EmployeeUser)
    registry.register(TeamRole)
    return registry


@pytest.fixture
def client() -> InMemoryDocumentClient:
    """One collection shared by users and roles."""
    return InMemoryDocumentClient("identity", page_size=2)


@pytest.fixture
def user_store(client: InMemoryDocumentClient, registry: DocumentTypeRegistry) -> DocumentUserStore:
    return DocumentUserStore(client, registry=registry)


@pytest.fixture
def role_store(client: InMemoryDocumentClient, registry: DocumentTypeRegistry) -> DocumentRoleStore:
    return DocumentRoleStore(client, registry=registry)


@pytest.fixture
def make_user(user_store: DocumentUserStore):
    """Create and persist a user with the given name."""

    async def _make(user_name: str, **fields) -> IdentityUser:
        return await user_store.create(IdentityUser(user_name=user_name, **fields))

    return _make


@pytest.fixture
def make_role(role_store: DocumentRoleStore):
    async def _make(name: str) -> IdentityRole:
        return await role_store.create(IdentityRole(name=name))

    return _make
