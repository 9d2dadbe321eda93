"""Tests for store wiring."""

from __future__ import annotations

import logging
import sys
from unittest.mock import MagicMock, patch

import pytest
from conftest import EmployeeUser
from ninja_identity_store.adapters.memory import InMemoryDocumentClient
from ninja_identity_store.adapters.mongo import MongoDocumentClient
from ninja_identity_store.codec import DocumentTypeRegistry
from ninja_identity_store.config import IdentityStoreConfig
from ninja_identity_store.factory import build_document_clients, build_identity_stores, connect_mongo, get_database
from ninja_identity_store.models import IdentityRole


def test_shared_collection_uses_one_client():
    database = MagicMock()
    users, roles = build_document_clients(database, IdentityStoreConfig(database_name="d", page_size=20))
    assert users is roles
    assert isinstance(users, MongoDocumentClient)
    assert users.collection_name == "users"
    assert users.page_size == 20


def test_separate_collections_use_two_clients():
    database = MagicMock()
    config = IdentityStoreConfig(database_name="d", user_collection="people", role_collection="groups")
    users, roles = build_document_clients(database, config)
    assert users is not roles
    assert (users.collection_name, roles.collection_name) == ("people", "groups")


def test_build_identity_stores_applies_config():
    config = IdentityStoreConfig(database_name="d", partition_key="tenant", auto_save_changes=False)
    stores = build_identity_stores(MagicMock(), config)

    assert stores.users.partition_key == "tenant"
    assert stores.roles.partition_key == "tenant"
    assert stores.users.auto_save_changes is False
    assert stores.users.registry is stores.roles.registry


async def test_build_with_explicit_clients_and_registry():
    """Stores built over explicit clients share the caller's registry."""
    registry = DocumentTypeRegistry()
    registry.register(EmployeeUser)
    shared = InMemoryDocumentClient("identity")
    stores = build_identity_stores(
        None, IdentityStoreConfig(database_name="d"), registry=registry, clients=(shared, shared)
    )

    await stores.roles.create(IdentityRole(name="Staff"))
    user = await stores.users.create(EmployeeUser(user_name="emp", department="ops"))
    await stores.users.add_to_role(user, "STAFF")

    found = await stores.users.find_by_name("EMP")
    assert isinstance(found, EmployeeUser)
    assert await stores.users.is_in_role(found, "STAFF")


def test_connect_mongo_requires_url():
    with pytest.raises(ValueError, match="connection_url is required"):
        connect_mongo(IdentityStoreConfig(database_name="d"))


def test_connect_mongo_creates_motor_client(caplog):
    caplog.set_level(logging.INFO, logger="ninja_identity_store.factory")
    fake_motor = MagicMock()
    config = IdentityStoreConfig(database_name="d", connection_url="mongodb://user:pw@db:27017")
    with patch.dict(sys.modules, {"motor": MagicMock(), "motor.motor_asyncio": fake_motor}):
        client = connect_mongo(config, serverSelectionTimeoutMS=100)

    fake_motor.AsyncIOMotorClient.assert_called_once_with("mongodb://user:pw@db:27017", serverSelectionTimeoutMS=100)
    assert client is fake_motor.AsyncIOMotorClient.return_value
    assert "mongodb://***:***@db:27017" in caplog.text
    assert "pw" not in caplog.text


def test_get_database():
    client = MagicMock()
    get_database(client, IdentityStoreConfig(database_name="identity"))
    client.__getitem__.assert_called_once_with("identity")
