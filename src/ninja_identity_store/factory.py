"""Store wiring: builds user and role stores from an IdentityStoreConfig."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ninja_identity_store.adapters.mongo import MongoDocumentClient
from ninja_identity_store.codec import DocumentTypeRegistry
from ninja_identity_store.config import IdentityStoreConfig, redact_url
from ninja_identity_store.normalizers import LookupNormalizer
from ninja_identity_store.protocols import DocumentClient
from ninja_identity_store.role_store import DocumentRoleStore
from ninja_identity_store.user_store import DocumentUserStore

logger = logging.getLogger(__name__)


@dataclass
class IdentityStores:
    """The user and role stores built over one configuration."""

    users: DocumentUserStore
    roles: DocumentRoleStore


def connect_mongo(config: IdentityStoreConfig, **client_options: Any) -> Any:
    """Create a Motor client for ``config.connection_url``.

    The caller owns the returned client and must close it; the stores never
    open or close connections themselves.
    """
    if not config.connection_url:
        raise ValueError("IdentityStoreConfig.connection_url is required to connect to MongoDB")
    from motor.motor_asyncio import AsyncIOMotorClient

    logger.info("Connecting identity store to %s", redact_url(config.connection_url))
    return AsyncIOMotorClient(config.connection_url, **client_options)


def build_document_clients(
    database: Any, config: IdentityStoreConfig
) -> tuple[DocumentClient, DocumentClient]:
    """Return (user_client, role_client); one shared client when the collections coincide."""
    user_client = MongoDocumentClient(database, config.user_collection, page_size=config.page_size)
    if config.shares_collection:
        return user_client, user_client
    role_collection = config.role_collection or config.user_collection
    role_client = MongoDocumentClient(database, role_collection, page_size=config.page_size)
    return user_client, role_client


def build_identity_stores(
    database: Any,
    config: IdentityStoreConfig,
    *,
    registry: DocumentTypeRegistry | None = None,
    normalizer: LookupNormalizer | None = None,
    clients: tuple[DocumentClient, DocumentClient] | None = None,
) -> IdentityStores:
    """Build both stores over *database* (a Motor database) or explicit *clients*.

    Both stores share one :class:`DocumentTypeRegistry`, so derived types
    registered on it are recognised by either store.
    """
    user_client, role_client = clients if clients is not None else build_document_clients(database, config)
    registry = registry if registry is not None else DocumentTypeRegistry()
    common: dict[str, Any] = {
        "registry": registry,
        "normalizer": normalizer,
        "partition_key": config.partition_key,
        "auto_save_changes": config.auto_save_changes,
    }
    users = DocumentUserStore(user_client, role_client=role_client, **common)
    roles = DocumentRoleStore(role_client, **common)
    logger.debug(
        "Built identity stores on %s.%s / %s.%s",
        config.database_name,
        user_client.collection_name,
        config.database_name,
        role_client.collection_name,
    )
    return IdentityStores(users=users, roles=roles)


def get_database(client: Any, config: IdentityStoreConfig) -> Any:
    """Return the configured database from a Motor client."""
    return client[config.database_name]
