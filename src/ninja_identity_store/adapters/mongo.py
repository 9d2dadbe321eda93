"""Motor/MongoDB document client.

Optimistic concurrency is implemented with an ``_etag`` field written by the
client on every insert and replace: replace and delete filter on
``{_id, _etag}`` so a stale token matches nothing.

Requires the ``motor`` optional dependency:
    pip install ninja-identity-store[mongo]
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator

from ninja_identity_store.adapters import _validate_page_size
from ninja_identity_store.codec import ETAG_FIELD, ID_FIELD, PARTITION_FIELD
from ninja_identity_store.concurrency import new_etag
from ninja_identity_store.exceptions import ConcurrencyFailureError, DuplicateDocumentError

logger = logging.getLogger(__name__)


class MongoDocumentClient:
    """Async document client over one Motor collection.

    Driver errors other than duplicate keys are logged and re-raised
    unchanged; retry and backoff belong to the Motor client configuration.
    """

    def __init__(self, database: Any = None, collection_name: str = "identity", *, page_size: int = 100) -> None:
        self._database = database
        self._collection_name = collection_name
        self._page_size = _validate_page_size(page_size)

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def page_size(self) -> int:
        return self._page_size

    def _get_collection(self) -> Any:
        """Return the Motor collection, raising if no database is configured."""
        if self._database is None:
            raise RuntimeError(
                "MongoDocumentClient requires a Motor database instance. "
                "Pass it via the `database` constructor parameter."
            )
        return self._database[self._collection_name]

    @staticmethod
    def _key_filter(id: str, partition_key: str | None) -> dict[str, Any]:
        key: dict[str, Any] = {ID_FIELD: id}
        if partition_key is not None:
            key[PARTITION_FIELD] = partition_key
        return key

    async def get(self, id: str, partition_key: str | None = None) -> dict[str, Any] | None:
        """Retrieve a single document by ``_id``."""
        coll = self._get_collection()
        try:
            doc = await coll.find_one(self._key_filter(id, partition_key))
        except Exception as exc:
            _log_driver_error("get", self._collection_name, id, exc)
            raise
        return dict(doc) if doc else None

    async def create(self, document: dict[str, Any], partition_key: str | None = None) -> dict[str, Any]:
        """Insert a new document stamped with a fresh ``_etag``."""
        body = dict(document)
        body[ETAG_FIELD] = new_etag()
        if partition_key is not None:
            body[PARTITION_FIELD] = partition_key
        coll = self._get_collection()
        try:
            await coll.insert_one(body)
        except Exception as exc:
            if _is_duplicate_key_error(exc):
                logger.error("Mongo create failed in %s: duplicate key %s", self._collection_name, body.get(ID_FIELD))
                raise DuplicateDocumentError(
                    entity_name=str(body.get("document_type", self._collection_name)),
                    operation="create",
                    detail="A document with the same identifier already exists.",
                    cause=exc,
                ) from exc
            _log_driver_error("create", self._collection_name, body.get(ID_FIELD), exc)
            raise
        # insert_one may add driver-side fields to the dict it was given.
        return dict(body)

    async def replace(
        self, document: dict[str, Any], expected_etag: str, partition_key: str | None = None
    ) -> dict[str, Any]:
        """Replace the document only if its stored ``_etag`` equals *expected_etag*."""
        id = document[ID_FIELD]
        body = dict(document)
        body[ETAG_FIELD] = new_etag()
        if partition_key is not None:
            body[PARTITION_FIELD] = partition_key
        precondition = self._key_filter(id, partition_key)
        precondition[ETAG_FIELD] = expected_etag
        coll = self._get_collection()
        try:
            result = await coll.replace_one(precondition, body)
        except Exception as exc:
            _log_driver_error("replace", self._collection_name, id, exc)
            raise
        if result.matched_count == 0:
            logger.info("Mongo replace precondition failed in %s (id=%s)", self._collection_name, id)
            raise ConcurrencyFailureError(
                entity_name=str(document.get("document_type", self._collection_name)),
                operation="replace",
                detail="The document was changed or deleted since it was read.",
            )
        return body

    async def delete(self, id: str, expected_etag: str, partition_key: str | None = None) -> None:
        """Delete the document only if its stored ``_etag`` equals *expected_etag*."""
        precondition = self._key_filter(id, partition_key)
        precondition[ETAG_FIELD] = expected_etag
        coll = self._get_collection()
        try:
            result = await coll.delete_one(precondition)
        except Exception as exc:
            _log_driver_error("delete", self._collection_name, id, exc)
            raise
        if result.deleted_count == 0:
            logger.info("Mongo delete precondition failed in %s (id=%s)", self._collection_name, id)
            raise ConcurrencyFailureError(
                entity_name=self._collection_name,
                operation="delete",
                detail="The document was changed or deleted since it was read.",
            )

    async def query(
        self, filter: dict[str, Any], partition_key: str | None = None
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Stream matching documents; Motor fetches them ``page_size`` at a time."""
        criteria = dict(filter)
        if partition_key is not None:
            criteria[PARTITION_FIELD] = partition_key
        coll = self._get_collection()
        try:
            cursor = coll.find(criteria).batch_size(self._page_size)
            async for doc in cursor:
                yield dict(doc)
        except Exception as exc:
            _log_driver_error("query", self._collection_name, None, exc)
            raise


def _log_driver_error(operation: str, collection: str, id: Any, exc: Exception) -> None:
    if _is_connection_error(exc):
        logger.error("Mongo %s connection error in %s (id=%s): %s", operation, collection, id, type(exc).__name__)
    else:
        logger.error("Mongo %s failed in %s (id=%s): %s", operation, collection, id, type(exc).__name__)


def _is_duplicate_key_error(exc: Exception) -> bool:
    """Check whether *exc* is a MongoDB duplicate-key error.

    Works with or without ``pymongo`` installed by inspecting the exception's
    class name and the error code attribute used by PyMongo.
    """
    if type(exc).__name__ == "DuplicateKeyError":
        return True
    # PyMongo wraps duplicate key errors as WriteError with code 11000.
    return getattr(exc, "code", None) == 11000


def _is_connection_error(exc: Exception) -> bool:
    """Check whether *exc* indicates a connection-level failure.

    Detects PyMongo ``ConnectionFailure``, ``ServerSelectionTimeoutError``, and
    similar network-layer exceptions without requiring the import.
    """
    type_names = {cls.__name__ for cls in type(exc).__mro__}
    return bool(type_names & {"ConnectionFailure", "ServerSelectionTimeoutError", "AutoReconnect", "NetworkTimeout"})
