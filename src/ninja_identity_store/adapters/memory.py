"""In-memory document client for development and testing."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, AsyncGenerator

from ninja_identity_store.adapters import _validate_page_size
from ninja_identity_store.codec import ETAG_FIELD, ID_FIELD, PARTITION_FIELD
from ninja_identity_store.concurrency import new_etag
from ninja_identity_store.exceptions import ConcurrencyFailureError, DuplicateDocumentError, QueryError

logger = logging.getLogger(__name__)


class InMemoryDocumentClient:
    """Non-persistent, in-memory document collection.

    Behaves like :class:`~ninja_identity_store.adapters.mongo.MongoDocumentClient`:
    token-guarded replace/delete, duplicate-id rejection, and paged queries
    over the same filter dialect (equality, ``$in``, ``$elemMatch``, ``$and``).
    Documents are deep-copied on the way in and out.

    .. warning::
        All documents are lost on process restart. Do **not** use in production.
    """

    def __init__(self, collection_name: str = "identity", *, page_size: int = 100) -> None:
        logger.warning(
            "Identity store collection '%s' is held in memory. "
            "All documents will be lost on restart. "
            "Use MongoDocumentClient for production use.",
            collection_name,
        )
        self._collection_name = collection_name
        self._page_size = _validate_page_size(page_size)
        # (partition_key, id) -> document, in insertion order
        self._documents: dict[tuple[str | None, str], dict[str, Any]] = {}

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def page_size(self) -> int:
        return self._page_size

    def __len__(self) -> int:
        return len(self._documents)

    async def get(self, id: str, partition_key: str | None = None) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        doc = self._documents.get((partition_key, id))
        return copy.deepcopy(doc) if doc is not None else None

    async def create(self, document: dict[str, Any], partition_key: str | None = None) -> dict[str, Any]:
        await asyncio.sleep(0)
        key = (partition_key, document[ID_FIELD])
        if key in self._documents:
            raise DuplicateDocumentError(
                entity_name=str(document.get("document_type", self._collection_name)),
                operation="create",
                detail="A document with the same identifier already exists.",
            )
        body = copy.deepcopy(document)
        body[ETAG_FIELD] = new_etag()
        if partition_key is not None:
            body[PARTITION_FIELD] = partition_key
        self._documents[key] = body
        return copy.deepcopy(body)

    async def replace(
        self, document: dict[str, Any], expected_etag: str, partition_key: str | None = None
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        key = (partition_key, document[ID_FIELD])
        current = self._documents.get(key)
        if current is None or current.get(ETAG_FIELD) != expected_etag:
            raise ConcurrencyFailureError(
                entity_name=str(document.get("document_type", self._collection_name)),
                operation="replace",
                detail="The document was changed or deleted since it was read.",
            )
        body = copy.deepcopy(document)
        body[ETAG_FIELD] = new_etag()
        if partition_key is not None:
            body[PARTITION_FIELD] = partition_key
        self._documents[key] = body
        return copy.deepcopy(body)

    async def delete(self, id: str, expected_etag: str, partition_key: str | None = None) -> None:
        await asyncio.sleep(0)
        key = (partition_key, id)
        current = self._documents.get(key)
        if current is None or current.get(ETAG_FIELD) != expected_etag:
            raise ConcurrencyFailureError(
                entity_name=self._collection_name,
                operation="delete",
                detail="The document was changed or deleted since it was read.",
            )
        del self._documents[key]

    async def query(
        self, filter: dict[str, Any], partition_key: str | None = None
    ) -> AsyncGenerator[dict[str, Any], None]:
        # The whole filter is checked before the first page.
        _check_filter(filter, self._collection_name)
        keys = [key for key in self._documents if key[0] == partition_key]
        for start in range(0, len(keys), self._page_size):
            await asyncio.sleep(0)
            for key in keys[start : start + self._page_size]:
                doc = self._documents.get(key)
                # Deleted after the scan started.
                if doc is None:
                    continue
                if _matches(doc, filter):
                    yield copy.deepcopy(doc)


_SUPPORTED_OPERATORS = {"$in", "$elemMatch", "$and"}


def _check_filter(filter: Any, collection: str) -> None:
    if isinstance(filter, dict):
        for key, value in filter.items():
            if isinstance(key, str) and key.startswith("$") and key not in _SUPPORTED_OPERATORS:
                raise QueryError(
                    entity_name=collection,
                    operation="query",
                    detail=f"Operator '{key}' is not supported by the in-memory client.",
                )
            _check_filter(value, collection)
    elif isinstance(filter, list):
        for item in filter:
            _check_filter(item, collection)


def _matches(document: dict[str, Any], filter: dict[str, Any]) -> bool:
    for key, condition in filter.items():
        if key == "$and":
            if not all(_matches(document, clause) for clause in condition):
                return False
            continue
        if not _field_matches(document.get(key), condition):
            return False
    return True


def _field_matches(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$in":
                if value not in operand:
                    return False
            elif op == "$elemMatch":
                if not isinstance(value, list):
                    return False
                if not any(isinstance(item, dict) and _matches(item, operand) for item in value):
                    return False
        return True
    return value == condition
