"""Shared create/update/delete/lookup plumbing for the user and role stores."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Generic, TypeVar

from ninja_identity_store.codec import DocumentTypeRegistry, EntityCodec
from ninja_identity_store.concurrency import ConcurrencyTracker, IdentityAssigner
from ninja_identity_store.exceptions import IdentityStoreError, ValidationFailureError
from ninja_identity_store.models import _IdentityDocument
from ninja_identity_store.normalizers import LookupNormalizer, UpperInvariantLookupNormalizer
from ninja_identity_store.protocols import DocumentClient
from ninja_identity_store.queries import DocumentQuery, QueryBuilder, single_or_none

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=_IdentityDocument)


class DocumentStore(Generic[E]):
    """Composes codec, query builder and concurrency tracking over one client.

    Subclasses fix the entity kind and supply the uniqueness check.
    """

    kind: str = ""
    base_type: type[_IdentityDocument] = _IdentityDocument
    duplicate_error: type[IdentityStoreError] = IdentityStoreError

    def __init__(
        self,
        client: DocumentClient,
        *,
        registry: DocumentTypeRegistry | None = None,
        normalizer: LookupNormalizer | None = None,
        partition_key: str | None = None,
        auto_save_changes: bool = True,
        id_assigner: IdentityAssigner | None = None,
    ) -> None:
        self._client = client
        self._registry = registry if registry is not None else DocumentTypeRegistry()
        self._codec = EntityCodec(self._registry)
        self._queries = QueryBuilder(self._registry)
        self._normalizer = normalizer or UpperInvariantLookupNormalizer()
        self._partition_key = partition_key
        self._ids = id_assigner or IdentityAssigner()
        self._tokens = ConcurrencyTracker()
        self.auto_save_changes = auto_save_changes

    @property
    def registry(self) -> DocumentTypeRegistry:
        return self._registry

    @property
    def queries(self) -> QueryBuilder:
        return self._queries

    @property
    def partition_key(self) -> str | None:
        return self._partition_key

    # -- validation ------------------------------------------------------------

    def _validate(self, entity: Any, operation: str) -> E:
        if entity is None:
            raise ValidationFailureError(
                entity_name=self.kind, operation=operation, detail=f"{self.kind} must not be None."
            )
        if not isinstance(entity, self.base_type):
            raise ValidationFailureError(
                entity_name=self.kind,
                operation=operation,
                detail=f"Expected a {self.base_type.__name__}, got {type(entity).__name__}.",
            )
        if not self._registry.is_registered(type(entity)):
            raise ValidationFailureError(
                entity_name=self.kind,
                operation=operation,
                detail=f"{type(entity).__name__} is not registered with this store's DocumentTypeRegistry.",
            )
        return entity  # type: ignore[return-value]

    def _normalize(self, entity: E) -> None:
        """Fill in missing normalized names."""

    async def _check_unique(self, entity: E, operation: str) -> None:
        """Raise ``duplicate_error`` when another document owns the entity's unique key."""
        key = entity.unique_key()
        if key is None:
            return
        existing = await self._find_one(self._unique_query(key), operation=operation)
        if existing is not None and existing.id != entity.id:
            logger.info("%s %s rejected: '%s' already belongs to %s", self.kind, operation, key, existing.id)
            raise self.duplicate_error(
                entity_name=self.kind,
                operation=operation,
                detail=f"Name '{key}' is already taken.",
            )

    def _unique_query(self, key: str) -> DocumentQuery:
        raise NotImplementedError

    # -- write path ------------------------------------------------------------

    async def create(self, entity: E) -> E:
        """Assign an id if missing, check name uniqueness and insert the document."""
        entity = self._validate(entity, "create")
        self._normalize(entity)
        await self._check_unique(entity, "create")
        self._ids.ensure_id(entity)
        # A fresh entity is stamped with its class discriminator.
        entity._stored_document_type = None
        document = self._codec.encode(entity)
        stored = await self._client.create(document, self._partition_key)
        self._tokens.track(entity, stored)
        logger.info("Created %s %s", stored.get("document_type"), entity.id)
        return entity

    async def update(self, entity: E) -> E:
        """Replace the stored document, guarded by the entity's concurrency token."""
        entity = self._validate(entity, "update")
        etag = self._tokens.require_token(entity, "update")
        self._normalize(entity)
        if self._tokens.unique_key_changed(entity):
            await self._check_unique(entity, "update")
        document = self._codec.encode(entity)
        stored = await self._client.replace(document, etag, self._partition_key)
        self._tokens.track(entity, stored)
        logger.info("Updated %s %s", stored.get("document_type"), entity.id)
        return entity

    async def delete(self, entity: E) -> None:
        """Delete the stored document, guarded by the entity's concurrency token."""
        entity = self._validate(entity, "delete")
        etag = self._tokens.require_token(entity, "delete")
        await self._client.delete(entity.id, etag, self._partition_key)  # type: ignore[arg-type]
        self._tokens.forget(entity)
        logger.info("Deleted %s %s", entity.kind, entity.id)

    async def _save(self, entity: E) -> None:
        # Entities not yet created keep their changes in memory for create().
        if self.auto_save_changes and entity.is_persisted:
            await self.update(entity)

    # -- read path -------------------------------------------------------------

    async def find_by_id(self, id: str) -> E | None:
        """Point read; documents of another kind count as absent."""
        if not isinstance(id, str) or not id:
            raise ValidationFailureError(
                entity_name=self.kind, operation="find_by_id", detail="'id' must be a non-empty string."
            )
        document = await self._client.get(id, self._partition_key)
        if document is None:
            logger.debug("%s %s not found", self.kind, id)
            return None
        return self._codec.decode(document, self.kind)  # type: ignore[return-value]

    async def _find_one(self, query: DocumentQuery, *, operation: str | None = None) -> E | None:
        documents = self._client.query(query.filter, self._partition_key)
        document = await single_or_none(documents, query)
        if document is None:
            logger.debug("%s %s: no match", self.kind, operation or query.operation)
            return None
        return self._codec.decode(document, self.kind)  # type: ignore[return-value]

    async def _iter(self, query: DocumentQuery) -> AsyncIterator[E]:
        async for document in self._client.query(query.filter, self._partition_key):
            entity = self._codec.decode(document, self.kind)
            if entity is not None:
                yield entity  # type: ignore[misc]

    async def _collect(self, query: DocumentQuery) -> list[E]:
        return [entity async for entity in self._iter(query)]
