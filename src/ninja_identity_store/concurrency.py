"""Identifier assignment and optimistic-concurrency bookkeeping.

Every stored document carries an ``_etag`` that changes on each successful
write. Replace and delete only succeed when the caller presents the value it
last read. Conflicts are reported to the caller, never retried here.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from ninja_identity_store.codec import DISCRIMINATOR_FIELD, ETAG_FIELD
from ninja_identity_store.exceptions import ValidationFailureError
from ninja_identity_store.models import _IdentityDocument

logger = logging.getLogger(__name__)


def new_etag() -> str:
    """Return a fresh opaque concurrency token."""
    return uuid.uuid4().hex


class IdentityAssigner:
    """Generates identifiers for new entities that arrive without one.

    UUID4 strings are used so identifiers stay unique independently of how
    the document store partitions its data.
    """

    def new_id(self) -> str:
        return str(uuid.uuid4())

    def ensure_id(self, entity: _IdentityDocument) -> str:
        if entity.id is None or entity.id == "":
            entity.id = self.new_id()
            logger.debug("Assigned id %s to new %s", entity.id, entity.kind)
        return entity.id


class ConcurrencyTracker:
    """Threads concurrency tokens between reads and the next mutating call."""

    def require_token(self, entity: _IdentityDocument, operation: str) -> str:
        """Return the entity's token or raise if it was never read or written."""
        if entity.id is None:
            raise ValidationFailureError(
                entity_name=entity.kind,
                operation=operation,
                detail="Entity has no identifier; create it first.",
            )
        if not entity.etag:
            raise ValidationFailureError(
                entity_name=entity.kind,
                operation=operation,
                detail="Entity carries no concurrency token; read it from the store first.",
            )
        return entity.etag

    def track(self, entity: _IdentityDocument, document: dict[str, Any]) -> None:
        """Record the token and persisted state returned by a successful write."""
        entity.etag = document.get(ETAG_FIELD)
        entity._stored_document_type = document.get(DISCRIMINATOR_FIELD, entity.document_type)
        entity._persisted_unique_key = entity.unique_key()

    def forget(self, entity: _IdentityDocument) -> None:
        """Clear persisted state after the entity's document was deleted."""
        entity.etag = None
        entity._persisted_unique_key = None

    @staticmethod
    def unique_key_changed(entity: _IdentityDocument) -> bool:
        return entity.unique_key() != entity._persisted_unique_key
