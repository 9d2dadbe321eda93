"""Domain exceptions for the identity store.

Lookup misses are never exceptions: ``find_*`` methods return ``None``.
Driver connectivity and service errors are not wrapped; they propagate to the
caller unchanged so that retry policy stays with the database client.
"""

from __future__ import annotations


class IdentityStoreError(Exception):
    """Base exception for all identity-store errors.

    Attributes:
        entity_name: The entity kind involved (``"User"``, ``"Role"`` or a derived discriminator).
        operation: The store operation that failed (e.g. ``"create"``, ``"add_login"``).
        detail: A sanitised description of what went wrong.
    """

    def __init__(
        self,
        *,
        entity_name: str,
        operation: str,
        detail: str,
        cause: Exception | None = None,
    ) -> None:
        self.entity_name = entity_name
        self.operation = operation
        self.detail = detail
        msg = f"[{entity_name}] {operation} failed: {detail}"
        super().__init__(msg)
        if cause is not None:
            self.__cause__ = cause


class ConcurrencyFailureError(IdentityStoreError):
    """Raised when a replace or delete carries a stale concurrency token."""


class DuplicateUserNameError(IdentityStoreError):
    """Raised when another user already owns the normalized user name."""


class DuplicateRoleNameError(IdentityStoreError):
    """Raised when another role already owns the normalized role name."""


class DuplicateLoginError(IdentityStoreError):
    """Raised when a (provider, key) login pair already belongs to another user."""


class DuplicateDocumentError(IdentityStoreError):
    """Raised when a document with the same identifier already exists."""


class ValidationFailureError(IdentityStoreError):
    """Raised when the caller supplies a missing or malformed entity or argument."""


class MultipleMatchError(IdentityStoreError):
    """Raised when a lookup expecting at most one document finds several.

    Indicates a consistency violation, usually left behind by the race window
    of a check-then-write uniqueness check.
    """


class DocumentFormatError(IdentityStoreError):
    """Raised when a stored document cannot be decoded against its registered type."""


class QueryError(IdentityStoreError):
    """Raised for predicate expressions the document client cannot evaluate."""
