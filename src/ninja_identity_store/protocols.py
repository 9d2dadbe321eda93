"""Document client protocol: the downstream contract consumed by the stores."""

from __future__ import annotations

from typing import Any, AsyncGenerator, Protocol, runtime_checkable


@runtime_checkable
class DocumentClient(Protocol):
    """Collection-scoped access to a schemaless document database.

    Every document returned by the client carries its concurrency token under
    ``_etag``. The stores never open or close the underlying connection; its
    lifecycle belongs to the hosting application.
    """

    @property
    def collection_name(self) -> str:
        """Name of the collection this client reads and writes."""
        ...

    async def get(self, id: str, partition_key: str | None = None) -> dict[str, Any] | None:
        """Point read by identifier, or ``None`` when absent."""
        ...

    async def create(self, document: dict[str, Any], partition_key: str | None = None) -> dict[str, Any]:
        """Insert a new document and return it with its fresh token.

        Raises:
            DuplicateDocumentError: A document with the same ``_id`` exists.
        """
        ...

    async def replace(
        self, document: dict[str, Any], expected_etag: str, partition_key: str | None = None
    ) -> dict[str, Any]:
        """Replace the whole document if its stored token equals *expected_etag*.

        Raises:
            ConcurrencyFailureError: The token no longer matches or the document is gone.
        """
        ...

    async def delete(self, id: str, expected_etag: str, partition_key: str | None = None) -> None:
        """Delete the document if its stored token equals *expected_etag*.

        Raises:
            ConcurrencyFailureError: The token no longer matches or the document is gone.
        """
        ...

    def query(
        self, filter: dict[str, Any], partition_key: str | None = None
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Lazily iterate every document matching *filter*, page by page."""
        ...
