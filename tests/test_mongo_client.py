"""Tests for the Motor document client, with Motor replaced by mocks."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from ninja_identity_store.adapters.mongo import MongoDocumentClient, _is_connection_error, _is_duplicate_key_error
from ninja_identity_store.exceptions import ConcurrencyFailureError, DuplicateDocumentError


class FakeDuplicateKeyError(Exception):
    """Simulates pymongo.errors.DuplicateKeyError."""


FakeDuplicateKeyError.__name__ = "DuplicateKeyError"


class FakeConnectionFailure(Exception):
    """Simulates pymongo.errors.ConnectionFailure."""


FakeConnectionFailure.__name__ = "ConnectionFailure"


class FakeCursor:
    """Async-iterable stand-in for a Motor cursor."""

    def __init__(self, docs: list[dict], error: Exception | None = None) -> None:
        self._docs = docs
        self._error = error
        self.batch = None

    def batch_size(self, n: int) -> FakeCursor:
        self.batch = n
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield doc
        if self._error is not None:
            raise self._error


def _make_client(coll: MagicMock, **kwargs) -> MongoDocumentClient:
    database = MagicMock()
    database.__getitem__ = MagicMock(return_value=coll)
    return MongoDocumentClient(database, "identity", **kwargs)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def test_get_filters_on_id_and_partition():
    coll = MagicMock()
    coll.find_one = AsyncMock(return_value={"_id": "1", "_etag": "e"})
    client = _make_client(coll)

    assert await client.get("1", partition_key="p") == {"_id": "1", "_etag": "e"}
    coll.find_one.assert_awaited_once_with({"_id": "1", "_pk": "p"})


async def test_get_missing_returns_none():
    coll = MagicMock()
    coll.find_one = AsyncMock(return_value=None)
    assert await _make_client(coll).get("1") is None


async def test_get_connection_error_propagates_unchanged(caplog):
    """Driver failures are logged and re-raised as-is, not wrapped."""
    coll = MagicMock()
    error = FakeConnectionFailure("down")
    coll.find_one = AsyncMock(side_effect=error)

    with pytest.raises(FakeConnectionFailure) as exc_info:
        await _make_client(coll).get("1")
    assert exc_info.value is error
    assert "connection error" in caplog.text


async def test_query_streams_with_page_size():
    cursor = FakeCursor([{"_id": "1"}, {"_id": "2"}])
    coll = MagicMock()
    coll.find = MagicMock(return_value=cursor)
    client = _make_client(coll, page_size=50)

    docs = [doc async for doc in client.query({"document_type": {"$in": ["User"]}}, partition_key="p")]

    assert [d["_id"] for d in docs] == ["1", "2"]
    coll.find.assert_called_once_with({"document_type": {"$in": ["User"]}, "_pk": "p"})
    assert cursor.batch == 50


async def test_query_error_mid_stream_propagates():
    coll = MagicMock()
    coll.find = MagicMock(return_value=FakeCursor([{"_id": "1"}], error=RuntimeError("cursor died")))
    client = _make_client(coll)

    seen = []
    with pytest.raises(RuntimeError, match="cursor died"):
        async for doc in client.query({}):
            seen.append(doc)
    assert seen == [{"_id": "1"}]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def test_create_stamps_etag_and_partition():
    coll = MagicMock()
    coll.insert_one = AsyncMock()
    created = await _make_client(coll).create({"_id": "1", "document_type": "User"}, partition_key="p")

    inserted = coll.insert_one.await_args.args[0]
    assert inserted["_etag"] and inserted["_pk"] == "p"
    assert created["_etag"] == inserted["_etag"]


async def test_create_duplicate_raises_duplicate_document_error():
    coll = MagicMock()
    coll.insert_one = AsyncMock(side_effect=FakeDuplicateKeyError("dup"))

    with pytest.raises(DuplicateDocumentError) as exc_info:
        await _make_client(coll).create({"_id": "1", "document_type": "User"})
    assert exc_info.value.entity_name == "User"
    assert exc_info.value.operation == "create"


async def test_create_generic_error_propagates():
    coll = MagicMock()
    coll.insert_one = AsyncMock(side_effect=RuntimeError("oops"))
    with pytest.raises(RuntimeError, match="oops"):
        await _make_client(coll).create({"_id": "1"})


async def test_replace_filters_on_expected_etag():
    coll = MagicMock()
    coll.replace_one = AsyncMock(return_value=MagicMock(matched_count=1))

    replaced = await _make_client(coll).replace({"_id": "1", "n": 2}, "old-etag")

    precondition, body = coll.replace_one.await_args.args
    assert precondition == {"_id": "1", "_etag": "old-etag"}
    assert body["n"] == 2
    assert body["_etag"] != "old-etag"
    assert replaced == body


async def test_replace_stale_etag_raises_concurrency_failure():
    coll = MagicMock()
    coll.replace_one = AsyncMock(return_value=MagicMock(matched_count=0))

    with pytest.raises(ConcurrencyFailureError) as exc_info:
        await _make_client(coll).replace({"_id": "1", "document_type": "User"}, "stale")
    assert exc_info.value.operation == "replace"


async def test_delete_filters_on_expected_etag():
    coll = MagicMock()
    coll.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))

    await _make_client(coll).delete("1", "etag", partition_key="p")

    coll.delete_one.assert_awaited_once_with({"_id": "1", "_pk": "p", "_etag": "etag"})


async def test_delete_stale_etag_raises_concurrency_failure():
    coll = MagicMock()
    coll.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))

    with pytest.raises(ConcurrencyFailureError):
        await _make_client(coll).delete("1", "stale")


async def test_missing_database_raises_runtime_error():
    with pytest.raises(RuntimeError, match="requires a Motor database"):
        await MongoDocumentClient().get("1")


# ---------------------------------------------------------------------------
# Error classification helpers
# ---------------------------------------------------------------------------


def test_is_duplicate_key_error():
    assert _is_duplicate_key_error(FakeDuplicateKeyError("dup"))
    err = Exception("write error")
    err.code = 11000  # type: ignore[attr-defined]
    assert _is_duplicate_key_error(err)
    assert not _is_duplicate_key_error(RuntimeError("other"))


def test_is_connection_error():
    assert _is_connection_error(FakeConnectionFailure("x"))
    assert not _is_connection_error(ValueError("x"))
