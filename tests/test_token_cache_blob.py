from __future__ import annotations

import types
from datetime import datetime, timezone

import pytest
from azure.core.exceptions import (
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
    ServiceRequestError,
)

from kindle_sender.errors import CacheError
from kindle_sender.models import TokenRecord


class _Props:
    def __init__(self, etag: str) -> None:
        self.etag = etag


class _FakeBlobClient:
    def __init__(self) -> None:
        self._data: bytes | None = None
        self._etag = '"0x1"'
        self._exists = False
        self._conflict_once = False
        self.unreachable = False

    def download_blob(self):
        if self.unreachable:
            raise ServiceRequestError("network down")
        if not self._exists:
            raise ResourceNotFoundError("missing")

        return types.SimpleNamespace(readall=lambda: self._data or b"")

    def get_blob_properties(self):
        if not self._exists:
            raise ResourceNotFoundError("missing")
        return _Props(self._etag)

    def upload_blob(self, data: bytes, overwrite: bool, etag=None, match_condition=None):
        if not overwrite and self._exists:
            raise ResourceExistsError("exists")

        if etag is not None and etag != self._etag:
            raise ResourceModifiedError("etag mismatch")

        if self._conflict_once:
            self._conflict_once = False
            raise ResourceModifiedError("conflict")

        self._data = data
        self._exists = True
        # bump etag
        self._etag = f'"0x{int(self._etag.strip(chr(34))[2:], 16) + 1:x}"'

    def delete_blob(self):
        if not self._exists:
            raise ResourceNotFoundError("missing")
        self._exists = False
        self._data = None


def _record(access_token: str = "a1") -> TokenRecord:
    return TokenRecord(
        access_token=access_token,
        refresh_token="r1",
        expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture()
def store(monkeypatch):
    from kindle_sender import token_cache_blob

    fake = _FakeBlobClient()

    def _get_blob_client(self):
        return fake

    monkeypatch.setattr(token_cache_blob.BlobTokenStore, "_get_blob_client", _get_blob_client)
    monkeypatch.setattr(token_cache_blob, "DefaultAzureCredential", lambda **kwargs: object())
    monkeypatch.setattr(token_cache_blob.time, "sleep", lambda seconds: None)

    loc = token_cache_blob.BlobTokenCacheLocation(
        account_url="https://example.blob.core.windows.net",
        container_name="c",
        blob_name="b",
    )
    return token_cache_blob.BlobTokenStore(loc), fake


def test_load_missing_returns_none(store) -> None:
    """A missing blob means no cache."""

    s, _ = store

    assert s.load() is None


def test_load_unreachable_returns_none(store) -> None:
    """Storage errors on load are treated as no cache."""

    s, fake = store
    fake.unreachable = True

    assert s.load() is None


def test_save_create_then_load(store) -> None:
    """A record saved to a new blob loads back unchanged."""

    s, _ = store
    s.load()

    s.save(_record())

    assert s.load() == _record()


def test_save_retries_on_etag_conflict(store) -> None:
    """A concurrent write triggers a retry with the latest ETag."""

    s, fake = store
    s.save(_record("a1"))
    s.load()

    fake._conflict_once = True
    s.save(_record("a2"))

    assert s.load() == _record("a2")


def test_save_when_blob_created_concurrently(store) -> None:
    """A blob created after our load is overwritten after re-reading its ETag."""

    s, fake = store
    s.load()
    fake.upload_blob(b"{}", overwrite=False)

    s.save(_record("mine"))

    assert s.load() == _record("mine")


def test_save_gives_up_after_repeated_conflicts(store, monkeypatch) -> None:
    """Persistent conflicts end in CacheError."""

    s, fake = store
    s.save(_record())

    def _always_conflict(*args, **kwargs):
        raise ResourceModifiedError("conflict")

    monkeypatch.setattr(fake, "upload_blob", _always_conflict)

    with pytest.raises(CacheError, match="ETag"):
        s.save(_record("a2"))


def test_load_ignores_malformed_blob(store) -> None:
    """Invalid JSON in the blob is treated as no cache."""

    s, fake = store
    fake.upload_blob(b"{not json", overwrite=False)

    assert s.load() is None


def test_clear_deletes_blob(store) -> None:
    """clear() removes the blob and reports whether it existed."""

    s, _ = store
    s.save(_record())

    assert s.clear() is True
    assert s.clear() is False
