import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from kindle_sender import token_store
from kindle_sender.errors import CacheError
from kindle_sender.models import TokenRecord
from kindle_sender.token_store import FileTokenStore


def _record(access_token: str = "access-1", refresh_token: str = "refresh-1") -> TokenRecord:
    return TokenRecord(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc),
    )


def test_load_returns_none_when_file_missing(tmp_path) -> None:
    """A missing cache file means "authorize from scratch", not an error."""

    store = FileTokenStore(tmp_path / "auth.json")

    assert store.load() is None


def test_save_then_load_round_trips(tmp_path) -> None:
    """A saved record loads back equal to the original."""

    store = FileTokenStore(tmp_path / "nested" / "auth.json")
    record = _record()

    store.save(record)

    assert store.load() == record


def test_load_ignores_malformed_json(tmp_path) -> None:
    """Garbage in the cache file is treated as no cache."""

    path = tmp_path / "auth.json"
    path.write_text("{not json")

    assert FileTokenStore(path).load() is None


def test_load_ignores_record_with_empty_token(tmp_path) -> None:
    """Records violating the non-empty token invariant are treated as no cache."""

    path = tmp_path / "auth.json"
    path.write_text(
        json.dumps(
            {"access_token": "", "refresh_token": "r", "expires_at": "2030-01-01T00:00:00Z"}
        )
    )

    assert FileTokenStore(path).load() is None


def test_load_reads_naive_timestamp_as_utc(tmp_path) -> None:
    """A timestamp without offset is interpreted as UTC."""

    path = tmp_path / "auth.json"
    path.write_text(
        json.dumps(
            {"access_token": "a", "refresh_token": "r", "expires_at": "2030-01-01T00:00:00"}
        )
    )

    record = FileTokenStore(path).load()

    assert record is not None
    assert record.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions only")
def test_save_creates_owner_only_file(tmp_path) -> None:
    """The cache holds a refresh token, so only the owner may read it."""

    path = tmp_path / "auth.json"
    FileTokenStore(path).save(_record())

    assert (path.stat().st_mode & 0o777) == 0o600


def test_failed_rename_keeps_previous_record(tmp_path, monkeypatch) -> None:
    """A crash between temp write and rename leaves the old record intact."""

    path = tmp_path / "auth.json"
    store = FileTokenStore(path)
    old = _record("old-access", "old-refresh")
    store.save(old)

    def _boom(src, dst):
        raise OSError("simulated crash before rename")

    monkeypatch.setattr(token_store.os, "replace", _boom)

    with pytest.raises(CacheError):
        store.save(_record("new-access", "new-refresh"))

    monkeypatch.undo()

    assert store.load() == old
    assert [p.name for p in tmp_path.iterdir()] == ["auth.json"]


def test_leftover_temp_file_does_not_affect_load(tmp_path) -> None:
    """A half-written temp file from a killed process is never read."""

    path = tmp_path / "auth.json"
    store = FileTokenStore(path)
    record = _record()
    store.save(record)
    (tmp_path / ".auth.json.abc123.tmp").write_text('{"access_token": "tru')

    assert store.load() == record


def test_save_overwrites_existing_record(tmp_path) -> None:
    """Every refresh overwrites the previous record."""

    store = FileTokenStore(tmp_path / "auth.json")
    store.save(_record("a1", "r1"))
    newer = TokenRecord(
        access_token="a2",
        refresh_token="r2",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )

    store.save(newer)

    assert store.load() == newer


def test_save_raises_cache_error_when_directory_unwritable(tmp_path) -> None:
    """Write failures surface as CacheError."""

    blocker = tmp_path / "blocker"
    blocker.write_text("I am a file, not a directory")
    store = FileTokenStore(blocker / "auth.json")

    with pytest.raises(CacheError):
        store.save(_record())


def test_clear_removes_file_once(tmp_path) -> None:
    """clear() deletes the cache and reports whether anything was removed."""

    store = FileTokenStore(tmp_path / "auth.json")
    store.save(_record())

    assert store.clear() is True
    assert store.clear() is False
    assert store.load() is None
