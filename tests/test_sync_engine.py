"""
Sync Engine：staleness 检测 / refresh 幂等与收敛 / 软删除 / 入口校验。
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import SUBMISSION, eprint_uri, submission_record
from src.core.errors import NotFoundError, TransientFetchError, ValidationError
from src.sync.models import DeletionSource
from src.sync.sync_engine import NOT_INDEXED

PDS = "https://pds.example.com"
DAY = 24 * 3600 * 1000


def _index(sync_engine, repository, rkey="1", cid="bafy-v1", title="Deep-sea vents"):
    uri = eprint_uri(rkey)
    res = sync_engine.index_record(uri, cid, PDS + "/", submission_record(title))
    assert res.ok
    repository.put(uri, cid)
    return uri


# ---------------------------------------------------------------------------
# index / track / delete
# ---------------------------------------------------------------------------

def test_index_record_stores_metadata(sync_engine, repository, record_store, clock):
    uri = _index(sync_engine, repository, title="Vent fauna")
    rec = record_store.get(uri)
    assert rec.content_hash == "bafy-v1"
    assert rec.pds_endpoint == PDS
    assert rec.collection == SUBMISSION
    assert rec.record_kind == "eprint"
    assert rec.title == "Vent fauna"
    assert rec.indexed_at == clock.now


def test_index_record_rejects_unknown_shape_before_store(sync_engine, record_store):
    uri = eprint_uri("bad")
    with pytest.raises(ValidationError):
        sync_engine.index_record(uri, "bafy", PDS, {"title": "no authors"})
    with pytest.raises(ValidationError):
        sync_engine.index_record("at://did:plc:x/app.unknown.thing/1", "bafy", PDS, {"createdAt": "x"})
    assert record_store.get(uri) is None


def test_track_source_requires_existing_record(sync_engine, repository, record_store):
    res = sync_engine.track_source(eprint_uri("missing"), "bafy", PDS)
    assert not res.ok
    assert isinstance(res.error, NotFoundError)
    assert record_store.get(eprint_uri("missing")) is None

    uri = _index(sync_engine, repository)
    assert sync_engine.track_source(uri, "bafy-v2", "https://other.pds/").ok
    rec = record_store.get(uri)
    assert rec.content_hash == "bafy-v2"
    assert rec.pds_endpoint == "https://other.pds"


def test_delete_record(sync_engine, repository, record_store):
    uri = _index(sync_engine, repository)
    assert sync_engine.delete_record(uri).ok
    assert record_store.get(uri) is None
    res = sync_engine.delete_record(uri)
    assert isinstance(res.error, NotFoundError)


def test_malformed_uri_is_reported_not_raised(sync_engine, repository):
    res = sync_engine.refresh_record("not-a-uri")
    assert not res.ok
    assert isinstance(res.error, ValidationError)

    check = sync_engine.check_staleness("at://only-authority")
    assert check.is_stale is None
    assert "scheme://authority/collection/rkey" in check.error
    assert repository.calls == 0


def test_other_schemes_are_opaque_keys(sync_engine, repository):
    uri = "https://example.com/col/rk"
    check = sync_engine.check_staleness(uri)
    assert check.error == NOT_INDEXED and check.is_stale is None

    res = sync_engine.refresh_record(uri)
    assert isinstance(res.error, NotFoundError)
    assert repository.calls == 0


# ---------------------------------------------------------------------------
# check_staleness
# ---------------------------------------------------------------------------

def test_check_staleness_not_indexed(sync_engine):
    res = sync_engine.check_staleness(eprint_uri("nope"))
    assert res.error == NOT_INDEXED
    assert res.is_stale is None


def test_check_staleness_fresh_and_stale(sync_engine, repository):
    uri = _index(sync_engine, repository)
    res = sync_engine.check_staleness(uri)
    assert res.is_stale is False
    assert res.indexed_hash == res.authoritative_hash == "bafy-v1"

    repository.put(uri, "bafy-v2")
    res = sync_engine.check_staleness(uri)
    assert res.is_stale is True
    assert res.authoritative_hash == "bafy-v2"
    assert res.to_dict()["pdsCID"] == "bafy-v2"


def test_check_staleness_fetch_failure_is_undetermined(sync_engine, repository):
    uri = _index(sync_engine, repository)
    repository.fail = True
    res = sync_engine.check_staleness(uri)
    assert res.is_stale is None
    assert res.authoritative_hash is None
    assert res.error
    assert "isStale" not in res.to_dict()


# ---------------------------------------------------------------------------
# refresh_record
# ---------------------------------------------------------------------------

def test_refresh_is_idempotent(sync_engine, repository, record_store, clock):
    uri = _index(sync_engine, repository)
    repository.put(uri, "bafy-v2")
    clock.advance(1000)

    first = sync_engine.refresh_record(uri)
    assert first.ok and first.value.changed
    assert (first.value.previous_hash, first.value.current_hash) == ("bafy-v1", "bafy-v2")
    indexed_at = record_store.get(uri).indexed_at
    assert indexed_at == clock.now

    clock.advance(1000)
    second = sync_engine.refresh_record(uri)
    assert second.ok
    assert second.value.changed is False
    assert second.value.previous_hash == second.value.current_hash == "bafy-v2"
    rec = record_store.get(uri)
    assert rec.content_hash == "bafy-v2"
    assert rec.indexed_at == indexed_at
    assert rec.last_synced_at == clock.now


def test_concurrent_refresh_converges(sync_engine, repository, record_store):
    uri = _index(sync_engine, repository)
    repository.put(uri, "bafy-final")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: sync_engine.refresh_record(uri), range(16)))

    assert all(r.ok for r in results)
    assert all(r.value.current_hash == "bafy-final" for r in results)
    assert record_store.get(uri).content_hash == "bafy-final"


def test_refresh_not_found_leaves_store_untouched(sync_engine, repository, record_store):
    uri = _index(sync_engine, repository)
    before = record_store.get(uri)
    del repository.records[uri]

    res = sync_engine.refresh_record(uri)
    assert not res.ok
    assert isinstance(res.error, NotFoundError)
    after = record_store.get(uri)
    assert after == before


def test_refresh_not_indexed(sync_engine, repository):
    res = sync_engine.refresh_record(eprint_uri("ghost"))
    assert isinstance(res.error, NotFoundError)
    assert repository.calls == 0


def test_refresh_transient_failure_is_single_attempt(sync_engine, repository):
    uri = _index(sync_engine, repository)
    repository.fail = True
    res = sync_engine.refresh_record(uri)
    assert not res.ok
    assert isinstance(res.error, TransientFetchError)
    assert res.error.retryable
    assert repository.calls == 1


# ---------------------------------------------------------------------------
# detect_stale_records / soft delete
# ---------------------------------------------------------------------------

def test_detect_stale_records_by_age(sync_engine, repository, clock):
    old = _index(sync_engine, repository, rkey="old")
    clock.advance(3 * DAY)
    fresh = _index(sync_engine, repository, rkey="fresh")
    clock.advance(DAY)

    stale = sync_engine.detect_stale_records(2 * DAY)
    assert [r.uri for r in stale] == [old]

    both = sync_engine.detect_stale_records(0)
    assert [r.uri for r in both] == [old, fresh]

    banded = sync_engine.detect_stale_records(0, within_ms=2 * DAY)
    assert [r.uri for r in banded] == [fresh]


def test_detect_stale_records_by_synced(sync_engine, repository, clock):
    uri = _index(sync_engine, repository, rkey="old")
    clock.advance(3 * DAY)
    assert sync_engine.refresh_record(uri).value.changed is False

    # 未变化的 refresh 只推进 last_synced_at
    assert [r.uri for r in sync_engine.detect_stale_records(2 * DAY)] == [uri]
    assert sync_engine.detect_stale_records(2 * DAY, by_synced=True) == []

    clock.advance(3 * DAY)
    assert [r.uri for r in sync_engine.detect_stale_records(2 * DAY, by_synced=True)] == [uri]


def test_detect_stale_records_validates(sync_engine):
    with pytest.raises(ValidationError):
        sync_engine.detect_stale_records(-1)


def test_soft_delete_and_restore(sync_engine, repository, record_store, clock):
    uri = _index(sync_engine, repository)
    clock.advance(10 * DAY)

    assert sync_engine.mark_as_deleted(uri, DeletionSource.FIREHOSE_TOMBSTONE).ok
    rec = record_store.get(uri)
    assert rec.is_deleted
    assert rec.deletion_source == "firehose_tombstone"
    # already deleted: no-op success
    assert sync_engine.mark_as_deleted(uri).ok
    assert record_store.get(uri).deletion_source == "firehose_tombstone"

    assert sync_engine.detect_stale_records(DAY) == []

    clock.advance(8 * DAY)
    assert sync_engine.get_deleted_records(7 * DAY) == [uri]
    assert sync_engine.get_deleted_records(30 * DAY) == []

    assert sync_engine.restore_record(uri).ok
    assert not record_store.get(uri).is_deleted
    assert isinstance(sync_engine.restore_record(uri).error, NotFoundError)


def test_mark_as_deleted_missing(sync_engine):
    res = sync_engine.mark_as_deleted(eprint_uri("none"))
    assert isinstance(res.error, NotFoundError)


# ---------------------------------------------------------------------------
# register_pds
# ---------------------------------------------------------------------------

def test_register_pds_is_idempotent(sync_engine):
    a = sync_engine.register_pds("https://pds.example.com/")
    b = sync_engine.register_pds("https://pds.example.com")
    assert a.ok and b.ok
    assert a.value.pds_url == b.value.pds_url == "https://pds.example.com"
    assert a.value.status.value == "pending"


def test_register_pds_rejects_non_http(sync_engine):
    with pytest.raises(ValidationError):
        sync_engine.register_pds("ftp://pds.example.com")
