from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from errors import ConflictError, StoreError
from models import SecretRecord, db, utcnow
from store import SecretStore


def _insert(store, lookup_hash="hash-a", views=3, expires_in=timedelta(hours=1)):
    store.insert(lookup_hash, b"ciphertext", views, utcnow() + expires_in)


def test_insert_then_fetch(store):
    expiration = utcnow() + timedelta(days=2)
    store.insert("hash-a", b"\x00\x01ciphertext", 4, expiration)

    record = store.fetch("hash-a")

    assert record.lookup_hash == "hash-a"
    assert record.ciphertext == b"\x00\x01ciphertext"
    assert record.views_remaining == 4
    assert abs(record.expiration_date - expiration) < timedelta(seconds=1)


def test_fetch_missing_returns_none(store):
    assert store.fetch("nope") is None


def test_duplicate_insert_conflicts(store):
    _insert(store)
    with pytest.raises(ConflictError):
        _insert(store)
    assert store.fetch("hash-a").views_remaining == 3


def test_decrement_counts_down_then_stops(store):
    _insert(store, views=2)

    assert store.decrement_views("hash-a") == 1
    assert store.decrement_views("hash-a") == 0
    assert store.decrement_views("hash-a") is None
    assert store.fetch("hash-a").views_remaining == 0


def test_decrement_missing_returns_none(store):
    assert store.decrement_views("nope") is None


def test_delete_is_idempotent(store):
    _insert(store)
    store.delete("hash-a")
    store.delete("hash-a")
    assert store.fetch("hash-a") is None


def test_delete_expired_only_removes_past_records(store):
    now = utcnow()
    store.insert("old-1", b"c", 1, now - timedelta(minutes=5))
    store.insert("old-2", b"c", 9, now - timedelta(days=1))
    store.insert("fresh", b"c", 1, now + timedelta(minutes=5))

    assert store.delete_expired(now) == 2
    assert store.fetch("old-1") is None
    assert store.fetch("old-2") is None
    assert store.fetch("fresh") is not None
    assert store.delete_expired(now) == 0


def test_records_are_keyed_by_hash_only(store):
    _insert(store)
    columns = set(SecretRecord.__table__.columns.keys())
    assert columns == {"lookup_hash", "ciphertext", "views_remaining", "expiration_date", "created_at"}
    assert db.session.query(SecretRecord).count() == 1


def _failing_session():
    session = MagicMock()
    failure = OperationalError("statement", {}, Exception("disk I/O error"))
    session.query.side_effect = failure
    session.execute.side_effect = failure
    return session


@pytest.mark.parametrize(
    "call",
    [
        lambda s: s.fetch("hash-a"),
        lambda s: s.decrement_views("hash-a"),
        lambda s: s.delete("hash-a"),
        lambda s: s.delete_expired(utcnow()),
        lambda s: s.insert("hash-a", b"c", 1, utcnow()),
    ],
)
def test_backend_failures_become_store_errors(call):
    session = _failing_session()
    with pytest.raises(StoreError):
        call(SecretStore(session=session))
    session.rollback.assert_called_once()
