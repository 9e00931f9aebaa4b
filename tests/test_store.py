"""
Tests for the message store backends.
"""
from datetime import datetime, timedelta, timezone

import pytest

from chatroom.core.database import create_db_engine, init_db
from chatroom.core.errors import StoreUnavailable, ValidationError
from chatroom.schemas.message import Attachment, MessageKind
from chatroom.services.store import InMemoryMessageStore, SqlMessageStore

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
FIXED = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def make_store(backend: str, retention: int = 1000, clock=None):
    kwargs = {"retention": retention}
    if clock is not None:
        kwargs["clock"] = clock
    if backend == "memory":
        return InMemoryMessageStore(**kwargs)
    engine = create_db_engine("sqlite://")
    init_db(engine)
    return SqlMessageStore(engine, **kwargs)


@pytest.fixture(params=["memory", "sql"])
def backend(request):
    return request.param


@pytest.fixture
def store(backend):
    return make_store(backend)


class TestAppend:
    """Tests for append()."""

    def test_append_returns_canonical_message(self, store):
        message = store.append("alice", "hi")
        assert message.id
        assert message.sender == "alice"
        assert message.body == "hi"
        assert message.kind == MessageKind.TEXT
        assert message.attachment is None
        assert message.created_at.tzinfo is not None
        assert store.recent() == [message]

    def test_ids_are_unique(self, store):
        ids = {store.append("alice", f"m{i}").id for i in range(20)}
        assert len(ids) == 20

    def test_sender_is_trimmed(self, store):
        assert store.append("  alice ", "hi").sender == "alice"

    def test_file_message_keeps_attachment(self, store):
        attachment = Attachment(url="data:text/plain;base64,aGk=", filename="notes.txt", size="2 Bytes")
        message = store.append("alice", "notes.txt", MessageKind.FILE, attachment)
        stored = store.recent()[-1]
        assert stored.attachment == attachment
        assert stored.kind == MessageKind.FILE
        assert message == stored

    def test_empty_body_is_allowed(self, store):
        assert store.append("alice", "").body == ""

    @pytest.mark.parametrize("sender", ["a", "x" * 21, "bad name", "dash-name", "", None])
    def test_rejects_bad_sender(self, store, sender):
        with pytest.raises(ValidationError):
            store.append(sender, "hi")
        assert store.recent() == []

    def test_rejects_long_body(self, store):
        with pytest.raises(ValidationError):
            store.append("alice", "x" * 501)
        assert store.recent() == []

    def test_accepts_body_at_limit(self, store):
        assert len(store.append("alice", "x" * 500).body) == 500

    def test_attachment_must_match_kind(self, store):
        attachment = Attachment(url="data:image/png;base64,AA==", filename="a.png", size="1 Bytes")
        with pytest.raises(ValidationError):
            store.append("alice", "hi", MessageKind.TEXT, attachment)
        with pytest.raises(ValidationError):
            store.append("alice", "a.png", MessageKind.IMAGE, None)
        with pytest.raises(ValidationError):
            store.append("alice", "hi", "video", None)


class TestOrdering:
    """Ordering and timestamp assignment."""

    def test_recent_is_ascending(self, store):
        sent = [store.append("alice", f"m{i}") for i in range(5)]
        assert [m.id for m in store.recent()] == [m.id for m in sent]

    def test_timestamps_strictly_increase_with_frozen_clock(self, backend):
        store = make_store(backend, clock=lambda: FIXED)
        first = store.append("alice", "one")
        second = store.append("bob", "two")
        third = store.append("carol", "three")
        assert first.created_at < second.created_at < third.created_at

    def test_timestamps_survive_clock_going_backwards(self, backend):
        readings = iter([FIXED, FIXED - timedelta(seconds=5), FIXED + timedelta(seconds=1)])
        store = make_store(backend, clock=lambda: next(readings))
        created = [store.append("alice", str(i)).created_at for i in range(3)]
        assert created == sorted(created)
        assert len(set(created)) == 3

    def test_recent_limit_returns_newest(self, store):
        sent = [store.append("alice", f"m{i}") for i in range(5)]
        assert [m.body for m in store.recent(2)] == ["m3", "m4"]
        assert store.recent(0) == []
        assert len(store.recent(100)) == len(sent)


class TestSince:
    """Tests for since()."""

    def test_since_is_strictly_after(self, store):
        m1 = store.append("alice", "one")
        m2 = store.append("alice", "two")
        m3 = store.append("alice", "three")

        assert [m.id for m in store.since(m1.created_at)] == [m2.id, m3.id]
        assert store.since(m3.created_at) == []
        assert [m.id for m in store.since(EPOCH)] == [m1.id, m2.id, m3.id]

    def test_since_never_returns_cursor_or_older(self, store):
        sent = [store.append("alice", f"m{i}") for i in range(10)]
        for cursor in sent:
            assert all(m.created_at > cursor.created_at for m in store.since(cursor.created_at))

    def test_naive_cursor_is_utc(self, store):
        m1 = store.append("alice", "one")
        m2 = store.append("alice", "two")
        naive = m1.created_at.replace(tzinfo=None)
        assert [m.id for m in store.since(naive)] == [m2.id]

    def test_offset_cursor_is_converted(self, store):
        m1 = store.append("alice", "one")
        m2 = store.append("alice", "two")
        shifted = m1.created_at.astimezone(timezone(timedelta(hours=5, minutes=30)))
        assert [m.id for m in store.since(shifted)] == [m2.id]


class TestRetention:
    """The store never holds more than its retention window."""

    def test_oldest_is_evicted(self, backend):
        store = make_store(backend, retention=3)
        sent = [store.append("alice", f"m{i}") for i in range(4)]

        assert len(store) == 3
        assert [m.id for m in store.recent(50)] == [m.id for m in sent[1:]]
        assert sent[0].id not in {m.id for m in store.since(EPOCH)}

    def test_recent_never_exceeds_retention(self, backend):
        store = make_store(backend, retention=5)
        for i in range(12):
            store.append("alice", f"m{i}")
        assert len(store.recent(1000)) == 5
        assert [m.body for m in store.recent(1000)] == [f"m{i}" for i in range(7, 12)]

    def test_retention_must_be_positive(self):
        with pytest.raises(ValueError):
            InMemoryMessageStore(retention=0)


class TestSqlFailures:
    """The SQL backend fails requests outright when the database is unusable."""

    def test_missing_schema_is_store_unavailable(self):
        # No init_db: every statement fails with "no such table"
        store = SqlMessageStore(create_db_engine("sqlite://"))
        with pytest.raises(StoreUnavailable):
            store.append("alice", "hi")
        with pytest.raises(StoreUnavailable):
            store.recent()
        with pytest.raises(StoreUnavailable):
            store.since(EPOCH)

    def test_is_available(self):
        engine = create_db_engine("sqlite://")
        init_db(engine)
        assert SqlMessageStore(engine).is_available()
        assert InMemoryMessageStore().is_available()
