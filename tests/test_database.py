from datetime import datetime, timezone

import pytest

from pymongo.errors import PyMongoError

from errors import NotFound, RemoteFailure


def test_server_timestamps_strictly_increase(store):
    stamps = [store.server_timestamp() for _ in range(50)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))
    assert all(s.tzinfo is not None and s.microsecond % 1000 == 0 for s in stamps)


def test_add_get_and_timestamps_survive_storage(store):
    now = store.server_timestamp()
    doc_id = store.add("things", {"name": "crate", "at": now, "id": "ignored"})

    doc = store.get("things", doc_id)
    assert doc["id"] == doc_id
    assert "_id" not in doc
    assert doc["at"] == now
    assert doc["at"].tzinfo == timezone.utc


def test_get_with_bad_id(store):
    assert store.get("things", "nope") is None
    assert store.delete("things", "nope") is False


def test_update_and_compare_and_set(store):
    doc_id = store.add("things", {"state": "open", "n": 1})

    store.update("things", doc_id, {"n": 2})
    store.update("things", doc_id, {"state": "closed"}, expect={"state": "open"})
    assert store.get("things", doc_id) == {"id": doc_id, "state": "closed", "n": 2}

    with pytest.raises(NotFound):
        store.update("things", doc_id, {"state": "closed"}, expect={"state": "open"})
    with pytest.raises(NotFound):
        store.update("things", "64b7f0c2a1b2c3d4e5f60718", {"n": 3})


def test_increment(store):
    doc_id = store.add("things", {"n": 5})
    doc = store.increment("things", doc_id, "n", 7, {"touched": True})
    assert doc["n"] == 12
    assert doc["touched"] is True

    with pytest.raises(NotFound):
        store.increment("things", "64b7f0c2a1b2c3d4e5f60718", "n", 1)


def test_find_filters_sort_and_limit(store):
    for n in (3, 1, 2):
        store.add("things", {"n": n, "kind": "odd" if n % 2 else "even"})

    assert [d["n"] for d in store.find("things", sort=[("n", 1)])] == [1, 2, 3]
    assert [d["n"] for d in store.find("things", {"kind": "odd"}, sort=[("n", -1)])] == [3, 1]
    assert len(store.find("things", limit=2)) == 2
    assert store.delete_many("things", {"kind": "odd"}) == 2


def test_datetime_filters_accept_aware_values(store):
    store.add("things", {"at": datetime(2024, 5, 1, 12, tzinfo=timezone.utc)})
    found = store.find("things", {"at": {"$gte": datetime(2024, 5, 1, tzinfo=timezone.utc)}})
    assert len(found) == 1


def test_listener_failure_does_not_break_writes(store):
    calls = []

    def broken(docs):
        calls.append(len(docs))
        raise RuntimeError("boom")

    unsubscribe = store.listen("things", None, None, broken)
    store.add("things", {"n": 1})

    assert calls == [0, 1]
    unsubscribe()
    assert store.listener_count("things") == 0


class FailingCollection:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise PyMongoError("server selection timeout")
        return fail


class FailingDatabase:
    name = "db"

    def __getitem__(self, collection):
        return FailingCollection()

    def list_collection_names(self):
        raise PyMongoError("server selection timeout")


@pytest.mark.parametrize("call", [
    lambda s: s.find("things"),
    lambda s: s.get("things", "64b7f0c2a1b2c3d4e5f60718"),
    lambda s: s.add("things", {"name": "crate"}),
    lambda s: s.update("things", "64b7f0c2a1b2c3d4e5f60718", {"name": "box"}),
    lambda s: s.increment("things", "64b7f0c2a1b2c3d4e5f60718", "count", 1),
    lambda s: s.delete("things", "64b7f0c2a1b2c3d4e5f60718"),
    lambda s: s.list_collection_names(),
])
def test_driver_errors_become_remote_failures(store, monkeypatch, call):
    monkeypatch.setattr(store, "db", FailingDatabase())

    with pytest.raises(RemoteFailure) as excinfo:
        call(store)
    assert isinstance(excinfo.value.__cause__, PyMongoError)
    assert "server selection timeout" in excinfo.value.message
