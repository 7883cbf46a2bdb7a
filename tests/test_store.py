from __future__ import annotations

import json

import pytest
from conftest import make_record

from issueoperator.errors import ConflictError, OperatorError, RecordExistsError, ValidationError
from issueoperator.finalizers import FINALIZER
from issueoperator.models import RecordStatus
from issueoperator.store import EventType, ResourceStore, StoreEvent

KEY = "default/demo"


def test_create_assigns_first_revision(store):
    created = store.create(make_record())

    assert created.resource_version == 1
    assert store.get(KEY).resource_version == 1
    assert KEY in store
    assert len(store) == 1


def test_create_rejects_duplicates(store):
    store.create(make_record())

    with pytest.raises(RecordExistsError):
        store.create(make_record())


def test_create_rejects_malformed_repo(store):
    with pytest.raises(ValidationError):
        store.create(make_record(repo="just-a-name"))
    assert len(store) == 0


def test_get_returns_independent_copy(store):
    store.create(make_record())

    snapshot = store.get(KEY)
    snapshot.spec.title = "mutated"

    assert store.get(KEY).spec.title == "t1"
    assert store.get("default/missing") is None


def test_update_is_conditional_on_revision(store):
    store.create(make_record())
    first = store.get(KEY)
    second = store.get(KEY)

    first.spec.description = "first writer"
    store.update(first)
    second.spec.description = "second writer"

    with pytest.raises(ConflictError) as excinfo:
        store.update(second)

    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2
    assert store.get(KEY).spec.description == "first writer"


def test_update_of_missing_record_conflicts(store):
    with pytest.raises(ConflictError):
        store.update(make_record())


def test_update_keeps_status_and_deletion_timestamp(store):
    store.create(make_record(finalizers=[FINALIZER]))
    store.patch_status(KEY, RecordStatus(state="open", last_update_timestamp="ts"))
    store.delete(KEY)

    record = store.get(KEY)
    record.status = RecordStatus()
    record.metadata.deletion_timestamp = None
    record.metadata.finalizers.append("other/token")
    store.update(record)

    stored = store.get(KEY)
    assert stored.status == RecordStatus(state="open", last_update_timestamp="ts")
    assert stored.metadata.deletion_timestamp == "2024-01-01T00:00:00Z"
    assert stored.finalizers == [FINALIZER, "other/token"]


def test_patch_status_merges_fields(store):
    store.create(make_record())
    store.patch_status(KEY, {"state": "open", "lastUpdateTimestamp": "a"})

    store.patch_status(KEY, {"lastUpdateTimestamp": "b"})

    assert store.get(KEY).status == RecordStatus(state="open", last_update_timestamp="b")


def test_patch_status_rejects_unknown_fields(store):
    store.create(make_record())

    with pytest.raises(ValidationError):
        store.patch_status(KEY, {"number": "7"})


def test_patch_status_conditional_on_revision(store):
    store.create(make_record())
    stale = store.get(KEY).resource_version
    record = store.get(KEY)
    record.spec.description = "changed"
    store.update(record)

    with pytest.raises(ConflictError):
        store.patch_status(KEY, RecordStatus(state="open"), resource_version=stale)
    assert store.get(KEY).status.state == ""


def test_delete_without_finalizers_erases(store):
    store.create(make_record())

    assert store.delete(KEY) is True
    assert store.get(KEY) is None
    assert store.delete(KEY) is False


def test_delete_with_finalizer_only_marks(store):
    store.create(make_record(finalizers=[FINALIZER]))

    store.delete(KEY)

    record = store.get(KEY)
    assert record is not None
    assert record.deletion_requested
    assert record.metadata.deletion_timestamp == "2024-01-01T00:00:00Z"


def test_deletion_timestamp_is_stamped_once():
    ticks = iter(["2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z"])
    store = ResourceStore(clock=lambda: next(ticks))
    store.create(make_record(finalizers=[FINALIZER]))

    store.delete(KEY)
    version = store.get(KEY).resource_version
    store.delete(KEY)

    record = store.get(KEY)
    assert record.metadata.deletion_timestamp == "2024-01-01T00:00:00Z"
    assert record.resource_version == version


def test_removing_last_finalizer_erases_deleting_record(store):
    store.create(make_record(finalizers=[FINALIZER]))
    store.delete(KEY)

    record = store.get(KEY)
    record.metadata.finalizers = []
    store.update(record)

    assert store.get(KEY) is None


def test_watchers_receive_events_in_order(store):
    events: list[StoreEvent] = []
    unsubscribe = store.watch(events.append)

    store.create(make_record(finalizers=[FINALIZER]))
    store.patch_status(KEY, RecordStatus(state="open"))
    store.delete(KEY)
    record = store.get(KEY)
    record.metadata.finalizers = []
    store.update(record)
    unsubscribe()
    store.create(make_record())

    assert [e.type for e in events] == [
        EventType.ADDED,
        EventType.MODIFIED,
        EventType.MODIFIED,
        EventType.DELETED,
    ]
    assert {e.key for e in events} == {KEY}


def test_watcher_may_read_store_from_callback(store):
    seen: list[str | None] = []

    def _callback(event: StoreEvent) -> None:
        record = store.get(event.key)
        seen.append(record.spec.title if record else None)

    store.watch(_callback)
    store.create(make_record())

    assert seen == ["t1"]


def test_list_keys_sorted(store):
    store.create(make_record("b"))
    store.create(make_record("a"))
    store.create(make_record("a", namespace="other"))

    assert store.list_keys() == ["default/a", "default/b", "other/a"]


def test_persistence_survives_restart(tmp_path):
    path = tmp_path / "state" / "records.json"
    first = ResourceStore(path)
    first.create(make_record(finalizers=[FINALIZER]))
    first.patch_status(KEY, RecordStatus(state="open", last_update_timestamp="ts"))
    first.delete(KEY)

    second = ResourceStore(path)
    record = second.get(KEY)

    assert record is not None
    assert record.finalizers == [FINALIZER]
    assert record.deletion_requested
    assert record.status.state == "open"
    assert record.resource_version == first.get(KEY).resource_version
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert payload["records"][0]["kind"] == "GitHubIssue"
    assert not path.with_suffix(".json.tmp").exists()


def test_corrupt_store_file_is_reported(tmp_path):
    path = tmp_path / "records.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(OperatorError):
        ResourceStore(path)


def _break_disk(store: ResourceStore, monkeypatch) -> None:
    def _fail(records):
        raise OSError("No space left on device")

    monkeypatch.setattr(store, "_persist", _fail)


def test_failed_write_leaves_memory_unchanged(tmp_path, monkeypatch):
    path = tmp_path / "records.json"
    store = ResourceStore(path)
    store.create(make_record())
    events: list[StoreEvent] = []
    store.watch(events.append)
    _break_disk(store, monkeypatch)

    record = store.get(KEY)
    record.metadata.finalizers.append(FINALIZER)
    with pytest.raises(OSError):
        store.update(record)
    with pytest.raises(OSError):
        store.patch_status(KEY, RecordStatus(state="open"))
    with pytest.raises(OSError):
        store.create(make_record("other"))

    current = store.get(KEY)
    assert current.finalizers == []
    assert current.status.state == ""
    assert current.resource_version == 1
    assert "default/other" not in store
    assert events == []


def test_failed_delete_keeps_record_unmarked(tmp_path, monkeypatch):
    store = ResourceStore(tmp_path / "records.json")
    store.create(make_record(finalizers=[FINALIZER]))
    store.create(make_record("plain"))
    _break_disk(store, monkeypatch)

    with pytest.raises(OSError):
        store.delete(KEY)
    with pytest.raises(OSError):
        store.delete("default/plain")

    assert store.get(KEY).deletion_requested is False
    assert "default/plain" in store


def test_write_after_disk_recovers_is_persisted(tmp_path, monkeypatch):
    path = tmp_path / "records.json"
    store = ResourceStore(path)
    store.create(make_record())
    _break_disk(store, monkeypatch)
    record = store.get(KEY)
    record.metadata.finalizers.append(FINALIZER)
    with pytest.raises(OSError):
        store.update(record)

    monkeypatch.undo()
    store.update(record)

    assert ResourceStore(path).get(KEY).finalizers == [FINALIZER]
