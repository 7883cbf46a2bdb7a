from __future__ import annotations

import time

from conftest import make_record

from issueoperator.controller import Controller
from issueoperator.errors import ConflictError, ValidationError
from issueoperator.fake_client import FakeIssueClient
from issueoperator.finalizers import FINALIZER
from issueoperator.reconciler import Reconciler, ReconcileResult
from issueoperator.retry import BackoffConfig, RateLimiter
from issueoperator.workqueue import WorkQueue

KEY = "default/demo"


def _queue(base: float = 0.01) -> WorkQueue:
    return WorkQueue(RateLimiter(BackoffConfig(base_sleep=base, max_sleep=1.0, jitter=0.0)))


def _controller(store, reconciler, logger) -> Controller:
    return Controller(store, reconciler, queue=_queue(), logger=logger)


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_watch_enqueues_existing_records(store, reconciler, tracker, quiet_logger):
    store.create(make_record("a"))
    store.create(make_record("b", title="t2"))
    controller = _controller(store, reconciler, quiet_logger)

    controller.watch()
    controller.run_until_idle()

    assert tracker.count("create") == 2
    assert store.get("default/a").status.state == "open"
    assert store.get("default/b").status.state == "open"


def test_store_events_drive_reconciliation(store, reconciler, tracker, quiet_logger):
    controller = _controller(store, reconciler, quiet_logger)
    controller.watch()

    store.create(make_record())
    controller.run_until_idle()

    assert tracker.count("create") == 1
    # Writes made by the pass itself are re-delivered but converge to no-ops.
    assert [name for name, _ in tracker.mutating_calls] == ["create"]
    assert len(controller.queue) == 0


def test_full_lifecycle_create_edit_delete(store, reconciler, tracker, quiet_logger):
    controller = _controller(store, reconciler, quiet_logger)
    controller.watch()

    store.create(make_record(description="v1"))
    controller.run_until_idle()
    record = store.get(KEY)
    record.spec.description = "v2"
    store.update(record)
    controller.run_until_idle()
    store.delete(KEY)
    controller.run_until_idle()

    assert [name for name, _ in tracker.mutating_calls] == ["create", "edit", "close"]
    assert tracker.issues[0].description == "v2"
    assert tracker.issues[0].state == "closed"
    assert store.get(KEY) is None


def test_requeue_result_is_rate_limited(store, reconciler, tracker, quiet_logger):
    tracker.fail("create")
    controller = Controller(store, reconciler, queue=_queue(0.2), logger=quiet_logger)
    controller.watch()

    store.create(make_record(finalizers=[FINALIZER]))
    controller.run_until_idle()

    assert controller.queue.num_requeues(KEY) == 1
    assert controller.queue.pending_timers() == 1
    assert FINALIZER in store.get(KEY).finalizers

    tracker.recover()
    assert controller.process_next_item(timeout=2.0)

    assert store.get(KEY).status.state == "open"
    assert controller.queue.num_requeues(KEY) == 0


def test_conflict_is_retried(store, quiet_logger):
    calls: list[str] = []

    class _Flaky:
        def reconcile(self, key: str) -> ReconcileResult:
            calls.append(key)
            if len(calls) == 1:
                raise ConflictError(key, 1, 2)
            return ReconcileResult()

    store.create(make_record())
    controller = Controller(store, _Flaky(), queue=_queue(0.2), logger=quiet_logger)  # type: ignore[arg-type]
    controller.enqueue_all()

    controller.run_until_idle()
    assert controller.queue.num_requeues(KEY) == 1
    assert controller.process_next_item(timeout=2.0)

    assert calls == [KEY, KEY]
    assert controller.queue.num_requeues(KEY) == 0


def test_unexpected_exception_does_not_stop_processing(store, quiet_logger):
    class _Broken:
        def reconcile(self, key: str) -> ReconcileResult:
            raise KeyError(key)

    store.create(make_record("a"))
    store.create(make_record("b"))
    controller = Controller(store, _Broken(), queue=_queue(0.2), logger=quiet_logger)  # type: ignore[arg-type]
    controller.enqueue_all()

    assert controller.run_until_idle() == 2
    assert controller.queue.num_requeues("default/a") == 1
    assert controller.queue.num_requeues("default/b") == 1
    controller.stop()


def test_threaded_workers_converge_many_records(store, quiet_logger):
    tracker = FakeIssueClient()
    reconciler = Reconciler(store, lambda repo: tracker, logger=quiet_logger)
    names = [f"r{i}" for i in range(10)]

    with Controller(store, reconciler, workers=3, queue=_queue(), logger=quiet_logger):
        for name in names:
            store.create(make_record(name, title=f"title {name}"))
        assert _wait_for(
            lambda: all(store.get(f"default/{n}").status.state == "open" for n in names)
        )
        for name in names:
            store.delete(f"default/{name}")
        assert _wait_for(lambda: len(store) == 0)

    assert tracker.count("create") == len(names)
    assert all(issue.state == "closed" for issue in tracker.issues)
    assert len({issue.title for issue in tracker.issues}) == len(names)


def test_resync_re_enqueues_records(store, quiet_logger):
    seen: list[str] = []

    class _Counting:
        def reconcile(self, key: str) -> ReconcileResult:
            seen.append(key)
            return ReconcileResult()

    store.create(make_record())
    controller = Controller(
        store,
        _Counting(),  # type: ignore[arg-type]
        workers=1,
        resync_seconds=0.02,
        queue=_queue(),
        logger=quiet_logger,
    )

    with controller:
        assert _wait_for(lambda: len(seen) >= 3)


def test_controller_can_be_restarted(store, reconciler, tracker, quiet_logger):
    controller = _controller(store, reconciler, quiet_logger)

    controller.start()
    controller.stop()
    with controller:
        store.create(make_record())
        assert _wait_for(lambda: store.get(KEY).status.state == "open")

    assert tracker.count("create") == 1
    assert controller.queue.shutting_down


def test_validation_failure_is_not_requeued(store, quiet_logger):
    class _Rejecting:
        def reconcile(self, key: str) -> ReconcileResult:
            raise ValidationError("invalid repo 'x'")

    store.create(make_record())
    controller = Controller(store, _Rejecting(), queue=_queue(0.2), logger=quiet_logger)  # type: ignore[arg-type]
    controller.enqueue_all()

    assert controller.run_until_idle() == 1
    assert controller.queue.num_requeues(KEY) == 0
    assert controller.queue.pending_timers() == 0
