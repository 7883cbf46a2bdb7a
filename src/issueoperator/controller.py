"""Controller loop wiring the store, the work queue and the engine.

Store change events enqueue the affected key; worker threads pop keys and
run one reconciliation pass each. Failed passes (tracker errors, store
conflicts, unexpected exceptions) are re-delivered with backoff, giving the
at-least-once delivery the engine relies on.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from types import TracebackType

from .errors import ConflictError, classify_error
from .logging import StructuredLogger, get_logger
from .reconciler import Reconciler
from .store import ResourceStore, StoreEvent
from .workqueue import WorkQueue


class Controller:
    def __init__(
        self,
        store: ResourceStore,
        reconciler: Reconciler,
        *,
        workers: int = 2,
        resync_seconds: float | None = None,
        queue: WorkQueue | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.workers = max(1, workers)
        self.resync_seconds = resync_seconds
        self.queue = queue or WorkQueue()
        self._logger = logger
        self._executor: ThreadPoolExecutor | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._stop = threading.Event()
        self._resync_thread: threading.Thread | None = None

    @property
    def logger(self) -> StructuredLogger:
        return self._logger or get_logger()

    def __enter__(self) -> Controller:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()

    # --- lifecycle ----------------------------------------------------------
    def watch(self) -> None:
        """Subscribe to store events and enqueue every existing record."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.watch(self._on_event)
        self.enqueue_all()

    def start(self) -> None:
        if self._executor is not None:
            return
        self._stop.clear()
        self.queue.reopen()
        self.watch()
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="reconcile"
        )
        for _ in range(self.workers):
            self._executor.submit(self._worker)
        if self.resync_seconds:
            self._resync_thread = threading.Thread(
                target=self._resync_loop, name="resync", daemon=True
            )
            self._resync_thread.start()
        self.logger.log_operation("controller_started", workers=self.workers)

    def stop(self, wait: bool = True) -> None:
        """Stop accepting work; in-flight passes run to completion."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._stop.set()
        self.queue.shutdown()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        if self._resync_thread is not None:
            self._resync_thread.join(timeout=1.0)
            self._resync_thread = None
        self.logger.log_operation("controller_stopped")

    # --- event intake ---------------------------------------------------------
    def _on_event(self, event: StoreEvent) -> None:
        self.queue.add(event.key)

    def enqueue_all(self) -> None:
        for key in self.store.list_keys():
            self.queue.add(key)

    def _resync_loop(self) -> None:
        interval = float(self.resync_seconds or 0)
        while not self._stop.wait(interval):
            self.enqueue_all()

    # --- processing -----------------------------------------------------------
    def _worker(self) -> None:
        while not self.queue.shutting_down:
            self.process_next_item()

    def process_next_item(self, timeout: float | None = None) -> bool:
        """Run one pass for the next queued key; False when nothing was processed."""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self._process(key)
        finally:
            self.queue.done(key)
        return True

    def run_until_idle(self, max_items: int = 1000) -> int:
        """Synchronously drain keys that are ready now (delayed retries excluded)."""
        processed = 0
        while processed < max_items and self.process_next_item(timeout=0):
            processed += 1
        return processed

    def _process(self, key: str) -> None:
        start = time.perf_counter()
        try:
            result = self.reconciler.reconcile(key)
        except ConflictError as exc:
            delay = self.queue.add_rate_limited(key)
            self.logger.warning(
                "record changed during reconciliation; retrying",
                record=key,
                error=str(exc),
                retry_in=round(delay, 3),
            )
            return
        except Exception as exc:  # noqa: BLE001
            self._handle_failure(key, exc)
            return
        self.logger.log_performance(
            "reconcile",
            (time.perf_counter() - start) * 1000,
            record=key,
            requeue=result.requeue,
        )
        if result.requeue:
            delay = self.queue.add_rate_limited(key, hint=result.reason or "")
            self.logger.debug(
                "reconciliation incomplete; requeued",
                record=key,
                reason=result.reason,
                retry_in=round(delay, 3),
            )
        else:
            self.queue.forget(key)

    def _handle_failure(self, key: str, exc: Exception) -> None:
        info = classify_error(exc)
        if info.category == "validation":
            # Terminal; the next edit of the record enqueues it again.
            self.queue.forget(key)
            self.logger.log_error(
                "rejecting record", error=info.message, record=key, category=info.category
            )
            return
        delay = self.queue.add_rate_limited(key, hint=str(exc))
        self.logger.log_error(
            "reconciliation failed",
            error=info.message,
            record=key,
            category=info.category,
            retry_in=round(delay, 3),
        )


__all__ = ["Controller"]
