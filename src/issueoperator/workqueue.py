"""Keyed work queue with per-key serialization.

Semantics:

- a key is queued at most once; adding it again while it waits is a no-op
- a key added while a worker holds it is marked dirty and queued again when
  the worker calls :meth:`WorkQueue.done`, so no two workers ever process the
  same key concurrently, yet no change notification is lost
- :meth:`WorkQueue.add_rate_limited` delays re-delivery with per-key
  exponential backoff; :meth:`WorkQueue.forget` resets it after a success
"""

from __future__ import annotations

import threading
from collections import deque

from .retry import RateLimiter


class WorkQueue:
    def __init__(self, rate_limiter: RateLimiter | None = None) -> None:
        self.rate_limiter = rate_limiter or RateLimiter()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._timers: set[threading.Timer] = set()
        self._cond = threading.Condition()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def is_processing(self, key: str) -> bool:
        with self._cond:
            return key in self._processing

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> str | None:
        """Pop the next key, blocking up to ``timeout`` seconds.

        Returns None on timeout or once the queue is shut down and drained.
        """
        with self._cond:
            if not self._cond.wait_for(
                lambda: bool(self._queue) or self._shutting_down, timeout=timeout
            ):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            timer = threading.Timer(delay, self._fire)
            timer.args = (key, timer)
            timer.daemon = True
            self._timers.add(timer)
            timer.start()

    def _fire(self, key: str, timer: threading.Timer) -> None:
        with self._cond:
            self._timers.discard(timer)
        self.add(key)

    def add_rate_limited(self, key: str, hint: str = "") -> float:
        delay = self.rate_limiter.when(key, hint)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        self.rate_limiter.forget(key)

    def num_requeues(self, key: str) -> int:
        return self.rate_limiter.num_requeues(key)

    def pending_timers(self) -> int:
        with self._cond:
            return len(self._timers)

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()

    def reopen(self) -> None:
        """Accept work again after :meth:`shutdown`; keys still queued are kept."""
        with self._cond:
            self._shutting_down = False


__all__ = ["WorkQueue"]
