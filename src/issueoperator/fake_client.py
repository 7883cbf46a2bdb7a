"""In-memory issue tracker double.

Behaves like a single GitHub repository: issues keep insertion order, numbers
are assigned sequentially, closing is idempotent and nothing is ever deleted.
Every call is recorded in ``calls`` and any operation can be made to fail
with a :class:`TransportError` through ``fail``.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from .errors import TransportError
from .models import STATE_CLOSED, STATE_OPEN, Issue, IssueDraft

MUTATING_OPERATIONS = frozenset({"create", "edit", "close"})
_EPOCH = datetime(2021, 1, 1, tzinfo=timezone.utc)


class FakeIssueClient:
    def __init__(self, issues: list[Issue] | None = None, *, first_number: int = 1) -> None:
        self.issues: list[Issue] = [replace(i) for i in (issues or [])]
        self.calls: list[tuple[str, object]] = []
        self._failures: dict[str, TransportError] = {}
        taken = [i.number for i in self.issues]
        self._next_number = max([first_number - 1, *taken]) + 1
        self._ticks = 0
        self._lock = threading.Lock()

    # --- test controls ----------------------------------------------------
    def fail(self, operation: str, error: TransportError | None = None) -> None:
        """Make every subsequent ``operation`` call raise until :meth:`recover`."""
        self._failures[operation] = error or TransportError(f"simulated {operation} failure")

    def recover(self, operation: str | None = None) -> None:
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    @property
    def mutating_calls(self) -> list[tuple[str, object]]:
        return [c for c in self.calls if c[0] in MUTATING_OPERATIONS]

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def get(self, number: int) -> Issue | None:
        for issue in self.issues:
            if issue.number == number:
                return replace(issue)
        return None

    # --- helpers ----------------------------------------------------------
    def _record(self, operation: str, argument: object) -> None:
        self.calls.append((operation, argument))
        error = self._failures.get(operation)
        if error is not None:
            raise error

    def _now(self) -> str:
        self._ticks += 1
        stamp = _EPOCH + timedelta(seconds=self._ticks)
        return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")

    def _lookup(self, number: int) -> Issue:
        for issue in self.issues:
            if issue.number == number:
                return issue
        raise TransportError(f"issue #{number} not found", status=404)

    # --- IssueClient --------------------------------------------------------
    def find(self, title: str) -> Issue | None:
        with self._lock:
            self._record("find", title)
            for issue in self.issues:
                if issue.title == title:
                    return replace(issue)
            return None

    def create(self, draft: IssueDraft) -> Issue:
        with self._lock:
            self._record("create", draft)
            issue = Issue(
                title=draft.title,
                description=draft.description,
                number=self._next_number,
                state=STATE_OPEN,
                last_update_timestamp=self._now(),
            )
            self._next_number += 1
            self.issues.append(issue)
            return replace(issue)

    def edit(self, number: int, description: str) -> Issue:
        with self._lock:
            self._record("edit", (number, description))
            issue = self._lookup(number)
            issue.description = description
            issue.last_update_timestamp = self._now()
            return replace(issue)

    def close(self, number: int) -> None:
        with self._lock:
            self._record("close", number)
            issue = self._lookup(number)
            if issue.state != STATE_CLOSED:
                issue.state = STATE_CLOSED
                issue.last_update_timestamp = self._now()


__all__ = ["FakeIssueClient", "MUTATING_OPERATIONS"]
