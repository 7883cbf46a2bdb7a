"""Pytest configuration for issue-operator tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and provides the
store / fake tracker / engine fixtures most tests share.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from issueoperator.fake_client import FakeIssueClient  # noqa: E402
from issueoperator.logging import StructuredLogger  # noqa: E402
from issueoperator.models import DeclaredRecord, RecordMeta, RecordSpec  # noqa: E402
from issueoperator.reconciler import Reconciler  # noqa: E402
from issueoperator.store import ResourceStore  # noqa: E402

_TEST_START_TIMES: dict[str, float] = {}
_TEST_DURATIONS: list[tuple[str, float]] = []


def make_record(
    name: str = "demo",
    *,
    repo: str = "owner/name",
    title: str = "t1",
    description: str = "d1",
    namespace: str = "default",
    finalizers: list[str] | None = None,
) -> DeclaredRecord:
    return DeclaredRecord(
        metadata=RecordMeta(name=name, namespace=namespace, finalizers=list(finalizers or [])),
        spec=RecordSpec(repo=repo, title=title, description=description),
    )


@pytest.fixture
def store() -> ResourceStore:
    return ResourceStore(clock=lambda: "2024-01-01T00:00:00Z")


@pytest.fixture
def tracker() -> FakeIssueClient:
    return FakeIssueClient()


@pytest.fixture
def quiet_logger() -> StructuredLogger:
    return StructuredLogger(name="issueoperator.test", level="CRITICAL")


@pytest.fixture
def reconciler(
    store: ResourceStore, tracker: FakeIssueClient, quiet_logger: StructuredLogger
) -> Reconciler:
    return Reconciler(store, lambda repo: tracker, logger=quiet_logger)


# --- Timing utilities to help identify slow/stalling tests ---


def pytest_runtest_setup(item):  # type: ignore
    _TEST_START_TIMES[item.nodeid] = time.perf_counter()


def pytest_runtest_teardown(item):  # type: ignore
    start = _TEST_START_TIMES.pop(item.nodeid, None)
    if start is not None:
        _TEST_DURATIONS.append((item.nodeid, time.perf_counter() - start))


def pytest_sessionfinish(session, exitstatus):  # type: ignore
    if not _TEST_DURATIONS:
        return
    slow = sorted(_TEST_DURATIONS, key=lambda x: x[1], reverse=True)[:10]
    print("\n=== Slowest Tests (top 10) ===")
    for nodeid, secs in slow:
        print(f"{secs:0.3f}s  {nodeid}")
