"""Declared-record store with optimistic concurrency and change events.

Stands in for the host orchestration API server: it keeps ``GitHubIssue``
records, bumps ``resource_version`` on every mutation, rejects writes based
on a stale revision with :class:`ConflictError`, and tells subscribers which
key changed. When constructed with a ``path`` the whole store is written
atomically to a JSON document after every mutation and reloaded on start, so
finalizers (and therefore pending cleanups) survive restarts.

Deletion follows the finalizer contract: ``delete`` on a record that still
carries finalizers only stamps ``deletion_timestamp``; the record is erased
by the ``update`` that removes the last finalizer.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import ConflictError, OperatorError, RecordExistsError, ValidationError
from .models import DeclaredRecord, RecordStatus, parse_repo

logger = logging.getLogger(__name__)

STORE_VERSION = 1
_STATUS_FIELDS = {"state": "state", "lastUpdateTimestamp": "last_update_timestamp"}


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class StoreEvent:
    type: EventType
    key: str


Watcher = Callable[[StoreEvent], None]


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ResourceStore:
    def __init__(
        self,
        path: str | Path | None = None,
        *,
        clock: Callable[[], str] = _utcnow,
    ) -> None:
        self._records: dict[str, DeclaredRecord] = {}
        self._watchers: list[Watcher] = []
        self._lock = threading.RLock()
        self._clock = clock
        self._path = Path(path) if path else None
        if self._path is not None:
            self._load(self._path)

    # --- persistence -----------------------------------------------------
    def _load(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            raw: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise OperatorError(f"cannot read store file {path}: {exc}") from exc
        entries = raw.get("records") if isinstance(raw, dict) else None
        if not isinstance(entries, list):
            raise OperatorError(f"store file {path} has no 'records' list")
        for entry in entries:
            record = DeclaredRecord.from_manifest(entry)
            self._records[record.key] = record
        logger.debug("loaded %d records from %s", len(self._records), path)

    def _persist(self, records: dict[str, DeclaredRecord]) -> None:
        if self._path is None:
            return
        payload = {
            "version": STORE_VERSION,
            "records": [records[k].to_manifest() for k in sorted(records)],
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        tmp.replace(self._path)

    def _commit(self, records: dict[str, DeclaredRecord]) -> None:
        """Persist ``records`` and only then make them the in-memory state.

        A failed write leaves memory untouched, so memory never runs ahead
        of what a restarted process would load.
        """
        self._persist(records)
        self._records = records

    # --- events ----------------------------------------------------------
    def watch(self, callback: Watcher) -> Callable[[], None]:
        """Subscribe to change events; returns an unsubscribe callable."""
        with self._lock:
            self._watchers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._watchers:
                    self._watchers.remove(callback)

        return _unsubscribe

    def _notify(self, event: StoreEvent) -> None:
        with self._lock:
            watchers = list(self._watchers)
        for callback in watchers:
            callback(event)

    # --- reads -----------------------------------------------------------
    def get(self, key: str) -> DeclaredRecord | None:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def list_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    # --- writes ----------------------------------------------------------
    def create(self, record: DeclaredRecord) -> DeclaredRecord:
        parse_repo(record.spec.repo)
        with self._lock:
            if record.key in self._records:
                raise RecordExistsError(record.key)
            stored = copy.deepcopy(record)
            stored.metadata.resource_version = 1
            stored.metadata.deletion_timestamp = None
            records = dict(self._records)
            records[stored.key] = stored
            self._commit(records)
            result = copy.deepcopy(stored)
        self._notify(StoreEvent(EventType.ADDED, result.key))
        return result

    def update(self, record: DeclaredRecord) -> DeclaredRecord:
        """Replace spec and metadata, conditional on ``record.resource_version``.

        Status is left untouched (use :meth:`patch_status`) and a deletion
        timestamp, once set, cannot be cleared.
        """
        parse_repo(record.spec.repo)
        key = record.key
        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise ConflictError(key, record.resource_version, None)
            if current.resource_version != record.resource_version:
                raise ConflictError(key, record.resource_version, current.resource_version)
            stored = copy.deepcopy(record)
            stored.status = copy.deepcopy(current.status)
            stored.metadata.deletion_timestamp = current.metadata.deletion_timestamp
            stored.metadata.resource_version = current.resource_version + 1
            records = dict(self._records)
            if stored.deletion_requested and not stored.finalizers:
                del records[key]
                event = StoreEvent(EventType.DELETED, key)
            else:
                records[key] = stored
                event = StoreEvent(EventType.MODIFIED, key)
            self._commit(records)
            result = copy.deepcopy(stored)
        self._notify(event)
        return result

    def patch_status(
        self,
        key: str,
        patch: dict[str, str] | RecordStatus,
        *,
        resource_version: int | None = None,
    ) -> DeclaredRecord:
        """Merge ``patch`` into the status of ``key``.

        With ``resource_version`` the patch is rejected if the record changed
        since that revision was read.
        """
        fields = patch.as_patch() if isinstance(patch, RecordStatus) else dict(patch)
        unknown = set(fields) - set(_STATUS_FIELDS)
        if unknown:
            raise ValidationError(f"unknown status fields: {sorted(unknown)}")
        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise ConflictError(key, resource_version, None)
            if resource_version is not None and current.resource_version != resource_version:
                raise ConflictError(key, resource_version, current.resource_version)
            stored = copy.deepcopy(current)
            for name, value in fields.items():
                setattr(stored.status, _STATUS_FIELDS[name], value or "")
            stored.metadata.resource_version = current.resource_version + 1
            records = dict(self._records)
            records[key] = stored
            self._commit(records)
            result = copy.deepcopy(stored)
        self._notify(StoreEvent(EventType.MODIFIED, key))
        return result

    def delete(self, key: str) -> bool:
        """Request deletion; returns False when ``key`` does not exist."""
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return False
            if current.deletion_requested:
                return True
            records = dict(self._records)
            if not current.finalizers:
                del records[key]
                event = StoreEvent(EventType.DELETED, key)
            else:
                marked = copy.deepcopy(current)
                marked.metadata.deletion_timestamp = self._clock()
                marked.metadata.resource_version += 1
                records[key] = marked
                event = StoreEvent(EventType.MODIFIED, key)
            self._commit(records)
        self._notify(event)
        return True


__all__ = ["EventType", "StoreEvent", "ResourceStore", "Watcher"]
