from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError

API_VERSION = "example.training.redhat.com/v1alpha1"
KIND = "GitHubIssue"
DEFAULT_NAMESPACE = "default"

STATE_OPEN = "open"
STATE_CLOSED = "closed"

REPO_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class RepoRef:
    """Two-segment repository reference parsed from ``spec.repo``.

    ``owner`` is the first segment and ``name`` the second, so ``path``
    reproduces the declared string verbatim.
    """

    owner: str
    name: str

    @property
    def path(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.path


def parse_repo(value: str) -> RepoRef:
    if not isinstance(value, str) or not REPO_PATTERN.match(value):
        raise ValidationError(
            f"invalid repo {value!r}: expected '<owner>/<name>' matching {REPO_PATTERN.pattern}"
        )
    first, second = value.split("/")
    return RepoRef(owner=first, name=second)


@dataclass
class IssueDraft:
    title: str
    description: str = ""


@dataclass
class Issue:
    """Snapshot of a tracker-side issue."""

    title: str
    description: str = ""
    number: int = 0
    state: str = STATE_OPEN
    last_update_timestamp: str = ""

    @property
    def is_closed(self) -> bool:
        return self.state == STATE_CLOSED

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Issue:
        number = payload.get("number")
        return cls(
            title=str(payload.get("title") or ""),
            description=payload.get("body") or "",
            number=number if isinstance(number, int) else 0,
            state=str(payload.get("state") or ""),
            last_update_timestamp=str(payload.get("updated_at") or ""),
        )


@dataclass
class RecordSpec:
    repo: str
    title: str
    description: str = ""


@dataclass
class RecordStatus:
    state: str = ""
    last_update_timestamp: str = ""

    def as_patch(self) -> dict[str, str]:
        return {"state": self.state, "lastUpdateTimestamp": self.last_update_timestamp}


@dataclass
class RecordMeta:
    name: str
    namespace: str = DEFAULT_NAMESPACE
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: str | None = None
    resource_version: int = 0


@dataclass
class DeclaredRecord:
    """The user's declared intent for one issue plus its observed status."""

    metadata: RecordMeta
    spec: RecordSpec
    status: RecordStatus = field(default_factory=RecordStatus)

    @property
    def key(self) -> str:
        return make_key(self.metadata.namespace, self.metadata.name)

    @property
    def finalizers(self) -> list[str]:
        return self.metadata.finalizers

    @property
    def resource_version(self) -> int:
        return self.metadata.resource_version

    @property
    def deletion_requested(self) -> bool:
        return bool(self.metadata.deletion_timestamp)

    def repo_ref(self) -> RepoRef:
        return parse_repo(self.spec.repo)

    # --- manifest conversion ---------------------------------------------
    @classmethod
    def from_manifest(cls, raw: dict[str, Any]) -> DeclaredRecord:
        if not isinstance(raw, dict):
            raise ValidationError("manifest must be a mapping")
        kind = raw.get("kind", KIND)
        if kind != KIND:
            raise ValidationError(f"unsupported kind {kind!r}; expected {KIND}")
        meta_raw = raw.get("metadata") or {}
        spec_raw = raw.get("spec") or {}
        status_raw = raw.get("status") or {}
        name = meta_raw.get("name")
        if not isinstance(name, str) or not name:
            raise ValidationError("metadata.name is required")
        title = spec_raw.get("title")
        if not isinstance(title, str):
            raise ValidationError(f"{name}: spec.title is required")
        repo = spec_raw.get("repo")
        parse_repo(repo)
        finalizers = meta_raw.get("finalizers") or []
        return cls(
            metadata=RecordMeta(
                name=name,
                namespace=str(meta_raw.get("namespace") or DEFAULT_NAMESPACE),
                finalizers=[str(f) for f in finalizers],
                deletion_timestamp=meta_raw.get("deletionTimestamp") or None,
                resource_version=int(meta_raw.get("resourceVersion") or 0),
            ),
            spec=RecordSpec(
                repo=repo,
                title=title,
                description=str(spec_raw.get("description") or ""),
            ),
            status=RecordStatus(
                state=str(status_raw.get("state") or ""),
                last_update_timestamp=str(status_raw.get("lastUpdateTimestamp") or ""),
            ),
        )

    def to_manifest(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "name": self.metadata.name,
            "namespace": self.metadata.namespace,
            "resourceVersion": self.metadata.resource_version,
        }
        if self.metadata.finalizers:
            metadata["finalizers"] = list(self.metadata.finalizers)
        if self.metadata.deletion_timestamp:
            metadata["deletionTimestamp"] = self.metadata.deletion_timestamp
        spec: dict[str, Any] = {"repo": self.spec.repo, "title": self.spec.title}
        if self.spec.description:
            spec["description"] = self.spec.description
        doc: dict[str, Any] = {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "metadata": metadata,
            "spec": spec,
        }
        status = {k: v for k, v in self.status.as_patch().items() if v}
        if status:
            doc["status"] = status
        return doc


def make_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


__all__ = [
    "API_VERSION",
    "KIND",
    "STATE_OPEN",
    "STATE_CLOSED",
    "RepoRef",
    "parse_repo",
    "Issue",
    "IssueDraft",
    "RecordSpec",
    "RecordStatus",
    "RecordMeta",
    "DeclaredRecord",
    "make_key",
]
