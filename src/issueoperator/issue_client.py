"""Issue tracker capability contract.

The reconciliation engine only ever needs four operations against a single
repository. Backends implement them structurally (no base class required):

- ``GitHubIssueClient`` (``github_rest``): production REST backend
- ``FakeIssueClient`` (``fake_client``): in-memory double for tests

Every operation is one external call (``find`` may page through results)
and never retries internally; retry policy belongs to the work queue.
Transport, status and parse failures raise
:class:`issueoperator.errors.TransportError`.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from .models import Issue, IssueDraft, RepoRef


@runtime_checkable
class IssueClient(Protocol):
    def find(self, title: str) -> Issue | None:
        """Return the first issue (tracker order, any state) titled ``title``, else None."""
        ...  # pragma: no cover - structural only

    def create(self, draft: IssueDraft) -> Issue:
        ...  # pragma: no cover - structural only

    def edit(self, number: int, description: str) -> Issue | None:
        """Replace the body; return the updated issue when the tracker echoes it."""
        ...  # pragma: no cover - structural only

    def close(self, number: int) -> None:
        ...  # pragma: no cover - structural only


# Builds a client bound to one repository.
ClientFactory = Callable[[RepoRef], IssueClient]


__all__ = ["IssueClient", "ClientFactory"]
