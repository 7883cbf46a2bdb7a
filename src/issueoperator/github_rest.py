from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import TransportError
from .models import STATE_CLOSED, Issue, IssueDraft, RepoRef

DEFAULT_API_URL = "https://api.github.com/repos"
USER_AGENT = "issue-operator/0.1.0"
DEFAULT_TIMEOUT = 30.0
PER_PAGE = 100
HTTP_OK = 200
HTTP_CREATED = 201


@dataclass
class GitHubIssueClient:
    """GitHub REST backend bound to a single repository.

    Each public method issues exactly the requests it needs and raises
    :class:`TransportError` on anything other than the expected status.
    There is no retry loop here; the work queue decides when to try again.
    """

    repo: RepoRef
    token: str
    base_url: str = DEFAULT_API_URL
    timeout: float = DEFAULT_TIMEOUT
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }

    def __repr__(self) -> str:
        return f"GitHubIssueClient(repo={self.repo.path!r}, base_url={self.base_url!r})"

    # ---- HTTP helpers -------------------------------------------------
    @property
    def issues_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.repo.path}/issues"

    def _request(
        self,
        method: str,
        url: str,
        *,
        expected: int,
        failure: str,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} request to GitHub API failed: {exc}") from exc
        if response.status_code != expected:
            raise TransportError(
                f"{failure}: {method} {url} returned {response.status_code}",
                status=response.status_code,
                response_text=response.text,
            )
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"{failure}: unparsable response from {method} {url}",
                status=response.status_code,
                response_text=response.text,
            ) from exc

    # ---- Issue operations --------------------------------------------
    def find(self, title: str) -> Issue | None:
        page = 1
        while True:
            data = self._request(
                "GET",
                self.issues_url,
                expected=HTTP_OK,
                failure="Listing GitHub issues failed",
                params={"state": "all", "per_page": PER_PAGE, "page": page},
            )
            if not isinstance(data, list):
                raise TransportError(
                    f"Listing GitHub issues failed: expected a JSON array from {self.issues_url}"
                )
            for entry in data:
                # The issues endpoint also returns pull requests.
                if not isinstance(entry, dict) or "pull_request" in entry:
                    continue
                if entry.get("title") == title:
                    return Issue.from_api(entry)
            if len(data) < PER_PAGE:
                return None
            page += 1

    def create(self, draft: IssueDraft) -> Issue:
        data = self._request(
            "POST",
            self.issues_url,
            expected=HTTP_CREATED,
            failure="Creating GitHub issue failed",
            json_body={"title": draft.title, "body": draft.description},
        )
        if not isinstance(data, dict):
            raise TransportError("Creating GitHub issue failed: empty acknowledgment")
        return Issue.from_api(data)

    def edit(self, number: int, description: str) -> Issue | None:
        data = self._request(
            "PATCH",
            f"{self.issues_url}/{number}",
            expected=HTTP_OK,
            failure="Editing GitHub issue failed",
            json_body={"body": description},
        )
        return Issue.from_api(data) if isinstance(data, dict) else None

    def close(self, number: int) -> None:
        # GitHub answers 200 for an already-closed issue, which keeps close idempotent.
        self._request(
            "PATCH",
            f"{self.issues_url}/{number}",
            expected=HTTP_OK,
            failure="Closing GitHub issue failed",
            json_body={"state": STATE_CLOSED},
        )


__all__ = [
    "DEFAULT_API_URL",
    "GitHubIssueClient",
]
