"""Runtime helpers wiring configuration, credentials, clients and the controller."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import requests
import yaml

from .config import OperatorConfig, default_config
from .controller import Controller
from .env_auth import EnvAuthConfig, create_env_auth_manager
from .errors import ValidationError
from .github_rest import GitHubIssueClient
from .issue_client import ClientFactory, IssueClient
from .logging import configure_logging
from .models import DeclaredRecord, RepoRef
from .observability import configure_telemetry
from .reconciler import Reconciler
from .retry import BackoffConfig, RateLimiter
from .store import ResourceStore
from .workqueue import WorkQueue

MANIFEST_SUFFIXES = (".yaml", ".yml")


def build_client_factory(
    config: OperatorConfig,
    token: str,
    *,
    session: requests.Session | None = None,
) -> ClientFactory:
    """Return a factory that builds one cached GitHub client per repository."""
    shared = session or requests.Session()
    cache: dict[RepoRef, IssueClient] = {}
    lock = threading.Lock()

    def factory(repo: RepoRef) -> IssueClient:
        with lock:
            client = cache.get(repo)
            if client is None:
                client = GitHubIssueClient(
                    repo=repo,
                    token=token,
                    base_url=config.api_url,
                    timeout=config.request_timeout,
                    session=shared,
                )
                cache[repo] = client
            return client

    return factory


def build_controller(
    config: OperatorConfig | None = None,
    *,
    store: ResourceStore | None = None,
    client_factory: ClientFactory | None = None,
) -> Controller:
    cfg = config or default_config()
    logger = configure_logging(json_logging=cfg.logging_json_enabled, level=cfg.logging_level)
    if cfg.telemetry_enabled:
        configure_telemetry(exporter=cfg.telemetry_exporter, endpoint=cfg.telemetry_endpoint)
    if client_factory is None:
        auth = create_env_auth_manager(
            EnvAuthConfig(
                load_dotenv=cfg.env_auth_load_dotenv,
                dotenv_path=cfg.env_auth_dotenv_path,
                github_token_var=cfg.token_env,
            )
        )
        client_factory = build_client_factory(cfg, auth.require_github_token())
    store = store if store is not None else ResourceStore(cfg.store_path)
    queue = WorkQueue(
        RateLimiter(BackoffConfig(base_sleep=cfg.retry_base, max_sleep=cfg.retry_max_sleep))
    )
    reconciler = Reconciler(store, client_factory, logger=logger)
    return Controller(
        store,
        reconciler,
        workers=cfg.workers,
        resync_seconds=cfg.resync_seconds,
        queue=queue,
        logger=logger,
    )


def _manifest_files(paths: Iterable[str | Path]) -> list[Path]:
    files: list[Path] = []
    for entry in paths:
        p = Path(entry)
        if p.is_dir():
            files.extend(sorted(f for f in p.iterdir() if f.suffix in MANIFEST_SUFFIXES))
        else:
            files.append(p)
    return files


def load_manifests(paths: Iterable[str | Path]) -> list[DeclaredRecord]:
    """Parse GitHubIssue manifests (multi-document YAML allowed)."""
    records: list[DeclaredRecord] = []
    for path in _manifest_files(paths):
        try:
            documents: list[Any] = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
        except yaml.YAMLError as exc:
            raise ValidationError(f"{path}: invalid YAML: {exc}") from exc
        for doc in documents:
            if doc is None:
                continue
            records.append(DeclaredRecord.from_manifest(doc))
    return records


def apply_manifests(store: ResourceStore, records: Iterable[DeclaredRecord]) -> dict[str, str]:
    """Create or update records in ``store``; returns ``{key: action}``."""
    actions: dict[str, str] = {}
    for record in records:
        existing = store.get(record.key)
        if existing is None:
            store.create(record)
            actions[record.key] = "created"
            continue
        if existing.spec == record.spec:
            actions[record.key] = "unchanged"
            continue
        existing.spec = record.spec
        store.update(existing)
        actions[record.key] = "updated"
    return actions


__all__ = [
    "build_client_factory",
    "build_controller",
    "load_manifests",
    "apply_manifests",
]
