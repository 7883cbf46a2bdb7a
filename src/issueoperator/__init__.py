"""issue-operator - keep GitHub issues converged on declared records.

High-level public API (stable):

from issueoperator import ResourceStore, Reconciler, Controller, FakeIssueClient

store = ResourceStore()
client = FakeIssueClient()
controller = Controller(store, Reconciler(store, lambda repo: client))
controller.start()

Production wiring (GitHub REST client, credentials from the environment,
logging and telemetry from a YAML config) lives in ``issueoperator.runtime``:

# cfg = load_config('operator.config.yaml')
# controller = build_controller(cfg)
"""

from __future__ import annotations

from .config import OperatorConfig, load_config
from .controller import Controller
from .errors import ConflictError, TransportError, ValidationError
from .fake_client import FakeIssueClient
from .finalizers import FINALIZER, FinalizerState
from .github_rest import GitHubIssueClient
from .issue_client import IssueClient
from .models import DeclaredRecord, Issue, IssueDraft, RecordMeta, RecordSpec, RecordStatus
from .reconciler import ReconcileResult, Reconciler
from .store import ResourceStore

# Version constant (sync manually with pyproject)
__version__ = "0.1.0"


def __getattr__(name: str) -> object:
    """Lazily expose the runtime wiring helpers (they pull in config + auth)."""
    if name in {"build_controller", "apply_manifests", "load_manifests"}:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "OperatorConfig",
    "load_config",
    "Controller",
    "ConflictError",
    "TransportError",
    "ValidationError",
    "FakeIssueClient",
    "FINALIZER",
    "FinalizerState",
    "GitHubIssueClient",
    "IssueClient",
    "DeclaredRecord",
    "Issue",
    "IssueDraft",
    "RecordMeta",
    "RecordSpec",
    "RecordStatus",
    "ReconcileResult",
    "Reconciler",
    "ResourceStore",
    "build_controller",
    "apply_manifests",
    "load_manifests",
    "__version__",
]
