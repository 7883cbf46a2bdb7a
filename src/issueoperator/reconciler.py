"""Reconciliation engine for ``GitHubIssue`` records.

One call to :meth:`Reconciler.reconcile` is one pass of the convergence
algorithm for one record key. The engine holds no state between passes:
everything it needs is re-read from the store and the tracker, which is what
makes a pass safe to repeat after a crash, a conflict or a partial failure.

Pass outline:

1. read the record (gone -> nothing to do; malformed ``repo`` -> terminal)
2. ``find`` the issue by exact title; a transport failure makes the issue
   *unknown*, which is never treated as "absent"
3. deletion requested -> close the issue (if any), drop the finalizer, stop
4. register the finalizer before anything can be created
5. create the issue, or realign its body unless it is closed
6. merge the observed state into ``status``, conditional on the revision
   the pass is holding

Tracker failures are logged and reported through ``ReconcileResult.requeue``.
Store conflicts propagate as :class:`ConflictError` so the caller restarts
the pass from step 1.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .errors import TransportError, ValidationError, classify_error
from .finalizers import (
    FINALIZER,
    FinalizerState,
    add_finalizer,
    finalizer_state,
    has_finalizer,
    remove_finalizer,
)
from .issue_client import ClientFactory, IssueClient
from .logging import StructuredLogger, get_logger
from .models import DeclaredRecord, Issue, IssueDraft, RecordStatus
from .observability import get_tracer
from .store import ResourceStore


@dataclass
class ReconcileResult:
    requeue: bool = False
    reason: str | None = None


@dataclass
class _Lookup:
    issue: Issue | None
    known: bool = True


class Reconciler:
    def __init__(
        self,
        store: ResourceStore,
        client_factory: ClientFactory,
        *,
        finalizer: str = FINALIZER,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.store = store
        self.client_factory = client_factory
        self.finalizer = finalizer
        self._logger = logger

    @property
    def logger(self) -> StructuredLogger:
        return self._logger or get_logger()

    def reconcile(self, key: str) -> ReconcileResult:
        with get_tracer().start_as_current_span("reconcile") as span:
            span.set_attribute("record.key", key)
            result = self._reconcile(key)
            span.set_attribute("reconcile.requeue", result.requeue)
            if result.reason:
                span.set_attribute("reconcile.reason", result.reason)
            return result

    # --- pass ---------------------------------------------------------------
    def _reconcile(self, key: str) -> ReconcileResult:
        record = self.store.get(key)
        if record is None:
            self.logger.debug("record no longer exists", record=key)
            return ReconcileResult()

        try:
            repo = record.repo_ref()
        except ValidationError as exc:
            # Retrying cannot help until the user edits the record.
            self.logger.log_error("rejecting malformed record", error=str(exc), record=key)
            return ReconcileResult(reason="invalid record")

        client = self.client_factory(repo)
        lookup = self._locate(client, record)

        if record.deletion_requested:
            return self._finalize(client, record, lookup)

        record = self._register_finalizer(record)

        if not lookup.known:
            return ReconcileResult(requeue=True, reason="issue lookup failed")

        issue, failure = self._converge(client, record, lookup.issue)
        if failure is not None:
            return ReconcileResult(requeue=True, reason=failure.message)
        if issue is not None:
            self._write_status(record, issue)
        return ReconcileResult()

    def _locate(self, client: IssueClient, record: DeclaredRecord) -> _Lookup:
        try:
            return _Lookup(issue=client.find(record.spec.title))
        except TransportError as exc:
            self.logger.warning(
                "issue lookup failed; issue state unknown",
                record=record.key,
                error=str(exc),
                category=classify_error(exc).category,
            )
            return _Lookup(issue=None, known=False)

    # --- deletion protocol ----------------------------------------------------
    def _finalize(
        self, client: IssueClient, record: DeclaredRecord, lookup: _Lookup
    ) -> ReconcileResult:
        key = record.key
        if not has_finalizer(record, self.finalizer):
            return ReconcileResult()

        if not lookup.known:
            self.logger.warning("cannot confirm issue is closed; keeping finalizer", record=key)
            return ReconcileResult(requeue=True, reason="issue lookup failed")

        issue = lookup.issue
        if issue is not None:
            try:
                client.close(issue.number)
            except TransportError as exc:
                self.logger.log_error(
                    "closing issue failed; keeping finalizer",
                    error=str(exc),
                    record=key,
                    issue_number=issue.number,
                    category=classify_error(exc).category,
                )
                return ReconcileResult(requeue=True, reason=exc.message)
            self.logger.log_issue_action("close", key, issue.number)
        else:
            self.logger.debug("no matching issue to close", record=key)

        remove_finalizer(record, self.finalizer)
        self.store.update(record)
        self.logger.log_operation(
            "finalizer_removed",
            record=key,
            finalizer_state=FinalizerState.RELEASED.value,
        )
        return ReconcileResult()

    def _register_finalizer(self, record: DeclaredRecord) -> DeclaredRecord:
        if not add_finalizer(record, self.finalizer):
            return record
        updated = self.store.update(record)
        self.logger.log_operation(
            "finalizer_registered",
            record=record.key,
            finalizer_state=finalizer_state(updated, self.finalizer).value,
        )
        return updated

    # --- convergence ----------------------------------------------------------
    def _converge(
        self, client: IssueClient, record: DeclaredRecord, issue: Issue | None
    ) -> tuple[Issue | None, TransportError | None]:
        key = record.key
        desired = record.spec.description
        if issue is None:
            try:
                created = client.create(IssueDraft(title=record.spec.title, description=desired))
            except TransportError as exc:
                self.logger.log_error(
                    "creating issue failed",
                    error=str(exc),
                    record=key,
                    category=classify_error(exc).category,
                )
                return None, exc
            self.logger.log_issue_action("create", key, created.number)
            return created, None

        if issue.is_closed:
            # A closed issue is an authoritative external decision; leave it alone.
            return issue, None
        if issue.description == desired:
            return issue, None

        try:
            edited = client.edit(issue.number, desired)
        except TransportError as exc:
            self.logger.log_error(
                "editing issue failed",
                error=str(exc),
                record=key,
                issue_number=issue.number,
                category=classify_error(exc).category,
            )
            return issue, exc
        self.logger.log_issue_action("edit", key, issue.number)
        return edited or replace(issue, description=desired), None

    def _write_status(self, record: DeclaredRecord, issue: Issue) -> None:
        observed = RecordStatus(state=issue.state, last_update_timestamp=issue.last_update_timestamp)
        if record.status == observed:
            return
        self.store.patch_status(record.key, observed, resource_version=record.resource_version)
        self.logger.debug(
            "status updated", record=record.key, state=issue.state, issue_number=issue.number
        )


__all__ = ["Reconciler", "ReconcileResult"]
