"""
Audit job runner - drives queued audit runs through the pipeline.

Flow for one run:
1. Claim: atomically move the oldest queued run to 'running'
2. Introspect: open the target read-only and capture a Snapshot
3. Infer: derive the semantic model
4. Audit: optional problem-statement investigation, then every module
5. Draft fixes: collaborator plan merged behind the heuristic fixes
6. Verify: diff against the baseline when the run has a parent
7. Persist: write the result and mark the run completed

Introspection, auditing and fix drafting each run under their own timeout,
nested inside the run timeout. Any failure or timeout marks the run failed
with the reason as its last log line; nothing is retried.
"""
from __future__ import annotations

import logging
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from ..audit.budget import BudgetConfig
from ..audit.issues import FixPlan, Issue
from ..audit.runner import run_audit
from ..config import Settings, get_settings
from ..db.base import get_session_local
from ..db.models import AuditRunModel
from ..db.services import AuditResultService, AuditRunService, ConnectionService
from ..enums import FixStatus
from ..fixes.aggregator import aggregate_fix_plan
from ..fixes.verification import annotate_fix_plan, annotate_fixes, compare_audit_results
from ..introspection.inspector import introspect
from ..introspection.models import Snapshot
from ..llm.client import CompletionClient, CompletionError, HttpCompletionClient
from ..llm.fix_planner import draft_fix_plan
from ..llm.investigator import run_proactive_investigation
from ..modeling.inferrer import infer_model
from ..modeling.models import InferredModel
from ..target import (
    CredentialResolver,
    QueryExecutor,
    interrupt_connection,
    open_target,
    plaintext_credential,
)

logger = logging.getLogger(__name__)

# How long an abandoned stage gets to unwind before its connection is closed
ABANDON_GRACE_SECONDS = 5.0


class StageTimeoutError(Exception):
    """
    Raised when a pipeline stage or the whole run exceeds its time budget.

    Attributes:
        code: STAGE_TIMEOUT or RUN_TIMEOUT
        message: Human-readable error description
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "error": "stage_timeout",
            "code": self.code,
            "message": self.message,
        }


class RunSetupError(Exception):
    """Raised when a claimed run cannot start (missing connection)."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class ProgressTracker:
    """Writes progress and log lines for one run.

    Each update uses its own short-lived session and commits before
    returning, so pollers see it immediately. After close(), updates from
    stage threads that outlived their timeout are dropped.
    """

    def __init__(self, session_factory: sessionmaker, run_id: str):
        self.session_factory = session_factory
        self.run_id = run_id
        self._lock = threading.Lock()
        self._closed = False

    def update(self, progress: int, message: str) -> None:
        with self._lock:
            if self._closed:
                return
            db = self.session_factory()
            try:
                AuditRunService(db).append_log(self.run_id, message, progress)
            finally:
                db.close()
        logger.info(f"Run {self.run_id} [{progress}%] {message}")

    def close(self) -> None:
        with self._lock:
            self._closed = True


class _Deadline:
    """Run-level wall clock shared by every stage of one run."""

    def __init__(self, seconds: float):
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return self.expires_at - time.monotonic()


def run_stage(
    name: str,
    fn: Callable[[], Any],
    stage_timeout: float,
    deadline: _Deadline,
    on_timeout: Optional[Callable[[], None]] = None,
) -> Any:
    """Run ``fn`` in a helper thread and wait at most the smaller budget.

    Args:
        name: Stage label used in the timeout message
        fn: Work to do
        stage_timeout: Seconds allotted to this stage
        deadline: Remaining run budget
        on_timeout: Called on timeout to abort the stage's I/O

    Raises:
        StageTimeoutError: When either budget runs out first
    """
    remaining = deadline.remaining()
    if remaining <= 0:
        raise StageTimeoutError("RUN_TIMEOUT", f"Run timed out before {name}")
    run_limited = remaining < stage_timeout
    timeout = remaining if run_limited else stage_timeout

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"audit-{name}")
    future = pool.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        if on_timeout is not None:
            on_timeout()
        wait([future], timeout=ABANDON_GRACE_SECONDS)
        if run_limited:
            raise StageTimeoutError("RUN_TIMEOUT", f"Run timed out during {name}")
        raise StageTimeoutError(
            "STAGE_TIMEOUT", f"{name.capitalize()} timed out after {int(stage_timeout)} seconds"
        )
    finally:
        pool.shutdown(wait=False)


def module_progress(completed: int, total: int) -> int:
    """Map module completion onto the 55-80 band of run progress."""
    if total <= 0:
        return 55
    return 55 + (completed * 25) // total


class AuditJobRunner:
    """Single-flight consumer of the audit run queue.

    trigger() may be called from any thread at any time. At most one call
    drains the queue; a call made while another is draining makes that
    drain re-check the queue before it returns.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        settings: Optional[Settings] = None,
        completion_client_factory: Optional[Callable[[], CompletionClient]] = None,
        credential_resolver: CredentialResolver = plaintext_credential,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_session_local()
        self.completion_client_factory = completion_client_factory or (
            lambda: HttpCompletionClient.from_settings(self.settings)
        )
        self.credential_resolver = credential_resolver
        self.budget = BudgetConfig.from_settings(self.settings)

        self._drain_lock = threading.Lock()
        self._retrigger = threading.Event()

    def trigger(self) -> int:
        """Drain the queue unless another caller already is.

        Returns:
            Number of runs this call processed
        """
        processed = 0
        while True:
            if not self._drain_lock.acquire(blocking=False):
                self._retrigger.set()
                return processed
            try:
                self._retrigger.clear()
                processed += self.process_queue()
            finally:
                self._drain_lock.release()
            if not self._retrigger.is_set():
                return processed

    def trigger_in_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.trigger, name="audit-trigger", daemon=True)
        thread.start()
        return thread

    def process_queue(self) -> int:
        """Process queued runs oldest first until none is left."""
        processed = 0
        while True:
            db = self.session_factory()
            try:
                run = AuditRunService(db).claim_next()
                run_id = run.id if run is not None else None
            finally:
                db.close()

            if run_id is None:
                return processed

            logger.info(f"Claimed audit run {run_id}")
            self.process_run(run_id)
            processed += 1

    def process_run(self, run_id: str) -> None:
        """Drive one claimed run to a terminal state. Never raises."""
        tracker = ProgressTracker(self.session_factory, run_id)
        try:
            self._execute(run_id, tracker)
        except Exception as e:
            tracker.close()
            logger.exception(f"Audit run {run_id} failed")
            self._mark_failed(run_id, str(e) or e.__class__.__name__)
        else:
            tracker.close()

    def _mark_failed(self, run_id: str, error: str) -> None:
        db = self.session_factory()
        try:
            AuditRunService(db).mark_failed(run_id, error)
        finally:
            db.close()

    def _load_run(self, run_id: str) -> Tuple[AuditRunModel, str]:
        db = self.session_factory()
        try:
            run = AuditRunService(db).get_run(run_id)
            if run is None:
                raise RunSetupError("RUN_NOT_FOUND", f"Audit run {run_id} not found")
            connection = ConnectionService(db).get_connection(run.connection_id)
            if connection is None:
                raise RunSetupError(
                    "CONNECTION_NOT_FOUND", f"Connection {run.connection_id} not found"
                )
            db.expunge(run)
            return run, connection.encrypted_credential
        finally:
            db.close()

    def _execute(self, run_id: str, tracker: ProgressTracker) -> None:
        settings = self.settings
        deadline = _Deadline(settings.run_timeout_seconds)
        run, credential = self._load_run(run_id)

        tracker.update(5, "Starting audit...")
        dsn = self.credential_resolver(credential)

        with self.completion_client_factory() as client:
            snapshot, model, issues, investigation_log = self._audit_target(
                run, dsn, client, tracker, deadline
            )

            tracker.update(82, "Generating fix plan...")
            external_plan = run_stage(
                "fix generation",
                lambda: draft_fix_plan(issues, client, settings.max_issues_for_ai),
                settings.fix_generation_timeout_seconds,
                deadline,
                on_timeout=client.close,
            )
        fix_plan = aggregate_fix_plan(issues, external_plan)

        verification = None
        if run.parent_run_id:
            fix_plan, verification = self._verify(run, issues, fix_plan, tracker)

        tracker.update(95, "Saving results...")
        db = self.session_factory()
        try:
            AuditResultService(db).save_result(
                run_id=run.id,
                snapshot=snapshot,
                inferred_model=model,
                issues=issues,
                fix_plan=fix_plan,
                investigation_log=investigation_log,
                verification=verification,
            )
        finally:
            db.close()

        tracker.update(100, "Audit completed successfully")
        db = self.session_factory()
        try:
            AuditRunService(db).mark_completed(run.id)
        finally:
            db.close()
        logger.info(f"Audit run {run.id} completed with {len(issues)} issues")

    def _audit_target(
        self,
        run: AuditRunModel,
        dsn: str,
        client: CompletionClient,
        tracker: ProgressTracker,
        deadline: _Deadline,
    ) -> Tuple[Snapshot, InferredModel, List[Issue], Optional[List[Dict[str, Any]]]]:
        """Every stage that needs the target connection, inside one scope."""
        settings = self.settings
        stop_event = threading.Event()

        tracker.update(10, "Introspecting database schema...")
        with open_target(dsn, settings.statement_timeout_ms) as connection:

            def abort() -> None:
                stop_event.set()
                interrupt_connection(connection)

            snapshot = run_stage(
                "introspection",
                lambda: introspect(connection, settings.statement_timeout_ms),
                settings.introspection_timeout_seconds,
                deadline,
                on_timeout=abort,
            )
            tracker.update(30, f"Found {len(snapshot.tables)} tables")

            tracker.update(35, "Inferring entity model...")
            model = infer_model(snapshot)
            tracker.update(50, f"Identified {len(model.entities)} entities")

            tracker.update(55, "Running audit modules...")
            executor = QueryExecutor(connection)

            def audit() -> Tuple[List[Issue], Optional[List[Dict[str, Any]]]]:
                investigated: List[Issue] = []
                investigation_log = None
                if run.problem_statement:
                    investigated, investigation_log = self._investigate(
                        run.problem_statement, snapshot, model, executor, client
                    )
                found = run_audit(
                    snapshot,
                    model,
                    executor,
                    self.budget,
                    on_progress=lambda done, total, name: tracker.update(
                        module_progress(done, total),
                        f"Running audit module: {name} ({done + 1}/{total})",
                    ),
                    stop_event=stop_event,
                )
                return found + investigated, investigation_log

            issues, investigation_log = run_stage(
                "module execution",
                audit,
                settings.module_timeout_seconds,
                deadline,
                on_timeout=abort,
            )

        tracker.update(80, f"Found {len(issues)} issues")
        return snapshot, model, issues, investigation_log

    def _investigate(
        self,
        problem: str,
        snapshot: Snapshot,
        model: InferredModel,
        executor: QueryExecutor,
        client: CompletionClient,
    ) -> Tuple[List[Issue], Optional[List[Dict[str, Any]]]]:
        try:
            result = run_proactive_investigation(
                client,
                problem,
                snapshot,
                model,
                executor,
                row_limit=self.settings.investigation_row_limit,
            )
        except CompletionError as e:
            logger.warning(f"Problem statement could not be analyzed: {e.code}")
            return [], [{"step": "error", "error": str(e)}]
        logger.info(f"Investigation confirmed {len(result.issues)} hypotheses")
        return result.issues, result.log

    def _verify(
        self,
        run: AuditRunModel,
        issues: List[Issue],
        fix_plan: FixPlan,
        tracker: ProgressTracker,
    ) -> Tuple[FixPlan, Optional[Dict[str, Any]]]:
        """Diff against the parent run and drop fixes that are already resolved."""
        tracker.update(92, "Comparing with baseline audit...")
        db = self.session_factory()
        try:
            baseline = AuditResultService(db).get_result_for_run(run.parent_run_id)
            if baseline is None:
                logger.warning(f"Baseline run {run.parent_run_id} has no result")
                return fix_plan, None
            try:
                baseline_issues = AuditResultService.load_issues(baseline)
            except ValidationError:
                logger.warning(f"Baseline result for run {run.parent_run_id} is unreadable")
                return fix_plan, None
        finally:
            db.close()

        comparison = compare_audit_results(baseline_issues, issues)
        resolved_fixes = [
            fix
            for fix in annotate_fixes(fix_plan.migrations + fix_plan.backfills, comparison)
            if fix.status == FixStatus.RESOLVED
        ]
        verification = comparison.summary()
        verification["baseline_run_id"] = run.parent_run_id
        verification["resolved_fixes"] = [f.model_dump(mode="json") for f in resolved_fixes]

        tracker.update(
            93,
            f"Verification complete: {len(comparison.resolved)} resolved, "
            f"{len(comparison.remaining)} remaining, {len(comparison.new)} new "
            f"({comparison.progress_percent}% progress)",
        )
        return annotate_fix_plan(fix_plan, comparison), verification


class _PollingWorker:
    """Keeps triggering the runner until stopped by a signal."""

    def __init__(self, runner: AuditJobRunner, poll_interval: int):
        self.runner = runner
        self.poll_interval = poll_interval
        self.running = False

    def start(self) -> None:
        self.running = True
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        logger.info(f"Worker polling every {self.poll_interval}s")
        try:
            while self.running:
                try:
                    self.runner.trigger()
                except Exception as e:
                    logger.exception(f"Error in worker loop: {e}")
                time.sleep(self.poll_interval)
        finally:
            logger.info("Worker stopped")

    def _signal_handler(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
    )


def run_worker(poll_interval: Optional[int] = None) -> int:
    """Drain the audit queue once, or keep polling when an interval is given.

    Returns:
        Runs processed (single drain only)
    """
    configure_logging()
    runner = AuditJobRunner()
    if poll_interval:
        _PollingWorker(runner, poll_interval).start()
        return 0
    return runner.trigger()
