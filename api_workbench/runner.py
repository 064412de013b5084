"""Runners - Execute single test cases and whole collections.

CaseRunner is the one pipeline every dispatch goes through:
dispatch -> normalize -> evaluate -> workspace update -> persist.
BatchRunner loops it over a collection, strictly one case at a time, and
keeps going when a case fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from typing import Any, Callable, Protocol

import structlog

from api_workbench.dispatcher import Dispatcher, TransportError
from api_workbench.evaluator import Verdict, judge, record_result
from api_workbench.models import RequestSpec, ResponseRecord, TestCase
from api_workbench.normalizer import normalize, transport_failure_record
from api_workbench.workspace import Workspace, WorkspaceError

logger = structlog.get_logger(__name__)


class ResultStore(Protocol):
    """Where recorded results are persisted (the backend in production)."""

    def save_result(self, case: TestCase) -> None: ...


class OperationState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SETTLED = "settled"


class BatchStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class CaseOutcome:
    """Result of running one case: the updated case, its record and verdict.

    error is set when something other than the transport went wrong
    (evaluation, persistence or a progress callback). The recorded result is
    kept regardless.
    """

    case: TestCase
    record: ResponseRecord
    verdict: Verdict
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.verdict.passed


@dataclass
class BatchReport:
    collection_id: str
    status: BatchStatus = BatchStatus.COMPLETED
    outcomes: list[CaseOutcome] = field(default_factory=list)

    @property
    def passed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.passed)

    @property
    def failed_count(self) -> int:
        return len(self.outcomes) - self.passed_count

    @property
    def errors(self) -> list[CaseOutcome]:
        return [o for o in self.outcomes if o.error is not None]

    @property
    def summary(self) -> str:
        counts = f"{self.passed_count} passed, {self.failed_count} failed"
        if self.status == BatchStatus.COMPLETED:
            return f"All tests completed: {counts}"
        if self.status == BatchStatus.CANCELLED:
            return f"Test run cancelled: {counts}"
        return f"Test run finished with errors: {counts}"


class CaseRunner:
    """Runs single requests and test cases.

    Usage:
        runner = CaseRunner(dispatcher, workspace, store=backend)
        record = runner.send(spec)          # plain request
        outcome = runner.run_case(case)     # test case, result recorded
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        workspace: Workspace | None = None,
        store: ResultStore | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._workspace = workspace
        self._store = store

    def send(self, spec: RequestSpec) -> ResponseRecord:
        """Dispatch spec and normalize the outcome. Transport errors become records."""
        try:
            outcome = self._dispatcher.dispatch(spec)
        except TransportError as e:
            return normalize(e)
        return normalize(outcome)

    def execute(self, case: TestCase) -> CaseOutcome:
        """Dispatch a case, record its result, and update the workspace.

        Errors other than transport failures are converted into a failed
        record for this case; they never propagate.

        Raises:
            CaseBusyError: If the case already has a dispatch in flight.
        """
        if self._workspace is None:
            return self._execute(case)
        with self._workspace.dispatching(case.id):
            outcome = self._execute(case)
            try:
                self._workspace.update_case(outcome.case)
            except WorkspaceError:
                # Deleted while in flight; nothing to update
                logger.info("run.case_removed", case_id=case.id)
        return outcome

    def _execute(self, case: TestCase) -> CaseOutcome:
        error: str | None = None
        try:
            record = self.send(case)
            updated = record_result(case, record)
        except Exception as e:
            logger.error(
                "run.case_error",
                case_id=case.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            error = f"{type(e).__name__}: {e}"
            record = transport_failure_record()
            updated = record_result(case, record)

        verdict = judge(updated, record)
        logger.info(
            "run.case_completed",
            case_id=case.id,
            status=record.status,
            passed=verdict.passed,
            time_ms=round(record.time, 2),
        )
        return CaseOutcome(case=updated, record=record, verdict=verdict, error=error)

    def persist(self, outcome: CaseOutcome) -> None:
        """Write the recorded result to the store, if one is configured."""
        if self._store is not None:
            self._store.save_result(outcome.case)

    def run_case(self, case: TestCase) -> CaseOutcome:
        """Execute then persist. Store failures propagate to the caller."""
        outcome = self.execute(case)
        self.persist(outcome)
        return outcome


class BatchRunner:
    """Runs every test case of a collection sequentially.

    Usage:
        batch = BatchRunner(case_runner, workspace, on_case_done=print)
        report = batch.run_all(collection_id)

    Cases run in stored order, one request in flight at a time. Each case's
    result is recorded and persisted before the next case starts. A failing
    case never stops the loop.
    """

    def __init__(
        self,
        case_runner: CaseRunner,
        workspace: Workspace,
        on_case_start: Callable[[TestCase], None] | None = None,
        on_case_done: Callable[[CaseOutcome], None] | None = None,
    ) -> None:
        self._case_runner = case_runner
        self._workspace = workspace
        self._on_case_start = on_case_start
        self._on_case_done = on_case_done
        self._cancel = Event()
        self.state = OperationState.PENDING

    def cancel(self) -> None:
        """Stop after the case currently in flight. Recorded results are kept."""
        self._cancel.set()

    def run_all(self, collection_id: str) -> BatchReport:
        """Run all cases in the collection.

        Raises:
            WorkspaceError: If the collection does not exist.
        """
        collection = self._workspace.get_collection(collection_id)
        case_ids = [case.id for case in collection.test_cases]
        report = BatchReport(collection_id=collection_id)
        had_error = False

        self._cancel.clear()
        self.state = OperationState.RUNNING
        logger.info("batch.started", collection_id=collection_id, cases=len(case_ids))

        try:
            for case_id in case_ids:
                if self._cancel.is_set():
                    report.status = BatchStatus.CANCELLED
                    break

                try:
                    case = self._workspace.find_case(case_id)
                except WorkspaceError:
                    logger.info("batch.case_skipped", case_id=case_id, reason="removed")
                    continue

                self._workspace.select(case.id)
                start_error = self._notify(self._on_case_start, case, case.id)

                outcome = self._run_one(case)
                report.outcomes.append(outcome)

                done_error = self._notify(self._on_case_done, outcome, case.id)
                if outcome.error is None:
                    outcome.error = start_error or done_error
                if outcome.error is not None:
                    had_error = True
        finally:
            self.state = OperationState.SETTLED

        if report.status != BatchStatus.CANCELLED and had_error:
            report.status = BatchStatus.FAILED

        logger.info(
            "batch.completed",
            collection_id=collection_id,
            status=report.status.value,
            passed=report.passed_count,
            failed=report.failed_count,
        )
        return report

    def _notify(self, callback: Callable[[Any], None] | None, arg: Any, case_id: str) -> str | None:
        """Invoke a progress callback. Returns an error string if it raised."""
        if callback is None:
            return None
        try:
            callback(arg)
        except Exception as e:
            logger.error(
                "batch.callback_error",
                case_id=case_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return f"{type(e).__name__}: {e}"
        return None

    def _run_one(self, case: TestCase) -> CaseOutcome:
        try:
            outcome = self._case_runner.execute(case)
        except Exception as e:
            # The case was not dispatched (e.g. already in flight elsewhere)
            logger.error("batch.case_error", case_id=case.id, error=str(e))
            record = transport_failure_record()
            return CaseOutcome(
                case=case,
                record=record,
                verdict=judge(case, record),
                error=f"{type(e).__name__}: {e}",
            )

        try:
            self._case_runner.persist(outcome)
        except Exception as e:
            logger.error("batch.persist_error", case_id=case.id, error=str(e))
            outcome.error = f"{type(e).__name__}: {e}"
        return outcome
