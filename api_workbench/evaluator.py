"""Evaluator - Judges a test case's outcome against its expectation."""

from __future__ import annotations

from dataclasses import dataclass

from api_workbench.models import ResponseRecord, ResultHeader, TestCase


def is_success_status(status: int) -> bool:
    """2xx is success. Status 0 (no response) never is."""
    return 200 <= status < 300


def evaluate(expected: bool, actual_status: int) -> bool:
    """Whether the observed success/failure matches the declared expectation.

    expected=False passes on a non-2xx status and fails on an unexpected 2xx.
    """
    return expected == is_success_status(actual_status)


def actual_success(record: ResponseRecord) -> bool:
    if record.is_transport_failure:
        return False
    return is_success_status(record.status)


def format_time_taken(elapsed_ms: float) -> str:
    return f"{elapsed_ms:.2f}"


@dataclass(frozen=True)
class Verdict:
    """Pass/fail judgement for one dispatch of one case."""

    case_id: str
    expected: bool
    actual_success: bool
    status: int

    @property
    def passed(self) -> bool:
        return self.expected == self.actual_success


def judge(case: TestCase, record: ResponseRecord) -> Verdict:
    return Verdict(
        case_id=case.id,
        expected=case.expected_status,
        actual_success=actual_success(record),
        status=record.status,
    )


def record_result(case: TestCase, record: ResponseRecord) -> TestCase:
    """Return a copy of case with every result field taken from record.

    result_status is the observed success, not the verdict; the verdict is
    derived from it and expected_status when needed (TestCase.passed).
    """
    return case.model_copy(
        update={
            "result_status": actual_success(record),
            "result_headers": [
                ResultHeader(key=key, value=value) for key, value in record.headers.items()
            ],
            "result_body": record.data,
            "time_taken": format_time_taken(record.time),
        }
    )
