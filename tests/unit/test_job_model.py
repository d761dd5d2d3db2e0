from __future__ import annotations

import pytest

from cookimport.core.errors import MalformedResponseError
from cookimport.core.jobs.model import (
    JobHandle,
    JobOutcome,
    JobProgress,
    JobResultItem,
    JobStatus,
)


def test_terminal_statuses() -> None:
    assert {s for s in JobStatus if s.is_terminal} == {
        JobStatus.COMPLETED,
        JobStatus.COMPLETED_WITH_ERRORS,
        JobStatus.FAILED,
    }
    assert JobStatus.COMPLETED_WITH_ERRORS.is_success
    assert not JobStatus.FAILED.is_success
    assert not JobStatus.IN_PROGRESS.is_terminal


def test_handle_from_payload() -> None:
    handle = JobHandle.from_payload(
        "c1",
        {
            "status": "IN_PROGRESS",
            "currentPage": 2,
            "totalPages": 5,
            "results": [{"recipeName": "Soup", "pageNumber": 12, "ingredient": "leek"}],
            "errorMessage": None,
        },
    )

    assert handle.job_id == "c1"
    assert handle.status == JobStatus.IN_PROGRESS
    assert handle.progress == JobProgress(current_page=2, total_pages=5)
    assert handle.results[0].name == "Soup"
    assert not handle.is_terminal


def test_handle_missing_fields_default_instead_of_leaking() -> None:
    handle = JobHandle.from_payload("c1", {"status": "COMPLETED"})

    assert handle.progress == JobProgress(0, 0)
    assert handle.results == ()
    assert handle.error_message is None


def test_error_message_only_kept_for_failure_statuses() -> None:
    running = JobHandle.from_payload("c1", {"status": "IN_PROGRESS", "errorMessage": "stale"})
    failed = JobHandle.from_payload("c1", {"status": "FAILED", "errorMessage": "timeout"})
    partial = JobHandle.from_payload(
        "c1", {"status": "COMPLETED_WITH_ERRORS", "errorMessage": "page 3 unreadable"}
    )

    assert running.error_message is None
    assert failed.error_message == "timeout"
    assert partial.error_message == "page 3 unreadable"


@pytest.mark.parametrize(
    "payload",
    [
        "not an object",
        {"status": "DONE"},
        {},
        {"status": "IN_PROGRESS", "currentPage": "two"},
        {"status": "IN_PROGRESS", "currentPage": -1},
        {"status": "COMPLETED", "results": {"recipeName": "x"}},
        {"status": "COMPLETED", "results": ["x"]},
    ],
)
def test_malformed_payloads_raise(payload) -> None:
    with pytest.raises(MalformedResponseError):
        JobHandle.from_payload("c1", payload)


def test_result_item_needs_review_derived_from_confidence() -> None:
    low = JobResultItem.from_dict({"recipeName": "A", "confidence": 0.5})
    high = JobResultItem.from_dict({"recipeName": "B", "confidence": 0.9})
    explicit = JobResultItem.from_dict({"confidence": 0.9, "needsReview": True})
    unknown = JobResultItem.from_dict({})

    assert low.needs_review is True
    assert high.needs_review is False
    assert explicit.needs_review is True
    assert unknown.needs_review is None
    assert unknown.name is None


def test_result_item_accepts_plain_name_key() -> None:
    item = JobResultItem.from_dict({"name": "Stew", "pageNumber": "7"})
    assert item.name == "Stew"
    assert item.page_number == 7


def test_progress_fraction() -> None:
    assert JobProgress(0, 0).fraction == 0.0
    assert JobProgress(1, 4).fraction == 0.25
    assert JobProgress(9, 4).fraction == 1.0


def test_outcome_constructors() -> None:
    handle = JobHandle.from_payload(
        "c1", {"status": "COMPLETED", "results": [{"recipeName": "Soup"}]}
    )

    ok = JobOutcome.succeeded(handle)
    bad = JobOutcome.failed("timeout")

    assert ok.success and ok.status == JobStatus.COMPLETED and len(ok.results) == 1
    assert not bad.success and bad.status == JobStatus.FAILED
    assert bad.error_message == "timeout"
    assert bad.gave_up is False
