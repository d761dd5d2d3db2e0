from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from cookimport.core.errors import MalformedResponseError

# Results below this confidence are flagged for review when the server omits the flag.
REVIEW_CONFIDENCE_THRESHOLD = 0.80


class JobStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_success(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.COMPLETED_WITH_ERRORS}


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.COMPLETED_WITH_ERRORS, JobStatus.FAILED})


def _opt_str(data: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return str(value)
    return None


def _opt_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedResponseError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"'{key}' must be an integer, got {value!r}") from e


def _opt_float(data: dict[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedResponseError(f"'{key}' must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"'{key}' must be a number, got {value!r}") from e


@dataclass(frozen=True, slots=True)
class JobProgress:
    current_page: int = 0
    total_pages: int = 0

    @property
    def fraction(self) -> float:
        if self.total_pages <= 0:
            return 0.0
        return min(1.0, max(0.0, self.current_page / self.total_pages))


@dataclass(frozen=True, slots=True)
class JobResultItem:
    """One record extracted by the OCR job. Every field may be missing."""

    name: str | None = None
    page_number: int | None = None
    ingredient: str | None = None
    confidence: float | None = None
    needs_review: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobResultItem:
        if not isinstance(data, dict):
            raise MalformedResponseError(f"result item must be an object, got {type(data).__name__}")
        confidence = _opt_float(data, "confidence")
        needs_review = data.get("needsReview")
        if needs_review is None and confidence is not None:
            needs_review = confidence < REVIEW_CONFIDENCE_THRESHOLD
        return cls(
            name=_opt_str(data, "recipeName", "name"),
            page_number=_opt_int(data, "pageNumber"),
            ingredient=_opt_str(data, "ingredient"),
            confidence=confidence,
            needs_review=None if needs_review is None else bool(needs_review),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipeName": self.name,
            "pageNumber": self.page_number,
            "ingredient": self.ingredient,
            "confidence": self.confidence,
            "needsReview": self.needs_review,
        }


@dataclass(frozen=True, slots=True)
class JobHandle:
    """Snapshot of one job, as reported by a single status read.

    The job id is the owner resource id: one job per owner at any time.
    A handle is never patched; each successful read produces a new one.
    """

    job_id: str
    status: JobStatus = JobStatus.PENDING
    progress: JobProgress = field(default_factory=JobProgress)
    error_message: str | None = None
    results: tuple[JobResultItem, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_payload(cls, job_id: str, payload: Any) -> JobHandle:
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"status payload must be an object, got {type(payload).__name__}"
            )

        raw_status = payload.get("status")
        try:
            status = JobStatus(str(raw_status))
        except ValueError as e:
            raise MalformedResponseError(f"unknown job status: {raw_status!r}") from e

        current = _opt_int(payload, "currentPage") or 0
        total = _opt_int(payload, "totalPages") or 0
        if current < 0 or total < 0:
            raise MalformedResponseError(f"negative progress: {current}/{total}")

        raw_results = payload.get("results") or []
        if not isinstance(raw_results, list):
            raise MalformedResponseError("'results' must be a list")

        error_message = None
        if status in {JobStatus.FAILED, JobStatus.COMPLETED_WITH_ERRORS}:
            error_message = _opt_str(payload, "errorMessage")

        return cls(
            job_id=job_id,
            status=status,
            progress=JobProgress(current_page=current, total_pages=total),
            error_message=error_message,
            results=tuple(JobResultItem.from_dict(r) for r in raw_results),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "currentPage": self.progress.current_page,
            "totalPages": self.progress.total_pages,
            "errorMessage": self.error_message,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """Terminal event of one polling session."""

    success: bool
    status: JobStatus
    results: tuple[JobResultItem, ...] = ()
    error_message: str | None = None
    # True when polling hit its attempt/duration bound, not a server verdict.
    gave_up: bool = False

    @classmethod
    def succeeded(cls, handle: JobHandle) -> JobOutcome:
        return cls(
            success=True,
            status=handle.status,
            results=handle.results,
            error_message=handle.error_message,
        )

    @classmethod
    def failed(
        cls,
        message: str,
        status: JobStatus = JobStatus.FAILED,
        *,
        gave_up: bool = False,
    ) -> JobOutcome:
        return cls(success=False, status=status, error_message=message, gave_up=gave_up)
