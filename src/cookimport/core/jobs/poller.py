"""Job status poller.

State machine per job instance:

    IDLE --begin--> POLLING --terminal status / bound exceeded--> SETTLED
    any  --stop---> IDLE

While POLLING, one asyncio task reads the status immediately, then sleeps
`policy.interval` after each read completes before issuing the next one, so
reads never overlap. A read that fails (transport error, malformed body,
unexpected status code) is logged and retried on the next tick; it never
changes the tracked handle and never ends polling.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from cookimport.core.config import PollingPolicy
from cookimport.core.diagnostics import emit_diagnostic
from cookimport.core.errors import JobError, ResourceApiError
from cookimport.core.events import DiagnosticEvent
from cookimport.core.jobs.model import JobHandle, JobOutcome, JobStatus
from cookimport.core.logging import get_logger

if TYPE_CHECKING:
    from cookimport.core.resource_api import ResourceApi

_LOGGER = get_logger(__name__)

TerminalCallback = Callable[[JobOutcome], None]


class PollerState(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    SETTLED = "settled"


@dataclass(eq=False)
class _PollSession:
    owner_id: str
    started_at: float
    outcome: asyncio.Future[JobOutcome | None]
    on_terminal: TerminalCallback | None = None
    task: asyncio.Task[None] | None = None
    attempts: int = 0
    reading: bool = False
    stopped: bool = False


class JobStatusPoller:
    def __init__(
        self,
        api: ResourceApi,
        policy: PollingPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._read_status: Callable[[str], Awaitable[JobHandle]] = api.get_job_status
        self._policy = policy or PollingPolicy()
        self._clock = clock

        self._state = PollerState.IDLE
        self._session: _PollSession | None = None
        self._handle: JobHandle | None = None
        self._transient_failures = 0
        self._last_error: str | None = None

    @property
    def policy(self) -> PollingPolicy:
        return self._policy

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def owner_id(self) -> str | None:
        return self._session.owner_id if self._session is not None else None

    @property
    def handle(self) -> JobHandle | None:
        """Last successfully read snapshot of the job."""
        return self._handle

    @property
    def attempts(self) -> int:
        return self._session.attempts if self._session is not None else 0

    @property
    def transient_failures(self) -> int:
        """Consecutive failed reads since the last successful one."""
        return self._transient_failures

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def outcome(self) -> JobOutcome | None:
        if self._session is None or not self._session.outcome.done():
            return None
        return self._session.outcome.result()

    def begin(self, owner_id: str, on_terminal: TerminalCallback | None = None) -> None:
        """Start polling the job of `owner_id`.

        No-op while already polling the same owner. Polling a different owner
        stops the current session first. Must be called from a running loop.
        """
        if not owner_id:
            raise JobError("Cannot poll a job without an owner id", "Create the cookbook first")
        if self._state == PollerState.POLLING and self.owner_id == owner_id:
            _LOGGER.debug(f"poller already running for owner_id={owner_id}; begin ignored")
            return

        self.stop()

        loop = asyncio.get_running_loop()
        session = _PollSession(
            owner_id=owner_id,
            started_at=self._clock(),
            outcome=loop.create_future(),
            on_terminal=on_terminal,
        )
        self._session = session
        self._handle = None
        self._transient_failures = 0
        self._last_error = None
        self._state = PollerState.POLLING

        session.task = loop.create_task(self._run(session), name=f"job-poller:{owner_id}")
        _LOGGER.verbose(
            f"polling started: owner_id={owner_id} interval={self._policy.interval}s"
        )

    def stop(self) -> None:
        """Stop polling. Idempotent; safe from any state.

        A read already in flight is allowed to finish but its result is dropped.
        """
        session = self._session
        if session is not None and not session.stopped:
            session.stopped = True
            if session.task is not None and not session.task.done() and not session.reading:
                session.task.cancel()
            if not session.outcome.done():
                session.outcome.set_result(None)
            session.on_terminal = None
            _LOGGER.verbose(f"polling stopped: owner_id={session.owner_id}")
        self._state = PollerState.IDLE

    def clear(self) -> None:
        """Stop polling and forget the job: handle, outcome and failure counters.

        Afterwards the poller reads as if begin() had never been called.
        """
        self.stop()
        self._session = None
        self._handle = None
        self._transient_failures = 0
        self._last_error = None

    async def wait(self) -> JobOutcome | None:
        """Wait for the current session to settle.

        Returns None when there is no session or it was stopped first.
        """
        session = self._session
        if session is None:
            return None
        return await asyncio.shield(session.outcome)

    async def _run(self, session: _PollSession) -> None:
        while True:
            session.attempts += 1
            session.reading = True
            handle: JobHandle | None = None
            failure: ResourceApiError | None = None
            try:
                handle = await self._read_status(session.owner_id)
            except ResourceApiError as e:
                failure = e
            finally:
                session.reading = False

            if session.stopped:
                _LOGGER.debug(
                    f"discarding status read after stop: owner_id={session.owner_id} "
                    f"attempt={session.attempts}"
                )
                return

            if handle is None:
                self._record_failure(session, failure)
            else:
                self._record_handle(session, handle)
                if handle.is_terminal:
                    if handle.status.is_success:
                        self._settle(session, JobOutcome.succeeded(handle))
                    else:
                        message = handle.error_message or "OCR processing failed"
                        self._settle(session, JobOutcome.failed(message))
                    return

            give_up = self._bound_exceeded(session)
            if give_up is not None:
                status = self._handle.status if self._handle is not None else JobStatus.PENDING
                self._settle(session, JobOutcome.failed(give_up, status=status, gave_up=True))
                return

            await asyncio.sleep(self._policy.interval)

    def _record_handle(self, session: _PollSession, handle: JobHandle) -> None:
        prev = self._handle
        if (
            prev is not None
            and not handle.is_terminal
            and handle.progress.current_page < prev.progress.current_page
        ):
            _LOGGER.debug(
                f"progress went backwards: owner_id={session.owner_id} "
                f"{prev.progress.current_page} -> {handle.progress.current_page}"
            )
        # Replace wholesale; fields of an older read must never survive.
        self._handle = handle
        self._transient_failures = 0
        self._last_error = None
        _LOGGER.verbose(
            f"status read: owner_id={session.owner_id} attempt={session.attempts} "
            f"status={handle.status.value} page={handle.progress.current_page}/"
            f"{handle.progress.total_pages}"
        )
        emit_diagnostic(
            DiagnosticEvent.JOB_POLL,
            {
                "owner_id": session.owner_id,
                "attempt": session.attempts,
                "status": "ok",
                "job_status": handle.status.value,
                "current_page": handle.progress.current_page,
                "total_pages": handle.progress.total_pages,
            },
        )

    def _record_failure(self, session: _PollSession, failure: ResourceApiError | None) -> None:
        self._transient_failures += 1
        self._last_error = failure.message if failure is not None else "unknown read failure"
        _LOGGER.warning(
            f"status read failed (will retry): owner_id={session.owner_id} "
            f"attempt={session.attempts} error={self._last_error}"
        )
        emit_diagnostic(
            DiagnosticEvent.JOB_POLL,
            {
                "owner_id": session.owner_id,
                "attempt": session.attempts,
                "status": "error",
                "error_type": type(failure).__name__,
                "error": self._last_error,
                "consecutive_failures": self._transient_failures,
            },
        )

    def _bound_exceeded(self, session: _PollSession) -> str | None:
        policy = self._policy
        if policy.max_attempts is not None and session.attempts >= policy.max_attempts:
            return f"Job status polling gave up after {session.attempts} attempts"
        if policy.max_duration is not None:
            elapsed = self._clock() - session.started_at
            if elapsed >= policy.max_duration:
                return f"Job status polling gave up after {policy.max_duration:g}s"
        return None

    def _settle(self, session: _PollSession, outcome: JobOutcome) -> None:
        if session.outcome.done():
            return
        self._state = PollerState.SETTLED
        session.outcome.set_result(outcome)

        if outcome.success:
            _LOGGER.info(
                f"job settled: owner_id={session.owner_id} status={outcome.status.value} "
                f"results={len(outcome.results)}"
            )
        else:
            _LOGGER.warning(
                f"job settled: owner_id={session.owner_id} status={outcome.status.value} "
                f"error={outcome.error_message}"
            )
        emit_diagnostic(
            DiagnosticEvent.JOB_SETTLED,
            {
                "owner_id": session.owner_id,
                "success": outcome.success,
                "job_status": outcome.status.value,
                "gave_up": outcome.gave_up,
                "result_count": len(outcome.results),
                "error": outcome.error_message,
                "attempts": session.attempts,
            },
        )

        callback = session.on_terminal
        session.on_terminal = None
        if callback is None:
            return
        try:
            callback(outcome)
        except Exception as e:
            _LOGGER.error(
                f"terminal callback raised: owner_id={session.owner_id} "
                f"{type(e).__name__}: {e}"
            )
