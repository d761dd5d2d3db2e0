from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from cookimport.core.diagnostics import emit_diagnostic
from cookimport.core.events import DiagnosticEvent
from cookimport.core.errors import ResourceApiError
from cookimport.core.logging import get_logger

if TYPE_CHECKING:
    from cookimport.core.resource_api import ResourceApi

_LOGGER = get_logger(__name__)

HTTP_CONFLICT = 409


class LaunchKind(StrEnum):
    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class LaunchOutcome:
    kind: LaunchKind
    owner_id: str
    reason: str | None = None

    @property
    def should_poll(self) -> bool:
        return self.kind in {LaunchKind.STARTED, LaunchKind.ALREADY_RUNNING}


def _duration_ms(t0: float, t1: float) -> int:
    ms = int((t1 - t0) * 1000.0)
    return 0 if ms < 0 else ms


class JobLauncher:
    """Issue one start-job request and classify the answer.

    A 409 means a job is already running for the owner (e.g. a duplicate start
    after a page reload) and is reported as ALREADY_RUNNING, not as an error.
    The launcher keeps no state between calls; single-flight is the caller's job.
    """

    def __init__(self, api: ResourceApi) -> None:
        self._api = api

    async def start(self, owner_id: str) -> LaunchOutcome:
        t0 = time.monotonic()
        try:
            code = await self._api.start_job(owner_id)
        except ResourceApiError as e:
            if e.status_code == HTTP_CONFLICT:
                outcome = LaunchOutcome(LaunchKind.ALREADY_RUNNING, owner_id)
                _LOGGER.info(f"job already running: owner_id={owner_id}; attaching poller")
            else:
                outcome = LaunchOutcome(LaunchKind.REJECTED, owner_id, reason=e.message)
                _LOGGER.warning(
                    f"job launch rejected: owner_id={owner_id} "
                    f"status_code={e.status_code} reason={e.message}"
                )
        else:
            outcome = LaunchOutcome(LaunchKind.STARTED, owner_id)
            _LOGGER.info(f"job started: owner_id={owner_id} status_code={code}")

        emit_diagnostic(
            DiagnosticEvent.JOB_LAUNCH,
            {
                "owner_id": owner_id,
                "outcome": outcome.kind.value,
                "reason": outcome.reason,
                "duration_ms": _duration_ms(t0, time.monotonic()),
            },
        )
        return outcome
