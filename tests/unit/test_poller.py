from __future__ import annotations

import asyncio
import itertools

import pytest

from cookimport.core.config import PollingPolicy
from cookimport.core.errors import JobError
from cookimport.core.jobs.model import JobOutcome, JobProgress, JobStatus
from cookimport.core.jobs.poller import JobStatusPoller, PollerState


async def _settle(poller: JobStatusPoller) -> JobOutcome | None:
    return await asyncio.wait_for(poller.wait(), timeout=2.0)


@pytest.mark.asyncio
async def test_polls_until_completed(server, api, fast_policy) -> None:
    server.script(
        "status",
        server.status("IN_PROGRESS", current=1, total=3),
        server.status("IN_PROGRESS", current=2, total=3),
        server.status("COMPLETED", current=3, total=3, results=server.results(3)),
    )
    poller = JobStatusPoller(api, fast_policy)
    seen: list[JobOutcome] = []

    poller.begin("c1", seen.append)
    assert poller.state == PollerState.POLLING
    outcome = await _settle(poller)

    assert outcome is not None and outcome.success
    assert outcome.status == JobStatus.COMPLETED
    assert len(outcome.results) == 3
    assert seen == [outcome]
    assert poller.state == PollerState.SETTLED
    assert poller.handle is not None and poller.handle.status == JobStatus.COMPLETED
    assert server.count("status") == 3
    assert server.calls("status")[0].url.path == "/api/cookbooks/c1/ocr/results"


@pytest.mark.asyncio
async def test_completed_with_errors_is_success(server, api, fast_policy) -> None:
    server.script(
        "status",
        server.status("COMPLETED_WITH_ERRORS", results=server.results(1), error="page 2 blurry"),
    )
    poller = JobStatusPoller(api, fast_policy)

    poller.begin("c1")
    outcome = await _settle(poller)

    assert outcome is not None and outcome.success
    assert outcome.error_message == "page 2 blurry"


@pytest.mark.asyncio
async def test_failed_status_settles_with_server_message(server, api, fast_policy) -> None:
    server.script("status", server.status("IN_PROGRESS"), server.status("FAILED", error="timeout"))
    poller = JobStatusPoller(api, fast_policy)

    poller.begin("c1")
    outcome = await _settle(poller)

    assert outcome is not None and not outcome.success
    assert outcome.error_message == "timeout"
    assert not outcome.gave_up


@pytest.mark.asyncio
async def test_failed_status_without_message_uses_default(server, api, fast_policy) -> None:
    server.script("status", server.status("FAILED"))
    poller = JobStatusPoller(api, fast_policy)

    poller.begin("c1")
    outcome = await _settle(poller)

    assert outcome is not None
    assert outcome.error_message == "OCR processing failed"


@pytest.mark.asyncio
async def test_terminal_callback_fires_once_and_reads_stop(server, api, fast_policy) -> None:
    server.script("status", server.status("COMPLETED", results=server.results(1)))
    poller = JobStatusPoller(api, fast_policy)
    calls: list[JobOutcome] = []

    poller.begin("c1", calls.append)
    await _settle(poller)
    for _ in range(10):
        await asyncio.sleep(0)

    assert len(calls) == 1
    assert server.count("status") == 1


@pytest.mark.asyncio
async def test_transient_failures_keep_status_and_polling(server, api) -> None:
    server.script(
        "status",
        server.status("IN_PROGRESS", current=1, total=4),
        server.fail("network down"),
        server.reply(200, text="<html>not json</html>"),
        server.reply(503, text="maintenance"),
    )
    poller = JobStatusPoller(api, PollingPolicy(interval=0.0, max_attempts=4))

    poller.begin("c1")
    outcome = await _settle(poller)

    # Only the attempt bound ended polling; the failures themselves did not.
    assert server.count("status") == 4
    assert outcome is not None and outcome.gave_up
    assert poller.handle is not None
    assert poller.handle.status == JobStatus.IN_PROGRESS
    assert poller.handle.progress == JobProgress(1, 4)
    assert poller.transient_failures == 3
    assert poller.last_error == "maintenance"


@pytest.mark.asyncio
async def test_successful_read_clears_failure_count(server, api, fast_policy) -> None:
    server.script(
        "status",
        server.fail(),
        server.status("IN_PROGRESS", current=2, total=4),
        server.status("COMPLETED", current=4, total=4),
    )
    poller = JobStatusPoller(api, fast_policy)

    poller.begin("c1")
    outcome = await _settle(poller)

    assert outcome is not None and outcome.success
    assert poller.transient_failures == 0
    assert poller.last_error is None


@pytest.mark.asyncio
async def test_each_read_replaces_handle_wholesale(server, api, fast_policy) -> None:
    server.script(
        "status",
        server.status("IN_PROGRESS", current=2, total=5),
        server.reply(200, json={"status": "COMPLETED"}),
    )
    poller = JobStatusPoller(api, fast_policy)

    poller.begin("c1")
    await _settle(poller)

    assert poller.handle is not None
    assert poller.handle.progress == JobProgress(0, 0)
    assert poller.handle.results == ()


@pytest.mark.asyncio
async def test_begin_same_owner_while_polling_is_noop(server, api) -> None:
    server.script("status", server.status("IN_PROGRESS"))
    poller = JobStatusPoller(api, PollingPolicy(interval=60.0))

    poller.begin("c1")
    await server.wait_until(lambda: server.count("status") == 1)
    poller.begin("c1")
    for _ in range(10):
        await asyncio.sleep(0)

    assert server.count("status") == 1
    assert poller.state == PollerState.POLLING
    poller.stop()


@pytest.mark.asyncio
async def test_begin_other_owner_restarts(server, api) -> None:
    server.script("status", server.status("IN_PROGRESS"))
    poller = JobStatusPoller(api, PollingPolicy(interval=60.0))
    first_calls: list[JobOutcome] = []

    poller.begin("c1", first_calls.append)
    await server.wait_until(lambda: server.count("status") == 1)
    poller.begin("c2")
    await server.wait_until(lambda: server.count("status") == 2)

    assert poller.owner_id == "c2"
    assert poller.state == PollerState.POLLING
    assert first_calls == []
    assert server.calls("status")[1].url.path == "/api/cookbooks/c2/ocr/results"
    poller.stop()


@pytest.mark.asyncio
async def test_stop_while_waiting_cancels_next_read(server, api) -> None:
    server.script("status", server.status("IN_PROGRESS"))
    poller = JobStatusPoller(api, PollingPolicy(interval=0.05))

    poller.begin("c1")
    await server.wait_until(lambda: server.count("status") == 1)
    await asyncio.sleep(0)
    poller.stop()
    await asyncio.sleep(0.15)

    assert poller.state == PollerState.IDLE
    assert server.count("status") == 1
    assert await poller.wait() is None


@pytest.mark.asyncio
async def test_stop_during_read_discards_result(server, api, fast_policy) -> None:
    server.script("status", server.status("COMPLETED", results=server.results(2)))
    gate = server.gate("status")
    poller = JobStatusPoller(api, fast_policy)
    calls: list[JobOutcome] = []

    poller.begin("c1", calls.append)
    await server.wait_until(lambda: server.count("status") == 1)
    poller.stop()
    gate.set()
    for _ in range(20):
        await asyncio.sleep(0)

    assert calls == []
    assert poller.state == PollerState.IDLE
    assert poller.handle is None
    assert poller.outcome is None
    assert server.count("status") == 1


@pytest.mark.asyncio
async def test_stop_is_idempotent_from_any_state(server, api, fast_policy) -> None:
    poller = JobStatusPoller(api, fast_policy)
    poller.stop()
    assert poller.state == PollerState.IDLE

    server.script("status", server.status("COMPLETED"))
    poller.begin("c1")
    await _settle(poller)
    poller.stop()
    poller.stop()

    assert poller.state == PollerState.IDLE
    assert poller.outcome is not None and poller.outcome.success


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(server, api) -> None:
    server.script("status", server.status("IN_PROGRESS"))
    poller = JobStatusPoller(api, PollingPolicy(interval=0.0, max_attempts=3))

    poller.begin("c1")
    outcome = await _settle(poller)

    assert outcome is not None and not outcome.success
    assert outcome.gave_up
    assert outcome.status == JobStatus.IN_PROGRESS
    assert outcome.error_message == "Job status polling gave up after 3 attempts"
    assert server.count("status") == 3


@pytest.mark.asyncio
async def test_transient_failures_count_toward_max_attempts(server, api) -> None:
    server.script("status", server.fail())
    poller = JobStatusPoller(api, PollingPolicy(interval=0.0, max_attempts=2))

    poller.begin("c1")
    outcome = await _settle(poller)

    assert outcome is not None and outcome.gave_up
    assert outcome.status == JobStatus.PENDING
    assert server.count("status") == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_duration(server, api) -> None:
    server.script("status", server.status("IN_PROGRESS"))
    ticks = itertools.count(0.0, 10.0)
    poller = JobStatusPoller(
        api,
        PollingPolicy(interval=0.0, max_attempts=None, max_duration=5.0),
        clock=lambda: next(ticks),
    )

    poller.begin("c1")
    outcome = await _settle(poller)

    assert outcome is not None and outcome.gave_up
    assert outcome.error_message == "Job status polling gave up after 5s"
    assert server.count("status") == 1


@pytest.mark.asyncio
async def test_callback_error_does_not_break_settlement(server, api, fast_policy) -> None:
    server.script("status", server.status("COMPLETED"))
    poller = JobStatusPoller(api, fast_policy)

    def _boom(outcome: JobOutcome) -> None:
        raise RuntimeError("ui gone")

    poller.begin("c1", _boom)
    outcome = await _settle(poller)

    assert outcome is not None and outcome.success
    assert poller.state == PollerState.SETTLED


@pytest.mark.asyncio
async def test_reads_and_settle_publish_diagnostics(server, api, fast_policy) -> None:
    from cookimport.core.events import get_event_bus

    events: list[str] = []
    get_event_bus().subscribe(lambda name, data: events.append(name), "jobs")
    server.script("status", server.fail(), server.status("COMPLETED"))
    poller = JobStatusPoller(api, fast_policy)

    poller.begin("c1")
    await _settle(poller)

    assert events == ["jobs.poll", "jobs.poll", "jobs.settled"]


def test_begin_requires_owner_id(api) -> None:
    poller = JobStatusPoller(api)

    with pytest.raises(JobError):
        poller.begin("")

    assert poller.state == PollerState.IDLE


@pytest.mark.asyncio
async def test_clear_forgets_settled_job(server, api, fast_policy) -> None:
    server.script("status", server.fail("hiccup"), server.status("FAILED", error="timeout"))
    poller = JobStatusPoller(api, fast_policy)
    poller.begin("c1")
    await _settle(poller)
    assert poller.handle is not None

    poller.clear()

    assert poller.state == PollerState.IDLE
    assert poller.handle is None
    assert poller.outcome is None
    assert poller.owner_id is None
    assert poller.attempts == 0
    assert poller.transient_failures == 0
    assert poller.last_error is None
    assert await poller.wait() is None
