"""Diagnostics event bus.

The job layer and the wizard publish diagnostics envelopes here. Hosts
subscribe to a topic ("jobs", "wizard"), to one exact event, or to everything.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Any

from cookimport.core.logging import get_logger

_logger = get_logger(__name__)

Subscriber = Callable[[str, dict[str, Any]], None]


class DiagnosticEvent(StrEnum):
    JOB_LAUNCH = "jobs.launch"
    JOB_POLL = "jobs.poll"
    JOB_SETTLED = "jobs.settled"
    WIZARD_STEP = "wizard.step"

    @property
    def topic(self) -> str:
        return self.value.partition(".")[0]


def _matches(selector: str | None, event: str) -> bool:
    return selector is None or event == selector or event.startswith(f"{selector}.")


class EventBus:
    """Fan-out of (event name, envelope) pairs.

    Example:
        bus = get_event_bus()
        bus.subscribe(lambda event, env: print(event, env["data"]), "jobs")
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[str | None, Subscriber]] = []

    def subscribe(self, callback: Subscriber, selector: str | None = None) -> None:
        """Register `callback` for a topic or an exact event; None means every event."""
        self._subscribers.append((selector, callback))

    def unsubscribe(self, callback: Subscriber) -> None:
        """Drop every registration of `callback`. Unknown callbacks are ignored."""
        self._subscribers = [(sel, cb) for sel, cb in self._subscribers if cb != callback]

    def publish(self, event: str, envelope: dict[str, Any]) -> None:
        for selector, callback in list(self._subscribers):
            if not _matches(selector, event):
                continue
            try:
                callback(event, envelope)
            except Exception as e:
                _logger.error(
                    f"diagnostics subscriber failed: event={event} callback={callback!r} "
                    f"{type(e).__name__}: {e}"
                )

    def clear(self) -> None:
        self._subscribers.clear()


_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _EVENT_BUS
