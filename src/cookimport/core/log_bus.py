"""Fan-out of emitted log lines to hosts (a status panel, a test, a file).

The logger publishes every line it prints. A subscriber may restrict itself to
some level names; a failing subscriber is reported on stderr and skipped.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class LogRecord:
    level_name: str
    message: str
    logger_name: str

    @property
    def plain(self) -> str:
        """The line as printed, without color codes."""
        return f"[{self.level_name.lower()}] {self.message}"


LogSubscriber = Callable[[LogRecord], None]


class LogBus:
    def __init__(self) -> None:
        self._subscribers: list[tuple[frozenset[str], LogSubscriber]] = []

    def subscribe(self, callback: LogSubscriber, *level_names: str) -> None:
        """Register `callback` for the given levels, or for every level when none are given."""
        self._subscribers.append((frozenset(n.upper() for n in level_names), callback))

    def unsubscribe(self, callback: LogSubscriber) -> None:
        self._subscribers = [(lv, cb) for lv, cb in self._subscribers if cb != callback]

    def publish(self, record: LogRecord) -> None:
        for levels, callback in list(self._subscribers):
            if levels and record.level_name not in levels:
                continue
            try:
                callback(record)
            except Exception as e:
                # The core logger publishes here, so it cannot report this.
                sys.stderr.write(
                    f"log subscriber {callback!r} failed: {type(e).__name__}: {e}\n"
                )

    def clear(self) -> None:
        self._subscribers.clear()


_LOG_BUS = LogBus()


def get_log_bus() -> LogBus:
    return _LOG_BUS
