from cookimport.core.jobs.launcher import JobLauncher, LaunchKind, LaunchOutcome
from cookimport.core.jobs.model import (
    JobHandle,
    JobOutcome,
    JobProgress,
    JobResultItem,
    JobStatus,
)
from cookimport.core.jobs.poller import JobStatusPoller, PollerState

__all__ = [
    "JobHandle",
    "JobLauncher",
    "JobOutcome",
    "JobProgress",
    "JobResultItem",
    "JobStatus",
    "JobStatusPoller",
    "LaunchKind",
    "LaunchOutcome",
    "PollerState",
]
