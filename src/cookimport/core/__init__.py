"""cookimport core: job tracking engine and ambient services.

Everything that talks to the Resource API or tracks a server-side job lives
here; the wizard and review model build on top of it.
"""

from cookimport.core.config import ApiSettings, ConfigResolver, PollingPolicy
from cookimport.core.errors import (
    ConfigError,
    CookImportError,
    JobError,
    MalformedResponseError,
    ResourceApiError,
    ResourceTransportError,
    WizardError,
    WizardStateError,
)
from cookimport.core.events import DiagnosticEvent, EventBus, get_event_bus
from cookimport.core.jobs import (
    JobHandle,
    JobLauncher,
    JobOutcome,
    JobProgress,
    JobResultItem,
    JobStatus,
    JobStatusPoller,
    LaunchKind,
    LaunchOutcome,
    PollerState,
)
from cookimport.core.logging import (
    VerbosityLevel,
    apply_logging_policy,
    get_logger,
    get_verbosity,
    set_colors,
    set_verbosity,
)
from cookimport.core.resource_api import ResourceApi, UploadFile

__all__ = [
    # Config
    "ApiSettings",
    "ConfigResolver",
    "PollingPolicy",
    # Errors
    "CookImportError",
    "ConfigError",
    "JobError",
    "MalformedResponseError",
    "ResourceApiError",
    "ResourceTransportError",
    "WizardError",
    "WizardStateError",
    # Events
    "DiagnosticEvent",
    "EventBus",
    "get_event_bus",
    # Jobs
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
    # Logging
    "VerbosityLevel",
    "apply_logging_policy",
    "get_logger",
    "get_verbosity",
    "set_colors",
    "set_verbosity",
    # Resource API
    "ResourceApi",
    "UploadFile",
]
