"""Error handling with friendly messages."""

from __future__ import annotations


class CookImportError(Exception):
    """Base exception for all cookimport errors."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class ConfigError(CookImportError):
    """Configuration error."""

    pass


class ResourceApiError(CookImportError):
    """Resource API answered with a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        suggestion: str | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, suggestion)


class ResourceTransportError(ResourceApiError):
    """Request never produced a response (connect, timeout, protocol)."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            status_code=None,
            suggestion="Check the network connection and the api.base_url setting",
        )


class MalformedResponseError(ResourceApiError):
    """Response body could not be decoded into the expected shape."""

    pass


class JobError(CookImportError):
    """Job tracking error."""

    pass


class WizardError(CookImportError):
    """Import wizard error."""

    pass


class WizardStateError(WizardError):
    """Wizard state invariant was violated."""

    pass
