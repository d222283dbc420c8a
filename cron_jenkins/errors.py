"""Exception hierarchy shared by the Jenkins client and the scheduler."""

from __future__ import annotations

from typing import Optional


class CronJenkinsError(Exception):
    """Base class for every error raised by this package."""

    kind = "error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(CronJenkinsError):
    """Bad input at the API boundary (zero targets, bad cron, ...)."""

    kind = "validation_error"


class JobNotFound(CronJenkinsError):
    """A scheduled job or build-server configuration does not exist."""

    kind = "not_found"

    def __init__(self, what: str, ident: str) -> None:
        self.what = what
        self.ident = ident
        super().__init__(f"{what} not found: {ident}")


class PersistenceError(CronJenkinsError):
    """The job store could not complete an operation."""

    kind = "persistence_error"


class ConfigResolutionError(CronJenkinsError):
    """The Jenkins configuration referenced by a job cannot be resolved."""

    kind = "config_resolution_error"

    def __init__(self, config_id: Optional[str], history_id: Optional[str] = None) -> None:
        self.config_id = config_id
        self.history_id = history_id
        super().__init__(f"Jenkins configuration not found: {config_id}")


class UpstreamError(CronJenkinsError):
    """A Jenkins request failed."""

    kind = "upstream_error"

    def __init__(self, message: str, *, status: Optional[int] = None, url: Optional[str] = None) -> None:
        self.status = status
        self.url = url
        super().__init__(message)


class AuthenticationFailed(UpstreamError):
    kind = "authentication_failed"


class NotFound(UpstreamError):
    kind = "upstream_not_found"


class UpstreamUnavailable(UpstreamError):
    kind = "upstream_unavailable"


class ExecutionFailed(CronJenkinsError):
    """A fan-out attempt broke off unexpectedly; its history row was closed as failed."""

    kind = "execution_failed"

    def __init__(self, message: str, history_id: Optional[str] = None) -> None:
        self.history_id = history_id
        super().__init__(message)
