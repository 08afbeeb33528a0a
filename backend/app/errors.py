"""Exception taxonomy shared by the client, store and orchestrator."""


class LineupTipsError(Exception):
    """Base class for application errors."""


class ConfigurationError(LineupTipsError):
    """A required setting (token, database URL, secret) is missing."""


class UpstreamError(LineupTipsError):
    """Base class for failures talking to the data provider."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientUpstreamError(UpstreamError):
    """Rate limiting, 5xx, timeouts and network errors. Safe to retry."""


class PermanentUpstreamError(UpstreamError):
    """Any 4xx other than 429. Retrying will not help."""


class UpstreamPayloadError(UpstreamError):
    """The provider response was not JSON or had an unexpected shape."""


class PersistenceError(LineupTipsError):
    """A store write or read failed."""
