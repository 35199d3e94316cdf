"""
Error taxonomy for devboard.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Kinds of adapter failure surfaced to the dashboard."""

    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    UNREACHABLE = "unreachable"
    MALFORMED = "malformed"

    @property
    def transient(self) -> bool:
        """True for failures that may succeed when retried later."""
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.UNREACHABLE)


class DevboardError(Exception):
    """Base exception for devboard errors."""

    pass


class ConfigError(DevboardError):
    """Invalid configuration value."""

    pass


class CredentialStoreError(DevboardError):
    """The credential store could not be read."""

    pass


class CredentialPersistenceError(CredentialStoreError):
    """A credential change could not be written to durable storage."""

    pass


class AdapterError(DevboardError):
    """Failure raised by a service adapter."""

    kind: ErrorKind = ErrorKind.MALFORMED

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after


class Unauthorized(AdapterError):
    """Bad or expired credential."""

    kind = ErrorKind.UNAUTHORIZED


class RateLimited(AdapterError):
    """The service asked us to slow down."""

    kind = ErrorKind.RATE_LIMITED


class Unreachable(AdapterError):
    """Network failure or timeout."""

    kind = ErrorKind.UNREACHABLE


class Malformed(AdapterError):
    """Unexpected response shape."""

    kind = ErrorKind.MALFORMED
