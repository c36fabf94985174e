"""Exception types shared across SecureChain."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of a backend failure."""

    TRANSIENT = "transient"
    FATAL = "fatal"


class SecureChainError(Exception):
    """Base class for all SecureChain errors."""


class ConfigurationError(SecureChainError):
    """Raised when settings or a job request are inconsistent."""


class BackendError(SecureChainError):
    """Failure reported by a backend adapter.

    Args:
        message: Human readable description
        kind: Whether the failure may be retried
    """

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class TransientBackendError(BackendError):
    """Network timeout, rate limiting or a flaky external process."""

    kind = ErrorKind.TRANSIENT


class FatalBackendError(BackendError):
    """Malformed artifact, authentication failure or misconfiguration."""

    kind = ErrorKind.FATAL
