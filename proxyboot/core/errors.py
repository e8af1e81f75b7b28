"""Domain-specific errors for proxyboot."""

from __future__ import annotations

from proxyboot.core.model import FailureKind


class ProxybootError(Exception):
    """Base error for proxyboot."""


class ProfileValidationError(ProxybootError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(ProxybootError):
    """Raised when loading profile sources fails."""


class ProfileResolutionError(ProxybootError):
    """Raised when a requested profile does not exist."""


class AdapterError(ProxybootError):
    """Raised when the adapter rejects an advertisement or GATT application."""


class WriteIOError(ProxybootError):
    """Raised when accepting or reading a characteristic write fails."""


class BootstrapError(ProxybootError):
    """Base error for runs that ended without a proxy device name."""

    kind: FailureKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PayloadDecodeError(BootstrapError):
    """Raised when the written proxy device name is not UTF-8."""

    kind = FailureKind.DECODE


class ControlStreamClosedError(BootstrapError):
    """Raised when the characteristic event stream ends before any write."""

    kind = FailureKind.STREAM_CLOSED


class OperatorCancelledError(BootstrapError):
    """Raised when the operator stops the wait."""

    kind = FailureKind.CANCELLED
