"""Domain-specific errors for canhook."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping, Optional


ErrorSink = Callable[[Exception], None]


class CanHookError(Exception):
    """Base error for canhook."""


class TransportError(CanHookError):
    """Raised when a round trip through the transport is rejected."""


class EnvelopeMismatchError(TransportError):
    """Raised when a response envelope carries a different tag than its request."""

    def __init__(self, expected: str, actual: object) -> None:
        super().__init__(f"Response tag {actual!r} does not match request tag {expected!r}")
        self.expected = expected
        self.actual = actual


class ProtocolMismatchError(CanHookError):
    """Raised when a method or payload is not part of a layer's closed variant set.

    Also raised when a reply cannot be parsed into the type its method returns.
    """


class ValidationError(CanHookError):
    """Raised when a value violates an advisory client-side constraint."""


class CaptureDisabledError(ValidationError):
    """Raised when capture is enabled on a configuration that does not allow it."""


class UnknownProviderError(CanHookError):
    """Raised when no provider is registered under an address."""


class UnknownDeviceError(CanHookError):
    """Raised when a device-set call addresses a device that is not present."""


class ProviderError(CanHookError):
    """Raised when a provider cannot service a request."""


class ReplayDecodeError(CanHookError):
    """Raised when a replay import row cannot be decoded."""

    def __init__(
        self,
        field: str,
        value: Any,
        row: Mapping[str, Any],
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message
            or f"{field} is invalid / could not be parsed as a number "
            f"(value: {value!r}, row: {json.dumps(dict(row))})"
        )
        self.field = field
        self.value = value
        self.row = dict(row)


def report_error(
    logger: logging.Logger,
    sink: Optional[ErrorSink],
    exc: Exception,
    context: str,
) -> None:
    """Log a recoverable failure and forward it to the error sink, if any."""
    logger.warning("%s: %s", context, exc)
    if sink is not None:
        sink(exc)
