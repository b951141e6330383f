"""Exception types raised by the annealer and its device layer."""

from __future__ import annotations


class AnnealerError(Exception):
    """Base class for all sqanneal errors."""


class NotReady(AnnealerError, RuntimeError):
    """An operation was called before the state it depends on was set up."""

    def __init__(self, flag: str, message: str | None = None) -> None:
        self.flag = flag
        super().__init__(message or f"annealer not ready: '{flag}' is not set")


class NotSeeded(AnnealerError, RuntimeError):
    """Random values were requested from an unseeded stream."""


class DimensionMismatch(AnnealerError, ValueError):
    """Operand shapes are incompatible."""


class InvalidArgument(AnnealerError, ValueError):
    """An argument value is outside the accepted set."""


class DeviceFailure(AnnealerError, RuntimeError):
    """The underlying accelerator operation failed."""
