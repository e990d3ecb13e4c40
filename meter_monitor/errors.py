"""Exception classes for the meter monitor."""


class MeterError(Exception):
    """Base exception for all meter-monitor errors."""


class ConfigError(MeterError, ValueError):
    """Raised for an invalid meter constant, region of interest or option."""


class StateError(MeterError, RuntimeError):
    """Raised when an operation is not valid in the current session state."""


class ValidationError(MeterError, ValueError):
    """Raised when a brightness sample is rejected (non-finite or out of order)."""


class DecodeError(MeterError):
    """Raised when a frame cannot be decoded into an RGBA raster."""


class StorageError(MeterError):
    """Raised when the measurement history cannot be read or written."""

    def __init__(self, action: str, cause: Exception | None = None) -> None:
        msg = f"Storage failure during {action}: {cause}" if cause else f"Storage failure during {action}"
        super().__init__(msg)
        self.action = action
        self.cause = cause
