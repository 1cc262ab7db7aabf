"""
Exception hierarchy for the signal generator engine.

Transport and conversion errors are raised by the lower layers; the channel
model catches them and reports them through ``ApplyError`` / ``RefreshError``.
"""

from typing import List, Optional, Tuple


class TransportError(Exception):
    """Base class for connection and I/O failures."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ResourceManagerUnavailable(TransportError):
    """The VISA resource manager could not be opened."""


class InstrumentOpenFailed(TransportError):
    """The instrument resource could not be opened."""


class WriteFailed(TransportError):
    """A command could not be written (also raised when not connected)."""


class ReadFailed(TransportError):
    """A query response could not be read."""


class DeviceError(TransportError):
    """The instrument reported an error in its SCPI error queue."""


class ConversionError(ValueError):
    """Raised by the unit normalizer."""


class DivideByZero(ConversionError, ZeroDivisionError):
    """Frequency/period inversion of an exact zero."""


class ChannelBusy(RuntimeError):
    """Apply or Refresh was invoked while the channel was mid-synchronization."""


class _AggregateError(Exception):
    """Collects per-field failures of a multi-field operation."""

    verb = 'sync'

    def __init__(self, channel: int, errors: List[Tuple[str, BaseException]]):
        self.channel = channel
        self.errors = list(errors)
        fields = ', '.join(name for name, _ in self.errors)
        super().__init__(
            f"{len(self.errors)} field(s) failed to {self.verb} on CH{channel}: {fields}"
        )

    @property
    def first(self) -> BaseException:
        """The first failure encountered, in command order."""
        return self.errors[0][1]


class ApplyError(_AggregateError):
    verb = 'apply'


class RefreshError(_AggregateError):
    verb = 'refresh'
