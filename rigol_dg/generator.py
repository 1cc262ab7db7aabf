"""
Two-channel function generator front end.

``Generator`` owns the transport session, the debouncer and one
``ChannelModel`` per (channel, family) pair. All channels share the single
connection; cross-channel operations run their channels one after another.
"""

from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .channel import ChannelModel
from .debounce import Debouncer
from .errors import ApplyError, RefreshError
from .families import Family
from .transport import DEFAULT_RESOURCE, Transport, VisaSession

CHANNELS = (1, 2)


def _no_log(message: str) -> None:
    pass


class Generator:
    """
    Rigol DG2000-series function generator.

    Example:
        gen = Generator(log=print)
        gen.connect()
        sine = gen.model(1, Family.SINE)
        sine.stage('frequency', '2.5kHz')
        sine.stage('output', True)
        gen.apply_all()

    Models are created on first use and cached, so staged values of a
    family survive switching a channel to another family and back.
    """

    def __init__(self, transport: Optional[Transport] = None,
                 debouncer: Optional[Debouncer] = None,
                 log: Optional[Callable[[str], None]] = None,
                 visa_backend: Optional[str] = None, debug_level: int = 0):
        """
        Args:
            transport: Instrument transport. Defaults to a ``VisaSession``
                built from ``visa_backend`` and ``debug_level``.
            debouncer: When given, staged edits apply themselves after the
                debounce delay.
            log: Single-argument callback receiving human-readable events.
            visa_backend: pyvisa backend string, e.g. "@py".
            debug_level: Debug verbosity level, see ``VisaSession``.
        """
        self._log = log or _no_log
        if transport is None:
            transport = VisaSession(visa_backend=visa_backend, log=log, debug_level=debug_level)
        self.transport = transport
        self.debouncer = debouncer
        self._models: Dict[Tuple[int, Family], ChannelModel] = {}
        self._active: Dict[int, Family] = {ch: Family.SINE for ch in CHANNELS}

    @staticmethod
    def _check_channel(channel: int) -> None:
        if channel not in CHANNELS:
            raise ValueError(f"Invalid channel: {channel}. Must be one of {list(CHANNELS)}")

    @property
    def connected(self) -> bool:
        return self.transport.connected

    def connect(self, resource_id: str = DEFAULT_RESOURCE) -> None:
        self.transport.connect(resource_id)

    def disconnect(self) -> None:
        self.transport.disconnect()

    def list_resources(self) -> Iterator[str]:
        return self.transport.list_resources()

    def model(self, channel: int, family: Optional[Family] = None) -> ChannelModel:
        """
        Return the model of ``family`` on ``channel``, creating it if needed.

        Passing a family also makes it the channel's active family, i.e. the
        one ``apply_all()`` and ``refresh_all()`` synchronize. Without one,
        the active family's model is returned.
        """
        self._check_channel(channel)
        if family is None:
            family = self._active[channel]
        elif not isinstance(family, Family):
            raise ValueError(f"Unknown family: {family!r}")
        self._active[channel] = family

        key = (channel, family)
        if key not in self._models:
            self._models[key] = ChannelModel(self.transport, channel, family,
                                             debouncer=self.debouncer, log=self._log)
        return self._models[key]

    def active(self, channel: int) -> Family:
        """Family currently selected on ``channel``."""
        self._check_channel(channel)
        return self._active[channel]

    def apply_all(self) -> List[ApplyError]:
        """
        Apply the active model of each channel, in channel order.

        Returns the errors of the channels that failed (empty on success).
        """
        errors = []
        for ch in CHANNELS:
            err = self.model(ch).apply()
            if err is not None:
                errors.append(err)
        return errors

    def refresh_all(self) -> List[RefreshError]:
        """Refresh the active model of each channel, in channel order."""
        errors = []
        for ch in CHANNELS:
            err = self.model(ch).refresh()
            if err is not None:
                errors.append(err)
        return errors

    def identify(self) -> str:
        """Return the instrument identification string (``*IDN?``)."""
        return self.transport.query('*IDN?')

    def reset(self) -> None:
        """
        Reset the instrument to factory defaults and wait for completion.

        Staged values no longer describe the device afterwards, so all cached
        models are discarded (their pending debounced applies never fire)
        and every channel returns to SINE.
        """
        for model in self._models.values():
            model.discard()
        self._models.clear()
        self.transport.send('*RST')
        self.transport.query('*OPC?')
        self._active = {ch: Family.SINE for ch in CHANNELS}
        self._log("Instrument reset to factory defaults")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.disconnect()
