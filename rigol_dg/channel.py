"""
Per-channel parameter model.

A ``ChannelModel`` holds the staged parameters of one output channel for one
waveform or modulation family and synchronizes them with the instrument:

* ``apply()`` encodes every staged field to device units and sends it,
  function selection first and the enable command last.
* ``refresh()`` queries every field back, decodes it and reformats it for
  display in an auto-ranged unit.

Families are described by parameter tables (see ``rigol_dg.families``); the
model itself is family-agnostic.
"""

import math
from dataclasses import dataclass
from enum import Enum
from itertools import takewhile
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from . import units
from .debounce import Debouncer
from .errors import ApplyError, ChannelBusy, ConversionError, RefreshError, TransportError
from .transport import Transport
from .units import Domain


class Type(Enum):
    """Parameter type enum for SCPI value formatting."""
    UNITLESS = 1
    STRING = 2
    BOOLEAN = 3
    FREQUENCY = 4
    PERIOD = 5
    AMPLITUDE = 6
    OFFSET = 7
    INTEGER = 8
    IMPEDANCE = 9   # ohms; math.inf is High-Z



_DOMAINS = {
    Type.FREQUENCY: Domain.FREQUENCY,
    Type.PERIOD: Domain.PERIOD,
    Type.AMPLITUDE: Domain.AMPLITUDE,
    Type.OFFSET: Domain.OFFSET,
}

# Command priorities. Lower = earlier; equal priorities keep table order.
SELECT = 0
PARAMETER = 50
ENABLE = 99


class Param(NamedTuple):
    """One row of a family parameter table."""
    name: str
    ptype: Type
    scpi: str                                  # template, '{ch}' is the 1-based channel
    default: Any = None                        # in `unit` for physical quantities
    unit: Optional[str] = None                 # initial display unit
    valid: Optional[Sequence[str]] = None      # allowed STRING values (SCPI long form)
    clamp: Optional[Tuple[float, float]] = None
    only_if: Optional[Tuple[str, str]] = None  # (param, prefix) gate for sending
    priority: int = PARAMETER
    index: Optional[int] = None                # leading argument, e.g. the harmonic number

    @property
    def domain(self) -> Optional[Domain]:
        return _DOMAINS.get(self.ptype)


@dataclass(frozen=True)
class FamilySpec:
    """Command vocabulary of one waveform or modulation family."""
    name: str
    params: Tuple[Param, ...]
    select: Optional[str] = None  # function selection command template

    def param(self, name: str) -> Param:
        for p in self.params:
            if p.name == name:
                return p
        raise ValueError(f"{self.name} has no parameter {name!r}")


class ChannelState(Enum):
    IDLE = 0
    PENDING = 1     # a debounce timer is armed
    APPLYING = 2
    REFRESHING = 3


def _scpi_short(option: str) -> str:
    """Short form of a SCPI keyword, e.g. 'INTernal' -> 'INT'."""
    return ''.join(takewhile(str.isupper, option)) or option.upper()


def _matches(value: str, option: str) -> bool:
    value = value.strip().upper()
    return value == option.upper() or value == _scpi_short(option)


def _format_number(value: float) -> str:
    # Fixed point at 12 decimals drops binary noise such as 0.12345600000000001
    return units.format_min_decimals(float(value), 1)


# Responses at or above this are the instrument's spelling of High-Z
HIGH_Z_THRESHOLD = 1e10


def _parse_value(value_str: str, ptype: Type) -> Any:
    """Parse a value from an SCPI response according to its type."""
    value_str = value_str.strip()

    match ptype:
        case Type.BOOLEAN:
            val = value_str.upper()
            if val in ('ON', '1'):
                return True
            elif val in ('OFF', '0'):
                return False
            else:
                raise ValueError(f"Invalid boolean value: {value_str!r}")
        case Type.STRING:
            return value_str
        case Type.INTEGER:
            return int(float(value_str))
        case Type.IMPEDANCE:
            if value_str.upper() in ('INF', 'INFINITY', 'HIGHZ'):
                return math.inf
            ohms = float(value_str)
            return math.inf if ohms >= HIGH_Z_THRESHOLD else ohms
        case _:
            return float(value_str)


@dataclass
class Field:
    """A staged parameter: its value, the unit it is expressed in and its display text."""
    value: Any
    unit: Optional[str] = None
    text: str = ''


def _display_text(value: Any, ptype: Type) -> str:
    match ptype:
        case Type.BOOLEAN:
            return 'ON' if value else 'OFF'
        case Type.STRING:
            return str(value)
        case Type.INTEGER:
            return str(int(value))
        case Type.IMPEDANCE if math.isinf(value):
            return 'HighZ'
        case _:
            return units.format_min_decimals(float(value), units.DISPLAY_DECIMALS)


class ChannelParameterSet:
    """
    Staged parameter values of one channel/family, keyed by parameter name.

    Values of physical quantities are held in their ``unit``; encoding to the
    device happens only in ``ChannelModel.apply()``.
    """

    def __init__(self, params: Sequence[Param]):
        self._params = {p.name: p for p in params}
        self._fields: Dict[str, Field] = {
            p.name: Field(p.default, p.unit, _display_text(p.default, p.ptype))
            for p in params
            if p.default is not None
        }

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __getitem__(self, name: str) -> Any:
        return self._fields[name].value

    def field(self, name: str) -> Field:
        return self._fields[name]

    def unit(self, name: str) -> Optional[str]:
        return self._fields[name].unit

    def text(self, name: str) -> str:
        return self._fields[name].text

    def stage(self, name: str, value: Any, unit: Optional[str] = None) -> Field:
        """
        Validate and store a new value for ``name``.

        Physical quantities accept a number plus unit, or an SI string such
        as ``'2.5kHz'``. STRING parameters are checked against the table's
        valid values (case-insensitive, SCPI short forms allowed).

        Raises:
            ValueError: Unknown parameter or invalid value.
        """
        param = self._params.get(name)
        if param is None:
            raise ValueError(f"Unknown parameter: {name}")

        current = self._fields.get(name)
        if param.domain is not None:
            if isinstance(value, str) and unit is None:
                value, unit = units.parse_quantity(value, param.domain)
            value = float(value)
            if unit is None:
                unit = current.unit if current is not None else units.DEVICE_UNITS[param.domain]
        elif param.ptype is Type.BOOLEAN:
            value = _parse_value(value, Type.BOOLEAN) if isinstance(value, str) else bool(value)
        elif param.ptype is Type.STRING:
            value = str(value).strip()
            if param.valid is not None and not any(_matches(value, v) for v in param.valid):
                raise ValueError(f"Invalid {name}: {value}. Must be one of {list(param.valid)}")
        elif param.ptype is Type.INTEGER:
            value = int(value)
        elif param.ptype is Type.IMPEDANCE:
            value = _parse_value(value, Type.IMPEDANCE) if isinstance(value, str) else float(value)
            if value <= 0:
                raise ValueError(f"Invalid {name}: {value}. Must be positive ohms or 'HighZ'")
        else:
            value = float(value)

        new = Field(value, unit, _display_text(value, param.ptype))
        self._fields[name] = new
        return new

    def store(self, name: str, decoded: Field) -> None:
        """Overwrite a field with a value read back from the device."""
        if name not in self._params:
            raise ValueError(f"Unknown parameter: {name}")
        self._fields[name] = decoded

    def as_dict(self) -> Dict[str, Any]:
        return {name: f.value for name, f in self._fields.items()}


def _no_log(message: str) -> None:
    pass


class ChannelModel:
    """
    Staged state and synchronization for one channel and one family.

    Example:
        model = ChannelModel(session, 1, Family.SINE, log=print)
        model.stage('frequency', 2.5, 'kHz')
        model.apply()      # sends SOURCE1:FREQuency 2500.0 among others
        model.refresh()    # reads the device back into model.values
    """

    def __init__(self, transport: Transport, channel: int, family,
                 debouncer: Optional[Debouncer] = None,
                 log: Optional[Callable[[str], None]] = None):
        """
        Args:
            transport: Connected (or later connected) instrument transport.
            channel: 1-based output channel number.
            family: A ``Family`` member or a ``FamilySpec``.
            debouncer: When given, ``stage()`` schedules a debounced apply.
            log: Single-argument callback receiving human-readable events.
        """
        if channel < 1:
            raise ValueError(f"Channel numbers are 1-based, got {channel}")
        self.transport = transport
        self.channel = channel
        self.spec: FamilySpec = family.value if isinstance(family, Enum) else family
        self.debouncer = debouncer
        self._log = log or _no_log
        self.values = ChannelParameterSet(self.spec.params)
        self.state = ChannelState.IDLE
        self._pending: set = set()
        self.discarded = False

    def __repr__(self) -> str:
        return f"ChannelModel(CH{self.channel}, {self.spec.name}, {self.state.name})"

    def _scpi(self, template: str) -> str:
        return template.format(ch=self.channel)

    def debounce_key(self, name: str) -> str:
        return f"CH{self.channel}:{self.spec.name}:{name}"

    def stage(self, name: str, value: Any, unit: Optional[str] = None) -> Field:
        """
        Update a staged value and, with a debouncer, arm a delayed ``apply()``.

        Each field has its own debounce key, so a burst of edits to one field
        produces a single apply.
        """
        staged = self.values.stage(name, value, unit)
        if self.debouncer is not None:
            key = self.debounce_key(name)
            self._pending.add(key)
            if self.state is ChannelState.IDLE:
                self.state = ChannelState.PENDING
            self.debouncer.schedule(key, self._debounced_apply, key)
        return staged

    def _debounced_apply(self, key: str) -> None:
        self._pending.discard(key)
        if self.discarded:
            self._log(f"Dropping debounced apply of {key}: model was discarded")
            return
        self.apply()

    def discard(self) -> None:
        """
        Retire this model, e.g. after an instrument reset.

        Timers that are still armed fire into a no-op, so staged values of a
        discarded model never reach the instrument.
        """
        self.discarded = True
        self._pending.clear()
        self._settle()

    def _settle(self) -> None:
        self.state = ChannelState.PENDING if self._pending else ChannelState.IDLE

    def _busy(self, error_cls, verb: str):
        self._log(f"CH{self.channel} {self.spec.name}: cannot {verb} while {self.state.name.lower()}")
        return error_cls(self.channel, [('*', ChannelBusy(f"CH{self.channel} is {self.state.name}"))])

    def _encode(self, param: Param) -> str:
        """Device-ready value string for ``param``; may clamp the staged value."""
        f = self.values.field(param.name)
        match param.ptype:
            case Type.BOOLEAN:
                return 'ON' if f.value else 'OFF'
            case Type.STRING:
                return str(f.value).upper()
            case Type.IMPEDANCE if math.isinf(f.value):
                return 'INF'

        if param.domain is not None:
            base = units.to_base(f.value, f.unit or units.DEVICE_UNITS[param.domain])
            value = units.to_device(base, param.domain)
        else:
            value = float(f.value)

        if param.clamp is not None:
            # Clamp ranges are in device units
            lo, hi = param.clamp
            clamped = min(max(value, lo), hi)
            if clamped != value:
                self._log(f"CH{self.channel} {param.name} {value} clamped to {clamped}")
                if param.domain is None:
                    self.values.stage(param.name, clamped)
                else:
                    device_unit = units.DEVICE_UNITS[param.domain]
                    self.values.stage(param.name, units.convert(clamped, device_unit, f.unit), f.unit)
                value = clamped
        if param.ptype is Type.INTEGER:
            return str(int(value))
        return _format_number(value)

    def _enabled(self, param: Param) -> bool:
        if param.only_if is None:
            return True
        gate, prefix = param.only_if
        return gate in self.values and str(self.values[gate]).upper().startswith(prefix.upper())

    def commands(self) -> List[Tuple[str, Optional[Param]]]:
        """
        Parameters to send, in command order.

        Function selection comes first, then scalar parameters in table
        order, then the enable command. Entries are ``(command, param)``;
        the value of ``param`` is appended at send time.
        """
        ordered: List[Tuple[int, str, Optional[Param]]] = []
        if self.spec.select is not None:
            ordered.append((SELECT, self._scpi(self.spec.select), None))
        for p in self.spec.params:
            if p.name in self.values and self._enabled(p):
                ordered.append((p.priority, self._scpi(p.scpi), p))
        # Stable sort preserves table order for equal priorities
        ordered.sort(key=lambda x: x[0])
        return [(cmd, p) for _, cmd, p in ordered]

    def _argument(self, param: Param) -> str:
        encoded = self._encode(param)
        return encoded if param.index is None else f"{param.index},{encoded}"

    def _query_command(self, param: Param) -> str:
        query = f"{self._scpi(param.scpi)}?"
        return query if param.index is None else f"{query} {param.index}"

    def apply(self) -> Optional[ApplyError]:
        """
        Push every staged field to the instrument.

        A failing field is logged and skipped; the remaining commands are
        still sent. Returns None on success, otherwise an ``ApplyError``
        listing every failure (``.first`` is the earliest).
        """
        if self.state in (ChannelState.APPLYING, ChannelState.REFRESHING):
            return self._busy(ApplyError, 'apply')

        self.state = ChannelState.APPLYING
        errors: List[Tuple[str, BaseException]] = []
        sent: List[str] = []
        try:
            for cmd, param in self.commands():
                name = param.name if param is not None else 'function'
                try:
                    if param is not None:
                        cmd = f"{cmd} {self._argument(param)}"
                    self.transport.send(cmd)
                    sent.append(cmd)
                except (TransportError, ConversionError, ValueError) as e:
                    self._log(f"Error applying {name} to CH{self.channel}: {e}")
                    errors.append((name, e))
        finally:
            self._settle()

        if errors:
            return ApplyError(self.channel, errors)
        self._log(f"Applied {self.spec.name} to CH{self.channel}: {len(sent)} commands")
        return None

    def _decode(self, param: Param, response: str) -> Field:
        value = _parse_value(response, param.ptype)
        if param.domain is None:
            return Field(value, None, _display_text(value, param.ptype))

        current = self.values.field(param.name).unit if param.name in self.values else None
        base = units.from_device(value, param.domain)
        text, unit = units.format_quantity(base, param.domain, current or units.DEVICE_UNITS[param.domain])
        return Field(units.from_base(base, unit), unit, text)

    def refresh(self) -> Optional[RefreshError]:
        """
        Pull every field back from the instrument.

        Fields whose query fails or whose response cannot be parsed keep
        their staged value. Returns None on success, otherwise a
        ``RefreshError`` listing the failures.
        """
        if self.state in (ChannelState.APPLYING, ChannelState.REFRESHING):
            return self._busy(RefreshError, 'refresh')

        self.state = ChannelState.REFRESHING
        errors: List[Tuple[str, BaseException]] = []
        try:
            for param in self.spec.params:
                query = self._query_command(param)
                try:
                    response = self.transport.query(query)
                except TransportError as e:
                    self._log(f"Error refreshing {param.name} on CH{self.channel}: {e}")
                    errors.append((param.name, e))
                    continue
                try:
                    decoded = self._decode(param, response)
                except ValueError as e:
                    self._log(f"Dropping unparseable {param.name} response {response!r}: {e}")
                    errors.append((param.name, e))
                    continue
                self.values.store(param.name, decoded)
        finally:
            self._settle()

        if errors:
            return RefreshError(self.channel, errors)
        self._log(f"Refreshed {self.spec.name} parameters for CH{self.channel}")
        return None
