"""
Unit normalization for generator parameters.

Every physical quantity is held in a fixed base unit with maximal resolution
(frequency in µHz, period in ps, amplitude in Vpp, offset in V). Conversions
between two display units always pass through the base unit, so each unit has
exactly one scale factor.
"""

import math
import re
from enum import Enum
from typing import Dict, Sequence, Tuple, Union

import numpy as np

from .errors import ConversionError, DivideByZero

ArrayLike = Union[float, np.ndarray]


class Domain(Enum):
    """Physical quantity domains understood by the normalizer."""
    FREQUENCY = 1
    PERIOD = 2
    AMPLITUDE = 3
    OFFSET = 4


# Auto-ranging band for displayed magnitudes
AUTO_RANGE_MAX = 9999
AUTO_RANGE_MIN = 0.1

# Minimum fractional digits used when redisplaying refreshed values
DISPLAY_DECIMALS = 1

# Multiplier from each unit to its domain's base unit
_SQRT2 = math.sqrt(2.0)
UNITS: Dict[str, Tuple[Domain, float]] = {
    'µHz': (Domain.FREQUENCY, 1.0),
    'mHz': (Domain.FREQUENCY, 1e3),
    'Hz': (Domain.FREQUENCY, 1e6),
    'kHz': (Domain.FREQUENCY, 1e9),
    'MHz': (Domain.FREQUENCY, 1e12),
    'ps': (Domain.PERIOD, 1.0),
    'ns': (Domain.PERIOD, 1e3),
    'µs': (Domain.PERIOD, 1e6),
    'ms': (Domain.PERIOD, 1e9),
    's': (Domain.PERIOD, 1e12),
    'mVpp': (Domain.AMPLITUDE, 1e-3),
    'Vpp': (Domain.AMPLITUDE, 1.0),
    'mVrms': (Domain.AMPLITUDE, 2e-3 * _SQRT2),
    'Vrms': (Domain.AMPLITUDE, 2.0 * _SQRT2),
    'mV': (Domain.OFFSET, 1e-3),
    'V': (Domain.OFFSET, 1.0),
}

# Alternative spellings of the micro prefix
_ALIASES = {
    'uHz': 'µHz',
    'μHz': 'µHz',
    'us': 'µs',
    'μs': 'µs',
}

BASE_UNITS = {
    Domain.FREQUENCY: 'µHz',
    Domain.PERIOD: 'ps',
    Domain.AMPLITUDE: 'Vpp',
    Domain.OFFSET: 'V',
}

# Units the instrument expects on the wire
DEVICE_UNITS = {
    Domain.FREQUENCY: 'Hz',
    Domain.PERIOD: 's',
    Domain.AMPLITUDE: 'Vpp',
    Domain.OFFSET: 'V',
}

# Ordered smallest to largest; used for auto-ranging
RANGE_UNITS = {
    Domain.FREQUENCY: ('µHz', 'mHz', 'Hz', 'kHz', 'MHz'),
    Domain.PERIOD: ('ps', 'ns', 'µs', 'ms', 's'),
    Domain.AMPLITUDE: ('mVpp', 'Vpp'),
    Domain.OFFSET: ('mV', 'V'),
}
RMS_RANGE_UNITS = ('mVrms', 'Vrms')


def canonical_unit(unit: str) -> str:
    """Resolve alias spellings (``us``, ``uHz``, Greek mu) to the table name."""
    unit = unit.strip()
    return _ALIASES.get(unit, unit)


def multiplier(unit: str) -> float:
    """
    Scale factor from ``unit`` to its base unit.

    Unknown units yield 1.0, i.e. they are treated as the base unit. The
    normalizer never fails on a malformed unit string.
    """
    entry = UNITS.get(canonical_unit(unit))
    return 1.0 if entry is None else entry[1]


def domain_of(unit: str) -> Domain:
    """Return the domain a unit belongs to, or raise ``ConversionError``."""
    entry = UNITS.get(canonical_unit(unit))
    if entry is None:
        raise ConversionError(f"Unknown unit: {unit!r}")
    return entry[0]


def to_base(value: ArrayLike, unit: str) -> ArrayLike:
    """Convert ``value`` expressed in ``unit`` to the domain's base unit."""
    return value * multiplier(unit)


def from_base(base: ArrayLike, unit: str) -> ArrayLike:
    """Convert a base-unit value to ``unit``."""
    return base / multiplier(unit)


def convert(value: ArrayLike, from_unit: str, to_unit: str) -> ArrayLike:
    """Convert between two units of the same domain via the base unit."""
    return from_base(to_base(value, from_unit), to_unit)


def to_device(base: ArrayLike, domain: Domain) -> ArrayLike:
    """Express a base-unit value in the unit the instrument expects."""
    return from_base(base, DEVICE_UNITS[domain])


def from_device(value: ArrayLike, domain: Domain) -> ArrayLike:
    """Convert a value reported by the instrument to the base unit."""
    return to_base(value, DEVICE_UNITS[domain])


def _invert(value: ArrayLike, what: str) -> ArrayLike:
    arr = np.asarray(value, dtype=np.float64)
    if np.any(arr == 0):
        raise DivideByZero(f"Cannot convert zero {what}")
    result = 1.0 / arr
    return float(result) if result.ndim == 0 else result


def frequency_to_period(frequency_hz: ArrayLike) -> ArrayLike:
    """
    Convert a frequency in Hz to a period in seconds.

    Accepts a scalar or a numpy array. Raises ``DivideByZero`` if any
    element is exactly zero.

    Examples
    --------
    >>> frequency_to_period(1000)
    0.001
    """
    return _invert(frequency_hz, 'frequency to period')


def period_to_frequency(period_s: ArrayLike) -> ArrayLike:
    """Convert a period in seconds to a frequency in Hz (see ``frequency_to_period``)."""
    return _invert(period_s, 'period to frequency')


def auto_range(base_value: float, units: Sequence[str],
               current_unit: str) -> Tuple[float, str]:
    """
    Pick the display unit that keeps ``|value|`` within [0.1, 9999].

    The walk starts at ``current_unit`` (or the smallest unit if the current
    unit is not part of ``units``) and moves in one direction only: up while
    the magnitude exceeds 9999, otherwise down while it is below 0.1. It stops
    at either end of the sequence, so it takes at most ``len(units)`` steps.

    Parameters
    ----------
    base_value : float
        Value in the base unit of the domain.
    units : sequence of str
        Units ordered from smallest to largest.
    current_unit : str
        The unit currently selected on the display surface.

    Returns
    -------
    (float, str)
        The value expressed in the chosen unit, and that unit.
    """
    if not units:
        return base_value, current_unit

    units = [canonical_unit(u) for u in units]
    current_unit = canonical_unit(current_unit)
    index = units.index(current_unit) if current_unit in units else 0
    display = from_base(base_value, units[index])

    if abs(display) > AUTO_RANGE_MAX:
        while abs(display) > AUTO_RANGE_MAX and index < len(units) - 1:
            index += 1
            display = from_base(base_value, units[index])
    else:
        while abs(display) < AUTO_RANGE_MIN and index > 0:
            index -= 1
            display = from_base(base_value, units[index])

    return display, units[index]


def format_min_decimals(value: float, min_decimals: int = 2) -> str:
    """
    Render ``value`` with at least ``min_decimals`` fractional digits.

    Extra significant fractional digits (up to 12) are preserved; trailing
    zeros beyond the minimum are trimmed.

    Examples
    --------
    >>> format_min_decimals(1.5, 2)
    '1.50'
    >>> format_min_decimals(1.23456, 2)
    '1.23456'
    >>> format_min_decimals(2.0, 3)
    '2.000'
    """
    full = f'{value:.12f}'
    if full.startswith('-') and not full.strip('-0.'):
        # -0.0 or a negative that rounds to zero
        full = full[1:]
    if '.' not in full:
        # inf / nan
        return full

    int_part, frac = full.split('.')
    frac = frac.rstrip('0')
    if len(frac) < min_decimals:
        frac = frac.ljust(min_decimals, '0')
    return f'{int_part}.{frac}' if frac else int_part


def format_quantity(base_value: float, domain: Domain, current_unit: str,
                    min_decimals: int = DISPLAY_DECIMALS) -> Tuple[str, str]:
    """Auto-range a base value for display and return ``(text, unit)``."""
    display, unit = auto_range(base_value, range_units(domain, current_unit), current_unit)
    return format_min_decimals(display, min_decimals), unit


def range_units(domain: Domain, current_unit: str) -> Tuple[str, ...]:
    """Ranging sequence for ``domain``; RMS amplitudes range among RMS units."""
    if domain is Domain.AMPLITUDE and canonical_unit(current_unit) in RMS_RANGE_UNITS:
        return RMS_RANGE_UNITS
    return RANGE_UNITS[domain]


def parse_quantity(value: str, domain: Domain) -> Tuple[float, str]:
    """
    Parse a number with an optional unit suffix into ``(number, unit)``.

    The unit must belong to ``domain``; when it is omitted the device unit
    of the domain is assumed.

    Examples
    --------
    >>> parse_quantity('2.5kHz', Domain.FREQUENCY)
    (2.5, 'kHz')
    >>> parse_quantity('-200 mV', Domain.OFFSET)
    (-200.0, 'mV')
    >>> parse_quantity('10', Domain.PERIOD)
    (10.0, 's')
    """
    original_value = value
    value = value.strip()

    match = re.match(r'^([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)\s*(\S+)?$', value)
    if not match:
        raise ConversionError(f"Invalid format: {original_value}")

    number = float(match.group(1))
    if match.group(2) is None:
        return number, DEVICE_UNITS[domain]

    unit = canonical_unit(match.group(2))
    if unit not in UNITS or UNITS[unit][0] != domain:
        raise ConversionError(
            f"Expected a {domain.name.lower()} unit but found '{match.group(2)}' in: {original_value}"
        )
    return number, unit
