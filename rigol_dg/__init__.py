"""
Parameter synchronization for Rigol DG2000-series function generators.

This package keeps locally staged channel parameters in sync with the
instrument over VISA.

Submodules:
    rigol_dg.transport - VISA session (connect, send, query)
    rigol_dg.units - Unit normalization and auto-ranging
    rigol_dg.debounce - Keyed debouncing of edits
    rigol_dg.channel - Per-channel parameter model (apply/refresh)
    rigol_dg.families - Waveform and modulation parameter tables
    rigol_dg.generator - Two-channel generator front end
"""

__version__ = "1.0.0"

from .channel import ChannelModel, ChannelParameterSet, ChannelState
from .debounce import Debouncer
from .errors import (
    ApplyError,
    ConversionError,
    DivideByZero,
    RefreshError,
    TransportError,
)
from .families import Family
from .generator import Generator
from .transport import VisaSession

__all__ = [
    'ApplyError',
    'ChannelModel',
    'ChannelParameterSet',
    'ChannelState',
    'ConversionError',
    'Debouncer',
    'DivideByZero',
    'Family',
    'Generator',
    'RefreshError',
    'TransportError',
    'VisaSession',
]
