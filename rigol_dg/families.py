"""
Waveform and modulation families of the DG2000 series.

Each family is a ``FamilySpec``: an optional function selection command and a
parameter table. Table rows follow the instrument's SCPI spelling verbatim.
The enable row (priority ENABLE) is always sent last by ``ChannelModel``.
"""

from enum import Enum
from typing import Tuple

from .channel import ENABLE, SELECT, FamilySpec, Param, Type

SOURCES = ('INTernal', 'EXTernal')
MOD_FUNCTIONS = ('SINusoid', 'SQUare', 'TRIangle', 'RAMP', 'NRAMp', 'NOISe', 'USER')
HARMONIC_TYPES = ('EVEN', 'ODD', 'ALL', 'USER')
HARMONICS = tuple(range(2, 9))
ARB_WAVEFORMS = (
    'SINC', 'GAUSS', 'LORENTZ', 'EXPRISE', 'EXPFALL', 'HAVERSINE', 'CARDIAC', 'QUAKE',
    'BANDLIMITED', 'GAMMA', 'VOICE', 'TV', 'HAMMING', 'HANNING', 'KAISER', 'USER',
)

# Shared rows of the continuous families
FREQUENCY = Param('frequency', Type.FREQUENCY, 'SOURCE{ch}:FREQuency', 1000.0, 'Hz')
AMPLITUDE = Param('amplitude', Type.AMPLITUDE, 'SOURCE{ch}:VOLTAGE', 1.0, 'Vpp')
OFFSET = Param('offset', Type.OFFSET, 'SOURCE{ch}:VOLTAGE:OFFSET', 0.0, 'V')
PHASE = Param('phase', Type.UNITLESS, 'SOURCE{ch}:PHASE', 0.0)
OUTPUT = Param('output', Type.BOOLEAN, 'OUTPUT{ch}', False, priority=ENABLE)
# Output load has no default; it is sent only once staged or refreshed
LOAD = Param('load', Type.IMPEDANCE, 'OUTPUT{ch}:IMPedance')


def _harmonic_rows() -> Tuple[Param, ...]:
    # Set as 'HARM:AMPL <n>,<value>', queried as 'HARM:AMPL? <n>'
    rows = []
    for n in HARMONICS:
        rows.append(Param(f'amplitude_{n}', Type.AMPLITUDE, 'SOURCE{ch}:HARM:AMPL', 0.1, 'Vpp', index=n))
        rows.append(Param(f'phase_{n}', Type.UNITLESS, 'SOURCE{ch}:HARM:PHASE', 0.0, index=n))
    return tuple(rows)


def _modulation(name: str, key: str, *params: Param, internal: bool = True) -> FamilySpec:
    """
    Build a modulation family: source first, then ``params``, then the
    internal modulating function/frequency (sent only for an internal
    source), then the state toggle.
    """
    rows = [Param('source', Type.STRING, f'SOURCE{{ch}}:{key}:SOURCE', 'INTernal',
                  valid=SOURCES, priority=SELECT)]
    rows.extend(params)
    if internal:
        rows += [
            Param('function', Type.STRING, f'SOURCE{{ch}}:{key}:INTERNAL:FUNCTION', 'SINusoid',
                  valid=MOD_FUNCTIONS, only_if=('source', 'INT')),
            Param('mod_frequency', Type.FREQUENCY, f'SOURCE{{ch}}:{key}:INTERNAL:FREQUENCY',
                  100.0 if key == 'AM' else 10.0, 'Hz', only_if=('source', 'INT')),
        ]
    rows.append(Param('state', Type.BOOLEAN, f'SOURCE{{ch}}:{key}:STATE', False, priority=ENABLE))
    return FamilySpec(name, tuple(rows))


class Family(Enum):
    """Closed set of supported families; values are their ``FamilySpec``."""

    SINE = FamilySpec('SINE', (FREQUENCY, AMPLITUDE, OFFSET, PHASE, LOAD, OUTPUT),
                      select='SOURCE{ch}:APPLY:SIN')

    SQUARE = FamilySpec('SQUARE', (
        FREQUENCY, AMPLITUDE, OFFSET, PHASE,
        Param('duty', Type.UNITLESS, 'SOURCE{ch}:FUNCTION:SQUARE:DCYCLE', 50.0, clamp=(0.0, 100.0)),
        LOAD, OUTPUT,
    ), select='SOURCE{ch}:APPLY:SQU')

    RAMP = FamilySpec('RAMP', (
        FREQUENCY, AMPLITUDE, OFFSET, PHASE,
        Param('symmetry', Type.UNITLESS, 'SOURCE{ch}:FUNCTION:RAMP:SYMMETRY', 50.0, clamp=(0.0, 100.0)),
        LOAD, OUTPUT,
    ), select='SOURCE{ch}:APPLY:RAMP')

    # Pulses are defined by period and width rather than frequency
    PULSE = FamilySpec('PULSE', (
        Param('period', Type.PERIOD, 'SOURCE{ch}:PERiod', 1.0, 'ms'),
        Param('width', Type.PERIOD, 'SOURCE{ch}:PULSE:WIDTH', 500.0, 'ns'),
        Param('rise', Type.PERIOD, 'SOURCE{ch}:PULSE:TRANSITION:LEADING', 20.0, 'ns'),
        Param('fall', Type.PERIOD, 'SOURCE{ch}:PULSE:TRANSITION:TRAILING', 20.0, 'ns'),
        AMPLITUDE, OFFSET, PHASE, LOAD, OUTPUT,
    ), select='SOURCE{ch}:APPLY:PULS')

    NOISE = FamilySpec('NOISE', (AMPLITUDE, OFFSET, LOAD, OUTPUT), select='SOURCE{ch}:APPLY:NOIS')

    # The DC level is carried by the offset
    DC = FamilySpec('DC', (
        Param('level', Type.OFFSET, 'SOURCE{ch}:VOLTAGE:OFFSET', 0.0, 'V'),
        LOAD, OUTPUT,
    ), select='SOURCE{ch}:APPLY:DC')

    DUALTONE = FamilySpec('DUALTONE', (
        Param('frequency', Type.FREQUENCY, 'SOURce{ch}:FUNCtion:DUALTONE:FREQ1', 1000.0, 'Hz'),
        Param('frequency2', Type.FREQUENCY, 'SOURce{ch}:FUNCtion:DUALTONE:FREQ2', 2000.0, 'Hz'),
        Param('amplitude', Type.AMPLITUDE, 'SOURce{ch}:VOLTage', 1.0, 'Vpp'),
        Param('offset', Type.OFFSET, 'SOURce{ch}:VOLTage:OFFSet', 0.0, 'V'),
        Param('phase', Type.UNITLESS, 'SOURce{ch}:PHASe', 0.0),
        LOAD, OUTPUT,
    ), select='SOURce{ch}:FUNCtion DUALTONE')

    # A sine carrier plus harmonics 2..8
    HARMONIC = FamilySpec('HARMONIC', (
        FREQUENCY, AMPLITUDE, OFFSET, PHASE,
        Param('type', Type.STRING, 'SOURCE{ch}:HARM:TYPE', 'ALL', valid=HARMONIC_TYPES),
        Param('order', Type.INTEGER, 'SOURCE{ch}:HARM:ORDER', 2, clamp=(HARMONICS[0], HARMONICS[-1])),
        Param('user_mask', Type.STRING, 'SOURCE{ch}:HARM:USER', 'X000000', only_if=('type', 'USER')),
        *_harmonic_rows(),
        Param('harmonics', Type.BOOLEAN, 'SOURCE{ch}:HARM:STAT', True),
        LOAD, OUTPUT,
    ), select='SOURCE{ch}:APPLY:SIN')

    # Built-in arbitrary waveforms, selected by name
    ARBITRARY = FamilySpec('ARBITRARY', (
        Param('waveform', Type.STRING, 'SOURCE{ch}:FUNCtion', 'SINC', valid=ARB_WAVEFORMS),
        FREQUENCY, AMPLITUDE, OFFSET, PHASE, LOAD, OUTPUT,
    ), select='SOURCE{ch}:APPLY:USER')

    # Modulation depth is not clamped; the device accepts 0-120 %
    AM = _modulation('AM', 'AM', Param('depth', Type.UNITLESS, 'SOURCE{ch}:AM:DEPTH', 100.0))
    FM = _modulation('FM', 'FM', Param('deviation', Type.FREQUENCY, 'SOURCE{ch}:FM:DEVIATION', 1.0, 'Hz'))
    PM = _modulation('PM', 'PM', Param('deviation', Type.UNITLESS, 'SOURCE{ch}:PM:DEVIATION', 90.0))
    PWM = _modulation('PWM', 'PWM', Param('duty', Type.UNITLESS, 'SOURCE{ch}:PWM:DUTY', 50.0))
    ASK = _modulation('ASK', 'ASKey', Param('rate', Type.FREQUENCY, 'SOURCE{ch}:ASKey:RATE', 100.0, 'Hz'),
                      internal=False)
    FSK = _modulation('FSK', 'FSKey',
                      Param('rate', Type.FREQUENCY, 'SOURCE{ch}:FSKey:RATE', 100.0, 'Hz'),
                      Param('hop_frequency', Type.FREQUENCY, 'SOURCE{ch}:FSKey:FREQUENCY', 1000.0, 'Hz'),
                      internal=False)
    PSK = _modulation('PSK', 'PSKey',
                      Param('rate', Type.FREQUENCY, 'SOURCE{ch}:PSKey:RATE', 100.0, 'Hz'),
                      Param('phase', Type.UNITLESS, 'SOURCE{ch}:PSKey:PHASE', 180.0),
                      internal=False)

    @property
    def spec(self) -> FamilySpec:
        return self.value

    @property
    def is_modulation(self) -> bool:
        return self.value.select is None


CONTINUOUS = tuple(f for f in Family if not f.is_modulation)
MODULATION = tuple(f for f in Family if f.is_modulation)
