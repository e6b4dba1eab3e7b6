from .pll_constants import INPUT_MAX, INPUT_MIN, OUTPUT_MAX, OUTPUT_MIN, \
    Hz, MHz, kHz

from fractions import Fraction
from typing import NoReturn

class PlanningFailed(RuntimeError):
    pass

class SearchExhausted(PlanningFailed):
    '''No divider combination meets the PFD and VCO limits.'''

def fail(why: str) -> NoReturn:
    raise PlanningFailed(why)

def to_fraction(f: Fraction | int | float) -> Fraction:
    '''Accept whatever the caller has, and make it an exact value.'''
    if isinstance(f, float):
        # Use the decimal meaning, not the binary expansion.
        return Fraction(repr(f))
    return Fraction(f)

def to_freq(f: Fraction | int | float | str) -> Fraction:
    if isinstance(f, str):
        return str_to_freq(f)
    return to_fraction(f)

def str_to_freq(s: str) -> Fraction:
    s = s.lower()
    for suffix, scale in ('khz', 1000), ('mhz', 1000_000), \
            ('ghz', 1000_000_000), ('hz', 1):
        if s.endswith(suffix):
            break
        if suffix != 'hz' and s.endswith(suffix[0]):
            suffix = suffix[0]
            break
    else:
        suffix = ''
        scale = 1000000

    return Fraction(s.removesuffix(suffix)) * scale / (1000000 * MHz)

# Set the name of str_to_freq to give sensible argparse help test.
str_to_freq.__name__ = 'frequency'

FRACTIONS = {
    Fraction(0): '',
    Fraction(1, 2): '½',
    Fraction(1, 3): '⅓',
    Fraction(2, 3): '⅔',
    Fraction(1, 4): '¼',
    Fraction(3, 4): '¾',
    Fraction(1, 8): '⅛',
}

def freq_to_str(freq: Fraction, precision: int = 0) -> str:
    if freq >= MHz:
        scaled = freq / MHz
        suffix = 'MHz'
    elif freq >= kHz:
        scaled = freq / kHz
        suffix = 'kHz'
    else:
        scaled = freq / Hz
        suffix = 'Hz'

    fract = Fraction(scaled % 1)
    if fract in FRACTIONS:
        return f'{int(scaled)}{FRACTIONS[fract]} {suffix}'
    elif fract.denominator <= 19:
        return f'{int(scaled)}+{fract} {suffix}'
    elif precision == 0:
        return f'{float(scaled)} {suffix}'
    else:
        return f'{float(scaled):.{precision}g} {suffix}'

def range_warnings(clkin: Fraction, clkout: Fraction) -> list[str]:
    '''Check the input and output against the documented operating range.'''
    result = []
    if not INPUT_MIN <= clkin <= INPUT_MAX:
        result.append(f'Input frequency {freq_to_str(clkin)} not in range '
                      f'({freq_to_str(INPUT_MIN)}, {freq_to_str(INPUT_MAX)})')
    if not OUTPUT_MIN <= clkout <= OUTPUT_MAX:
        result.append(f'Output frequency {freq_to_str(clkout)} not in range '
                      f'({freq_to_str(OUTPUT_MIN)}, {freq_to_str(OUTPUT_MAX)})')
    return result

def test_str_to_freq() -> None:
    assert str_to_freq('12') == 12 * MHz
    assert str_to_freq('25/2') == Fraction(25, 2) * MHz
    assert str_to_freq('32768Hz') == 32768 * Hz
    assert str_to_freq('100k') == 100 * kHz
    assert str_to_freq('1.5GHz') == 1500 * MHz
    assert str_to_freq('48MHz') == 48 * MHz

def test_to_freq() -> None:
    assert to_freq(12) == 12 * MHz
    assert to_freq(0.1) == Fraction(1, 10)
    assert to_freq('125/2') == Fraction(125, 2)
    assert to_freq('500kHz') == Fraction(1, 2)
    assert to_freq(Fraction(7, 3)) == Fraction(7, 3)
    assert to_fraction(22.5) == Fraction(45, 2)

def test_freq_to_str() -> None:
    assert freq_to_str(576 * MHz) == '576 MHz'
    assert freq_to_str(Fraction(25, 2)) == '12½ MHz'
    assert freq_to_str(Fraction(100, 3)) == '33⅓ MHz'
    assert freq_to_str(Fraction(200, 7)) == '28+4/7 MHz'
    assert freq_to_str(500 * kHz) == '500 kHz'
    assert freq_to_str(Fraction(1000, 1000003), 4) == '1000 Hz'
    assert freq_to_str(Fraction(123456789, 1000000)) == '123.456789 MHz'

def test_range_warnings() -> None:
    assert range_warnings(12 * MHz, 48 * MHz) == []
    assert range_warnings(8 * MHz, 400 * MHz) == []
    w = range_warnings(1 * MHz, 500 * kHz)
    assert len(w) == 2
    assert w[0].startswith('Input frequency 1 MHz')
    assert w[1].startswith('Output frequency 500 kHz')
