'''Divider and phase planning for the ECP5 EHXPLLL.

As far as anyone can tell from running frequencies through Lattice's
tools:

    f_pfd = f_in / refclk
    f_vco = f_pfd * feedback * output
    f_out = f_vco / output

I.e., the feedback is taken from the primary output CLKOP, and the secondary
outputs CLKOS, CLKOS2, CLKOS3 divide the same VCO.'''

from __future__ import annotations

from .pll_constants import *
from .pll_tools import SearchExhausted, fail, freq_to_str, range_warnings, \
    to_fraction, to_freq

import dataclasses
import enum
import io

from dataclasses import dataclass
from fractions import Fraction
from math import ceil, floor
from typing import TextIO

__all__ = 'Mode', 'PLLPlan', 'Secondary', 'SecondaryTarget', 'Target', \
    'add_secondary', 'plan', 'pll_plan', 'pll_plan_highres', 'report_plan', \
    'target_warnings'

class Mode(enum.Enum):
    SIMPLE = 'simple'
    # CLKOP only drives the feedback, the output comes from CLKOS.
    HIGHRES = 'highres'

@dataclass
class Secondary:
    name: str
    enabled: bool = False
    div: int = 0
    freq: Fraction = ZERO
    # Achieved and requested phase shift, in degrees.
    phase: Fraction = ZERO
    phase_target: Fraction = ZERO
    # Register values.  cphase includes the CLKOP shift.
    cphase: int = 0
    fphase: int = 0

    def phase_error(self) -> Fraction:
        return self.phase - self.phase_target

def default_secondary() -> list[Secondary]:
    return [Secondary(f'clkout{i}') for i in range(1, NUM_SECONDARY + 1)]

@dataclass
class PLLPlan:
    mode: Mode = Mode.SIMPLE
    # Input frequency.
    clkin: Fraction = ZERO
    # Requested primary output frequency.
    target: Fraction = ZERO
    refclk_div: int = 0
    feedback_div: int = 0
    output_div: int = 0
    vco: Fraction = ZERO
    # Achieved primary output frequency.  In highres mode this comes via
    # secondary[0].
    fout: Fraction = ZERO
    primary_cphase: int = DEFAULT_PRIMARY_CPHASE
    clkin_name: str = 'clkin'
    clkout0_name: str = 'clkout0'
    secondary: list[Secondary] = dataclasses.field(
        default_factory = default_secondary)

    def pfd(self) -> Fraction:
        return self.clkin / self.refclk_div

    def error(self) -> Fraction:
        return abs(self.fout - self.target)

    def output_divider(self) -> int:
        '''The divider that generates the primary output.'''
        if self.mode == Mode.HIGHRES:
            return self.secondary[0].div
        return self.output_div

    def __lt__(self, b: PLLPlan | None) -> bool:
        '''Less is better.  I.e., return True if self is better than b.'''
        if b is None:
            return True
        # Prefer smaller errors.
        a_error = self.error()
        b_error = b.error()
        if a_error != b_error:
            return a_error < b_error
        # Prefer the VCO near the middle of its range.
        a_df = abs(self.vco - VCO_NOMINAL)
        b_df = abs(b   .vco - VCO_NOMINAL)
        if a_df != b_df:
            return a_df < b_df
        # Prefer an even output divider, this gives exactly 50/50 duty cycle.
        a_even = self.output_divider() % 2 == 0
        b_even = b.output_divider() % 2 == 0
        if a_even != b_even:
            return a_even
        # Otherwise first found wins.
        return False

    def validate(self) -> None:
        assert 1 <= self.refclk_div <= REFCLK_DIV_MAX
        assert 1 <= self.feedback_div <= FEEDBACK_DIV_MAX
        assert 1 <= self.output_div <= OUTPUT_DIV_MAX
        assert PFD_MIN <= self.pfd() <= PFD_MAX
        assert VCO_MIN <= self.vco <= VCO_MAX
        assert self.vco == self.pfd() * self.feedback_div * self.output_div
        if self.mode == Mode.HIGHRES:
            assert OUTPUT_MIN <= self.vco / self.output_div <= OUTPUT_MAX
            assert self.secondary[0].enabled
            assert self.fout == self.vco / self.secondary[0].div
        else:
            assert self.fout == self.vco / self.output_div
        assert len(self.secondary) == NUM_SECONDARY
        for s in self.secondary:
            if s.enabled:
                assert 1 <= s.div <= OUTPUT_DIV_MAX
                assert s.freq == self.vco / s.div
                assert 0 <= s.fphase < FINE_PHASE_STEPS

@dataclass
class SecondaryTarget:
    name: str
    # None for output off.
    freq: Fraction | None = None
    phase: Fraction = ZERO

@dataclass
class Target:
    '''What the user asked for.'''
    clkin: Fraction
    clkout0: Fraction
    highres: bool = False
    clkin_name: str = 'clkin'
    clkout0_name: str = 'clkout0'
    secondary: list[SecondaryTarget] = dataclasses.field(
        default_factory = lambda: [SecondaryTarget(f'clkout{i}')
                                   for i in range(1, NUM_SECONDARY + 1)])

def vco_dividers(freq: Fraction) -> range:
    '''Output dividers putting the VCO in range, for a CLKOP frequency.'''
    low = max(1, ceil(VCO_MIN / freq))
    high = min(OUTPUT_DIV_MAX, floor(VCO_MAX / freq))
    return range(low, high + 1)

def nearest_dividers(vco: Fraction, target: Fraction) -> range:
    '''The error |vco / div - target| is unimodal in div, so only the two
    dividers either side of vco / target are candidates.'''
    ratio = vco / target
    low = min(max(1, floor(ratio)), OUTPUT_DIV_MAX)
    high = min(max(1, ceil(ratio)), OUTPUT_DIV_MAX)
    return range(low, high + 1)

def check_freqs(clkin: Fraction, target: Fraction) -> None:
    if clkin <= 0:
        fail(f'Input frequency must be positive, not {float(clkin)}')
    if target <= 0:
        fail(f'Output frequency must be positive, not {float(target)}')

def pll_plan(clkin: Fraction | float, target: Fraction | float) -> PLLPlan:
    '''Brute force search for the best refclk, feedback and output dividers.

    For a fixed output frequency, output dividers with the VCO out of range
    are never going to be used, so we only iterate over those in range.'''
    clkin = to_freq(clkin)
    target = to_freq(target)
    check_freqs(clkin, target)

    best = None
    for refclk_div in range(1, REFCLK_DIV_MAX + 1):
        pfd = clkin / refclk_div
        if not PFD_MIN <= pfd <= PFD_MAX:
            continue
        for feedback_div in range(1, FEEDBACK_DIV_MAX + 1):
            fout = pfd * feedback_div
            for output_div in vco_dividers(fout):
                vco = fout * output_div
                plan = PLLPlan(
                    clkin = clkin, target = target,
                    refclk_div = refclk_div, feedback_div = feedback_div,
                    output_div = output_div, vco = vco, fout = fout,
                    # CLKOP gets a 180° shift, in whole VCO cycles.
                    primary_cphase = floor(1 / fout / 2 * vco))
                if plan < best:
                    best = plan

    if best is None:
        raise SearchExhausted(
            f'No valid PLL configuration for {freq_to_str(clkin)} to '
            f'{freq_to_str(target)}')
    best.validate()
    return best

def pll_plan_highres(clkin: Fraction | float, target: Fraction | float,
                     name: str = 'clkout1') -> PLLPlan:
    '''Search for dividers, taking the output from CLKOS.

    CLKOP is used only for the feedback, and must still be in the output
    frequency range.  The VCO is then divided by the CLKOS divider, giving
    much finer control over the output frequency.  Note that the primary
    coarse phase is left at its default here.'''
    clkin = to_freq(clkin)
    target = to_freq(target)
    check_freqs(clkin, target)

    best = None
    for refclk_div in range(1, REFCLK_DIV_MAX + 1):
        pfd = clkin / refclk_div
        if not PFD_MIN <= pfd <= PFD_MAX:
            continue
        for feedback_div in range(1, FEEDBACK_DIV_MAX + 1):
            feedback = pfd * feedback_div
            if not OUTPUT_MIN <= feedback <= OUTPUT_MAX:
                continue
            for output_div in vco_dividers(feedback):
                vco = feedback * output_div
                for secondary_div in nearest_dividers(vco, target):
                    fout = vco / secondary_div
                    secondary = default_secondary()
                    secondary[0] = Secondary(
                        name = name, enabled = True, div = secondary_div,
                        freq = fout)
                    plan = PLLPlan(
                        mode = Mode.HIGHRES, clkin = clkin, target = target,
                        refclk_div = refclk_div, feedback_div = feedback_div,
                        output_div = output_div, vco = vco, fout = fout,
                        secondary = secondary)
                    if plan < best:
                        best = plan

    if best is None:
        raise SearchExhausted(
            f'No valid highres PLL configuration for {freq_to_str(clkin)} '
            f'to {freq_to_str(target)}')
    best.validate()
    return best

def add_secondary(plan: PLLPlan, channel: int, name: str,
                  freq: Fraction | float, phase: Fraction | float = 0) \
        -> PLLPlan:
    '''Return a copy of plan, with the secondary output channel set up.

    The VCO is already fixed, so the divider is just truncated, and the phase
    is quantised to eighths of a VCO cycle.'''
    if plan.mode != Mode.SIMPLE:
        fail('Secondary outputs are not available in highres mode')
    if not 0 <= channel < NUM_SECONDARY:
        fail(f'No secondary output channel {channel}')
    freq = to_freq(freq)
    if freq <= 0:
        fail(f'{name} frequency must be positive, not {float(freq)}')

    div = floor(plan.vco / freq)
    if not 1 <= div <= OUTPUT_DIV_MAX:
        fail(f'{name} frequency {freq_to_str(freq)} is not achievable from '
             f'VCO {freq_to_str(plan.vco)}')
    actual = plan.vco / div

    phase_target = to_fraction(phase) % 360
    # Phase shift as a count of VCO cycles.
    phase_count = phase_target / 360 * (1 / actual) * plan.vco
    cphase = floor(phase_count)
    fphase = floor((phase_count - cphase) * FINE_PHASE_STEPS)
    phase_actual = 360 * (cphase + Fraction(fphase, FINE_PHASE_STEPS)) \
        / plan.vco / (1 / actual)

    secondary = list(plan.secondary)
    secondary[channel] = Secondary(
        name = name, enabled = True, div = div, freq = actual,
        phase = phase_actual, phase_target = phase_target,
        cphase = cphase + plan.primary_cphase, fphase = fphase)
    return dataclasses.replace(plan, secondary = secondary)

def target_warnings(target: Target) -> list[str]:
    result = range_warnings(target.clkin, target.clkout0)
    if target.highres and any(s.freq is not None for s in target.secondary):
        result.append('Cannot specify secondary frequency in highres mode, '
                      'ignoring it')
    return result

def plan(target: Target) -> PLLPlan:
    if target.highres:
        p = pll_plan_highres(target.clkin, target.clkout0,
                             target.secondary[0].name)
    else:
        p = pll_plan(target.clkin, target.clkout0)
        for i, s in enumerate(target.secondary):
            if s.freq is not None:
                p = add_secondary(p, i, s.name, s.freq, s.phase)

    p = dataclasses.replace(p, clkin_name = target.clkin_name,
                            clkout0_name = target.clkout0_name)
    p.validate()
    return p

def freq_error_str(error: Fraction) -> str:
    sign = '-' if error < 0 else '+'
    return sign + freq_to_str(abs(error), 6)

def report_plan(plan: PLLPlan, file: TextIO | None = None) -> None:
    print('PLL parameters:', file=file)
    print(f'Refclk divisor: {plan.refclk_div}', file=file)
    print(f'Feedback divisor: {plan.feedback_div}', file=file)
    if plan.mode == Mode.HIGHRES:
        print(f'Feedback output divisor: {plan.output_div}', file=file)
        print(f'{plan.clkout0_name} divisor: {plan.secondary[0].div}',
              file=file)
    else:
        print(f'{plan.clkout0_name} divisor: {plan.output_div}', file=file)
    print(f'{plan.clkout0_name} frequency: {freq_to_str(plan.fout)}',
          end='', file=file)
    if plan.fout != plan.target:
        print(f' error {freq_error_str(plan.fout - plan.target)}',
              end='', file=file)
    print(file=file)

    if plan.mode == Mode.SIMPLE:
        for s in plan.secondary:
            if not s.enabled:
                continue
            print(f'{s.name} divisor: {s.div}', file=file)
            print(f'{s.name} frequency: {freq_to_str(s.freq)}', file=file)
            print(f'{s.name} phase shift: {float(s.phase):g} degrees',
                  end='', file=file)
            if s.phase != s.phase_target:
                print(f' (requested {float(s.phase_target):g}, '
                      f'error {float(s.phase_error()):g})', end='', file=file)
            print(file=file)

    print(f'VCO frequency: {freq_to_str(plan.vco)}', file=file)

def test_12_48() -> None:
    p = pll_plan(12, 48)
    assert (p.refclk_div, p.feedback_div, p.output_div) == (1, 4, 12)
    assert p.vco == 576 * MHz
    assert p.fout == 48 * MHz
    # 180° of 48MHz is 6 cycles of 576MHz.
    assert p.primary_cphase == 6

def test_12_60() -> None:
    p = pll_plan(12 * MHz, 60 * MHz)
    assert (p.refclk_div, p.feedback_div, p.output_div) == (1, 5, 10)
    assert p.vco == 600 * MHz
    assert p.primary_cphase == 5

def test_200_400() -> None:
    # VCO of 400 and 800 are equally far from nominal, take the even divider.
    p = pll_plan(200, 400)
    assert (p.refclk_div, p.feedback_div, p.output_div) == (1, 2, 2)
    assert p.vco == 800 * MHz

def test_exhausted() -> None:
    for search in pll_plan, pll_plan_highres:
        try:
            search(1, Fraction(1, 2))
            assert False, 'Should have raised'
        except SearchExhausted as e:
            assert 'No valid' in str(e)

def test_bad_freqs() -> None:
    from .pll_tools import PlanningFailed
    for clkin, target in (0, 48), (12, 0), (-12, 48):
        try:
            pll_plan(clkin, target)
            assert False, 'Should have raised'
        except PlanningFailed:
            pass

def test_table() -> None:
    # Rows where we agree with Lattice's tools.
    for clkin, fout, refclk, feedback, output, vco in (
            (12, 48, 1, 4, 12, 576),
            (12, 60, 1, 5, 10, 600),
            (20, 30, 2, 3, 20, 600),
            (45, 30, 3, 2, 20, 600),
            (200, 400, 1, 2, 2, 800),
            (70, 40, 7, 4, 15, 600),
            (12, 96, 1, 8, 6, 576),
            (90, 40, 9, 4, 15, 600),
            (43, 86, 1, 2, 7, 602)):
        p = pll_plan(clkin, fout)
        assert (p.refclk_div, p.feedback_div, p.output_div, p.vco) == \
            (refclk, feedback, output, vco * MHz), f'{clkin} {fout} {p}'
        assert p.fout == fout

def test_in_bounds() -> None:
    for clkin in PFD_MIN, 8, 27, Fraction(100, 3), 400, \
            PFD_MAX * REFCLK_DIV_MAX:
        for target in 1, Fraction(1000, 7), 1000:
            p = pll_plan(clkin, target)
            p.validate()
            assert PFD_MIN <= p.pfd() <= PFD_MAX
            assert VCO_MIN <= p.vco <= VCO_MAX

def test_deterministic() -> None:
    a = pll_plan(Fraction(25, 2), Fraction(1000, 7))
    b = pll_plan(Fraction(25, 2), Fraction(1000, 7))
    assert a == b
    assert repr(a) == repr(b)

def test_tie_break() -> None:
    def make(vco: int, output_div: int, fout: int = 48) -> PLLPlan:
        return PLLPlan(clkin = 12 * MHz, target = 48 * MHz, refclk_div = 1,
                       feedback_div = 4, output_div = output_div,
                       vco = vco * MHz, fout = fout * MHz)
    near = make(590, 12)
    far = make(615, 13)
    same = make(590, 12)
    assert near < far
    assert not far < near
    assert not near < same and not same < near
    # Error always wins over VCO.
    assert make(400, 8) < make(600, 12, fout = 49)
    # Equally far from nominal, prefer an even divider.
    assert make(576, 12) < make(624, 13)
    assert not make(624, 13) < make(576, 12)
    assert near < None

def test_secondary_half() -> None:
    p = pll_plan(12, 48)
    p2 = add_secondary(p, 0, 'clk24', 24, 180)
    s = p2.secondary[0]
    assert s.enabled and s.name == 'clk24'
    assert s.div == 24 and s.freq == 24
    assert s.phase == 180 and s.phase_error() == 0
    # 12 VCO cycles for the shift, plus CLKOP's 180° shift of 6.
    assert s.cphase == 12 + p.primary_cphase == 18
    assert s.fphase == 0
    # Not modified in place.
    assert not p.secondary[0].enabled
    p2.validate()

def test_secondary_quantised() -> None:
    p = add_secondary(pll_plan(12, 48), 1, 'clk24', 24, 100)
    s = p.secondary[1]
    # 100/360 * 24 = 6.67 VCO cycles -> 6 + 5/8.
    assert s.cphase - p.primary_cphase == 6
    assert s.fphase == 5
    assert s.phase == Fraction(795, 8)
    assert s.phase_error() == Fraction(-5, 8)
    buf = io.StringIO()
    report_plan(p, buf)
    assert 'clk24 phase shift: 99.375 degrees (requested 100, error -0.625)' \
        in buf.getvalue()

def test_phase_step() -> None:
    p = pll_plan(12, 60)
    for freq in 60, 50, 33, Fraction(75, 2):
        for phase in range(0, 360, 7):
            s = add_secondary(p, 2, 'x', freq, phase).secondary[2]
            step = Fraction(360, FINE_PHASE_STEPS * s.div)
            assert 0 <= s.phase_target - s.phase < step
            assert 0 <= s.fphase < FINE_PHASE_STEPS
    # Negative phases wrap around.
    s = add_secondary(p, 0, 'x', 60, -90).secondary[0]
    assert s.phase_target == 270

def test_secondary_independent() -> None:
    p = pll_plan(12, 48)
    a = add_secondary(p, 0, 'a', 24, 90)
    b = add_secondary(add_secondary(p, 1, 'b', 12), 0, 'a', 24, 90)
    c = add_secondary(b, 2, 'c', 96, 45)
    assert a.secondary[0] == b.secondary[0] == c.secondary[0]
    assert b.secondary[1] == c.secondary[1]
    assert not a.secondary[1].enabled and not a.secondary[2].enabled
    assert (c.refclk_div, c.feedback_div, c.output_div, c.vco) == \
        (p.refclk_div, p.feedback_div, p.output_div, p.vco)

def test_secondary_fail() -> None:
    from .pll_tools import PlanningFailed
    p = pll_plan(12, 48)
    for channel, freq in (0, 1000), (1, 1), (3, 24), (0, 0):
        try:
            add_secondary(p, channel, 'x', freq)
            assert False, 'Should have raised'
        except PlanningFailed:
            pass
    try:
        add_secondary(pll_plan_highres(12, 7), 1, 'x', 24)
        assert False, 'Should have raised'
    except PlanningFailed:
        pass

def test_highres() -> None:
    # 7MHz isn't a multiple of the possible PFD frequencies, so needs highres.
    simple = pll_plan(12, 7)
    assert simple.error() != 0
    p = pll_plan_highres(12, 7)
    assert p.mode == Mode.HIGHRES
    assert p.fout == 7 * MHz
    assert p.vco == 588 * MHz
    s = p.secondary[0]
    assert s.enabled and s.div == 84 and s.freq == 7 and s.name == 'clkout1'
    assert OUTPUT_MIN <= p.vco / p.output_div <= OUTPUT_MAX
    # No 180° shift calculated in highres mode.
    assert p.primary_cphase == DEFAULT_PRIMARY_CPHASE
    assert not p.secondary[1].enabled and not p.secondary[2].enabled

def test_highres_in_bounds() -> None:
    for clkin in 8, 12, 27, 100:
        for target in Fraction(10007, 1000), 33, Fraction(1000, 7), 400:
            p = pll_plan_highres(clkin, target, 'hr')
            p.validate()
            assert p.secondary[0].name == 'hr'

def test_plan() -> None:
    target = Target(clkin = 12 * MHz, clkout0 = 48 * MHz,
                    clkin_name = 'clk12', clkout0_name = 'clk48')
    target.secondary[0].freq = 24 * MHz
    target.secondary[0].phase = Fraction(90)
    target.secondary[2].freq = 96 * MHz
    p = plan(target)
    assert p.clkin_name == 'clk12' and p.clkout0_name == 'clk48'
    assert p.secondary[0].enabled and p.secondary[0].name == 'clkout1'
    assert not p.secondary[1].enabled
    assert p.secondary[2].enabled and p.secondary[2].div == 6
    assert target_warnings(target) == []

    # Secondaries are ignored in highres mode.
    target.highres = True
    target.clkout0 = 7 * MHz
    p = plan(target)
    assert p.mode == Mode.HIGHRES
    assert p.secondary[0].div == 84
    assert not p.secondary[2].enabled
    warnings = target_warnings(target)
    assert len(warnings) == 2
    assert warnings[0].startswith('Output frequency 7 MHz')
    assert 'highres' in warnings[1]

def test_report() -> None:
    buf = io.StringIO()
    report_plan(plan(Target(clkin = 12 * MHz, clkout0 = 48 * MHz)), buf)
    assert buf.getvalue() == '''PLL parameters:
Refclk divisor: 1
Feedback divisor: 4
clkout0 divisor: 12
clkout0 frequency: 48 MHz
VCO frequency: 576 MHz
'''
    buf = io.StringIO()
    report_plan(pll_plan(12, 49), buf)
    assert 'clkout0 frequency: 48 MHz error -1 MHz\n' in buf.getvalue()
