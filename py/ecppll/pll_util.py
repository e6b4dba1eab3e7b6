from .pll_constants import MHz
from .pll_plan import SecondaryTarget, Target, plan, report_plan, \
    target_warnings
from .pll_tools import PlanningFailed, str_to_freq
from .verilog import write_verilog

import argparse
import sys

from fractions import Fraction
from typing import Sequence

def degrees(s: str) -> Fraction:
    return Fraction(s)
degrees.__name__ = 'phase in degrees'

def add_to_argparse(argp: argparse.ArgumentParser) -> None:
    argp.add_argument('-n', '--module', metavar='NAME', default='pll',
                      help='Verilog module name')
    argp.add_argument('--clkin_name', metavar='NAME', default='clkin',
                      help='Input signal name')
    argp.add_argument('-i', '--clkin', metavar='FREQ', type=str_to_freq,
                      required=True, help='Input frequency')
    argp.add_argument('--clkout0_name', metavar='NAME', default='clkout0',
                      help='Primary Output(0) signal name')
    argp.add_argument('-o', '--clkout0', metavar='FREQ', type=str_to_freq,
                      required=True, help='Primary Output(0) frequency')
    for i in 1, 2, 3:
        argp.add_argument(f'--clkout{i}_name', metavar='NAME',
                          default=f'clkout{i}',
                          help=f'Secondary Output({i}) signal name')
        argp.add_argument(f'--clkout{i}', metavar='FREQ', type=str_to_freq,
                          help=f'Secondary Output({i}) frequency')
        argp.add_argument(f'--phase{i}', metavar='DEG', type=degrees,
                          default=Fraction(0),
                          help=f'Secondary Output({i}) phase in degrees')
    argp.add_argument('-f', '--file', metavar='FILE',
                      help='Write Verilog module to FILE')
    argp.add_argument('--highres', action='store_true',
                      help='Use secondary PLL output for higher frequency '
                      'resolution')

def make_parser() -> argparse.ArgumentParser:
    argp = argparse.ArgumentParser(
        description='ECP5 PLL configuration calculator',
        epilog='''Frequencies can be specified as either a fraction (25/2) or
        a decimal number (12.5), with an optional unit that defaults to
        MHz.''')
    add_to_argparse(argp)
    return argp

def make_target(args: argparse.Namespace) -> Target:
    secondary = []
    for i in 1, 2, 3:
        secondary.append(SecondaryTarget(
            name = getattr(args, f'clkout{i}_name'),
            freq = getattr(args, f'clkout{i}'),
            phase = getattr(args, f'phase{i}')))
    return Target(clkin = args.clkin, clkout0 = args.clkout0,
                  highres = args.highres, clkin_name = args.clkin_name,
                  clkout0_name = args.clkout0_name, secondary = secondary)

def run_command(args: argparse.Namespace) -> int:
    target = make_target(args)
    for warning in target_warnings(target):
        print('Warning:', warning, file=sys.stderr)

    try:
        p = plan(target)
    except PlanningFailed as e:
        print('Error:', e, file=sys.stderr)
        return 1

    report_plan(p)
    if args.file is not None:
        write_verilog(p, args.module, args.file)
    return 0

def main(argv: Sequence[str] | None = None) -> int:
    args = make_parser().parse_args(argv)
    return run_command(args)

def test_parse() -> None:
    args = make_parser().parse_args(
        '-i 12 -o 48MHz --clkout2 24 --phase2 22.5 --clkout2_name x'.split())
    target = make_target(args)
    assert target.clkin == 12 * MHz and target.clkout0 == 48 * MHz
    assert not target.highres
    assert target.secondary[0].freq is None
    assert target.secondary[1] == SecondaryTarget('x', 24 * MHz,
                                                  Fraction(45, 2))
    assert target.secondary[2].name == 'clkout3'
    assert args.module == 'pll' and args.file is None

def test_missing(capsys) -> None:
    for argv in [], ['-i', '12'], ['-o', '48']:
        try:
            main(argv)
            assert False, 'Should have exited'
        except SystemExit as e:
            assert e.code != 0
    assert 'required' in capsys.readouterr().err

def test_main(capsys, tmp_path) -> None:
    path = tmp_path / 'pll.v'
    assert main(['-i', '12', '-o', '60', '-n', 'top_pll',
                 '-f', str(path)]) == 0
    out = capsys.readouterr()
    assert out.err == ''
    assert 'Feedback divisor: 5\n' in out.out
    assert 'VCO frequency: 600 MHz\n' in out.out
    assert path.read_text().startswith('module top_pll\n')

def test_warnings(capsys) -> None:
    assert main(['-i', '5', '-o', '20', '--highres', '--clkout1', '10']) == 0
    err = capsys.readouterr().err
    assert 'Warning: Input frequency 5 MHz not in range' in err
    assert 'Warning: Cannot specify secondary frequency in highres mode' in err

def test_exhausted(capsys, tmp_path) -> None:
    path = tmp_path / 'pll.v'
    assert main(['-i', '1', '-o', '0.5', '-f', str(path)]) == 1
    out = capsys.readouterr()
    assert 'Error: No valid PLL configuration' in out.err
    assert out.out == ''
    assert not path.exists()
