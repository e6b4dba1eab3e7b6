'''Verilog wrapper module for an EHXPLLL instance.

The text produced here is consumed by yosys/nextpnr, so the parameter names
and values have to stay exactly as they are.'''

from .pll_plan import Mode, PLLPlan, Target, pll_plan, plan
from .pll_constants import MHz

from fractions import Fraction

# Suffixes for the CLKOS outputs.
CLKOS = '', '2', '3'

def num(f: Fraction) -> str:
    # Same as a C++ ostream.
    return f'{float(f):g}'

def make_verilog(plan: PLLPlan, name: str = 'pll') -> str:
    highres = plan.mode == Mode.HIGHRES
    lines = [f'module {name}', '(']
    lines.append(f'    input {plan.clkin_name}, // {num(plan.clkin)} MHz, 0 deg')
    lines.append(
        f'    output {plan.clkout0_name}, // {num(plan.fout)} MHz, 0 deg')
    for i, s in enumerate(plan.secondary):
        # In highres mode, CLKOS is clkout0.
        if s.enabled and not (i == 0 and highres):
            lines.append(f'    output {s.name}, // {num(s.freq)} MHz, '
                         f'{num(s.phase)} deg')
    lines.append('    output locked')
    lines.append(');')
    lines.append('wire clkfb;')
    lines.append('wire clkos;')
    lines.append('wire clkop;')
    lines.append('(* ICP_CURRENT="12" *) (* LPF_RESISTOR="8" *) '
                 '(* MFG_ENABLE_FILTEROPAMP="1" *) (* MFG_GMCREF_SEL="2" *)')
    lines.append('EHXPLLL #(')
    params = [
        ('PLLRST_ENA', '"DISABLED"'),
        ('INTFB_WAKE', '"DISABLED"'),
        ('STDBY_ENABLE', '"DISABLED"'),
        ('DPHASE_SOURCE', '"DISABLED"'),
        ('CLKOP_FPHASE', 0),
        ('CLKOP_CPHASE', plan.primary_cphase),
        ('OUTDIVIDER_MUXA', '"DIVA"'),
        ('CLKOP_ENABLE', '"ENABLED"'),
        ('CLKOP_DIV', plan.output_div)]
    for suffix, s in zip(CLKOS, plan.secondary):
        if not s.enabled:
            continue
        params.append((f'CLKOS{suffix}_ENABLE', '"ENABLED"'))
        params.append((f'CLKOS{suffix}_DIV', s.div))
        params.append((f'CLKOS{suffix}_CPHASE', s.cphase))
        params.append((f'CLKOS{suffix}_FPHASE', s.fphase))
    params.append(('CLKFB_DIV', plan.feedback_div))
    params.append(('CLKI_DIV', plan.refclk_div))
    params.append(('FEEDBK_PATH', '"INT_OP"'))
    lines.append(',\n'.join(f'        .{k}({v})' for k, v in params))

    lines.append('    ) pll_i (')
    ports = [
        ('CLKI', plan.clkin_name),
        ('CLKFB', 'clkfb'),
        ('CLKINTFB', 'clkfb'),
        ('CLKOP', 'clkop')]
    for i, (suffix, s) in enumerate(zip(CLKOS, plan.secondary)):
        if not s.enabled:
            continue
        ports.append((f'CLKOS{suffix}',
                      'clkos' if i == 0 and highres else s.name))
    for port in 'RST', 'STDBY', 'PHASESEL0', 'PHASESEL1', 'PHASEDIR', \
            'PHASESTEP', 'PLLWAKESYNC', 'ENCLKOP':
        ports.append((port, "1'b0"))
    ports.append(('LOCK', 'locked'))
    lines.append(',\n'.join(f'        .{k}({v})' for k, v in ports))

    lines.append('\t);')
    lines.append(
        f'assign {plan.clkout0_name} = {"clkos" if highres else "clkop"};')
    lines.append('endmodule')
    return '\n'.join(lines) + '\n'

def write_verilog(plan: PLLPlan, name: str, path: str) -> None:
    with open(path, 'w') as f:
        f.write(make_verilog(plan, name))

def test_simple() -> None:
    target = Target(clkin = 12 * MHz, clkout0 = 48 * MHz)
    target.secondary[0].freq = 24 * MHz
    target.secondary[0].phase = Fraction(180)
    v = make_verilog(plan(target))
    assert v == '''module pll
(
    input clkin, // 12 MHz, 0 deg
    output clkout0, // 48 MHz, 0 deg
    output clkout1, // 24 MHz, 180 deg
    output locked
);
wire clkfb;
wire clkos;
wire clkop;
(* ICP_CURRENT="12" *) (* LPF_RESISTOR="8" *) (* MFG_ENABLE_FILTEROPAMP="1" *) (* MFG_GMCREF_SEL="2" *)
EHXPLLL #(
        .PLLRST_ENA("DISABLED"),
        .INTFB_WAKE("DISABLED"),
        .STDBY_ENABLE("DISABLED"),
        .DPHASE_SOURCE("DISABLED"),
        .CLKOP_FPHASE(0),
        .CLKOP_CPHASE(6),
        .OUTDIVIDER_MUXA("DIVA"),
        .CLKOP_ENABLE("ENABLED"),
        .CLKOP_DIV(12),
        .CLKOS_ENABLE("ENABLED"),
        .CLKOS_DIV(24),
        .CLKOS_CPHASE(18),
        .CLKOS_FPHASE(0),
        .CLKFB_DIV(4),
        .CLKI_DIV(1),
        .FEEDBK_PATH("INT_OP")
    ) pll_i (
        .CLKI(clkin),
        .CLKFB(clkfb),
        .CLKINTFB(clkfb),
        .CLKOP(clkop),
        .CLKOS(clkout1),
        .RST(1'b0),
        .STDBY(1'b0),
        .PHASESEL0(1'b0),
        .PHASESEL1(1'b0),
        .PHASEDIR(1'b0),
        .PHASESTEP(1'b0),
        .PLLWAKESYNC(1'b0),
        .ENCLKOP(1'b0),
        .LOCK(locked)
	);
assign clkout0 = clkop;
endmodule
'''

def test_all_outputs() -> None:
    target = Target(clkin = 25 * MHz, clkout0 = 100 * MHz,
                    clkin_name = 'clk25', clkout0_name = 'sys')
    target.secondary[1].freq = 50 * MHz
    target.secondary[1].name = 'half'
    target.secondary[2].freq = Fraction(100, 3) * MHz
    target.secondary[2].phase = Fraction(45)
    v = make_verilog(plan(target), 'clocks')
    assert v.startswith('module clocks\n(\n    input clk25, // 25 MHz, 0 deg\n'
                        '    output sys, // 100 MHz, 0 deg\n'
                        '    output half, // 50 MHz, 0 deg\n'
                        '    output clkout3, // 33.3333 MHz, 45 deg\n')
    assert '.CLKOS_ENABLE' not in v
    assert '        .CLKOS2_ENABLE("ENABLED"),\n' in v
    assert '        .CLKOS3_ENABLE("ENABLED"),\n' in v
    assert '        .CLKOS2(half),\n        .CLKOS3(clkout3),\n' in v
    assert v.endswith('assign sys = clkop;\nendmodule\n')

def test_highres() -> None:
    target = Target(clkin = 12 * MHz, clkout0 = 7 * MHz, highres = True)
    p = plan(target)
    v = make_verilog(p)
    # No separate port for the CLKOS output, it's clkout0.
    assert 'output clkout1' not in v
    assert '    output clkout0, // 7 MHz, 0 deg\n    output locked\n' in v
    assert '        .CLKOP_CPHASE(9),\n' in v
    assert f'        .CLKOP_DIV({p.output_div}),\n' in v
    assert '        .CLKOS_DIV(84),\n' in v
    assert '        .CLKOS(clkos),\n' in v
    assert v.endswith('assign clkout0 = clkos;\nendmodule\n')

def test_write(tmp_path) -> None:
    p = pll_plan(12, 60)
    path = tmp_path / 'pll.v'
    write_verilog(p, 'pll60', str(path))
    assert path.read_text() == make_verilog(p, 'pll60')
    assert '        .CLKOP_DIV(10),\n' in path.read_text()
