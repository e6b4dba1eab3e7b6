
from fractions import Fraction

# All the frequencies are in MHz.
MHz = Fraction(1)
kHz = MHz / 1000
Hz = kHz / 1000

ZERO = Fraction(0)

# Operating range of the clock input and outputs.  Outside of these we only
# warn, Lattice's own tools don't seem too strict either.
INPUT_MIN = 8 * MHz
INPUT_MAX = 400 * MHz
OUTPUT_MIN = 10 * MHz
OUTPUT_MAX = 400 * MHz

# Phase detector frequency range.
PFD_MIN = Fraction('3.125') * MHz
PFD_MAX = 400 * MHz

# VCO frequency range.
VCO_MIN = 400 * MHz
VCO_MAX = 800 * MHz
# Lattice's tools seem to aim for the middle of the range.
VCO_NOMINAL = 600 * MHz

# Divider ranges, all starting at 1.
REFCLK_DIV_MAX = 128
FEEDBACK_DIV_MAX = 80
OUTPUT_DIV_MAX = 128

# The fine phase shifts in eighths of a VCO cycle.
FINE_PHASE_STEPS = 8

# CLKOP coarse phase used when we don't compute the 180° shift (highres).
DEFAULT_PRIMARY_CPHASE = 9

# Secondary outputs CLKOS, CLKOS2, CLKOS3.
NUM_SECONDARY = 3
