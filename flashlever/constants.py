"""Protocol risk and fee constants, 18-decimal fixed point."""

# Desired LTV must stay 2.5% below the market's liquidation LTV.
LIQUIDATION_BUFFER = 25 * 10**15

# Effective LTV after the swap may exceed the desired LTV by at most 1%.
SLIPPAGE_BUFFER = 10**16

MAX_YIELD_FEE = 3 * 10**17
