"""Integer fixed-point helpers for value, share and LTV arithmetic.

Risk and value arithmetic is carried in 18-decimal fixed point (WAD) and
rescaled to a token's native decimals at the boundary. Every division
states its rounding direction: down for amounts paid out, up for amounts
owed.
"""
from __future__ import annotations

from .exceptions import ZeroAmount

WAD = 10**18
ORACLE_PRICE_SCALE = 10**36

# Virtual liquidity used by share conversions so an empty market still has
# a well-defined exchange rate.
VIRTUAL_SHARES = 10**6
VIRTUAL_ASSETS = 1

STANDARD_DECIMALS = 18


def mul_div_down(x: int, y: int, d: int) -> int:
    return (x * y) // d


def mul_div_up(x: int, y: int, d: int) -> int:
    return (x * y + (d - 1)) // d


def w_mul_down(x: int, y: int) -> int:
    return mul_div_down(x, y, WAD)


def w_div_down(x: int, y: int) -> int:
    return mul_div_down(x, WAD, y)


def w_div_up(x: int, y: int) -> int:
    return mul_div_up(x, WAD, y)


def zero_floor_sub(x: int, y: int) -> int:
    """Return ``max(0, x - y)``."""
    return x - y if x > y else 0


def to_wad(amount: int, decimals: int, round_up: bool = False) -> int:
    """Rescale a native token amount to 18-decimal fixed point."""
    if decimals <= STANDARD_DECIMALS:
        return amount * 10 ** (STANDARD_DECIMALS - decimals)
    divisor = 10 ** (decimals - STANDARD_DECIMALS)
    if round_up:
        return mul_div_up(amount, 1, divisor)
    return amount // divisor


def from_wad(amount: int, decimals: int, round_up: bool = False) -> int:
    """Rescale an 18-decimal fixed-point amount to native token decimals."""
    if decimals >= STANDARD_DECIMALS:
        return amount * 10 ** (decimals - STANDARD_DECIMALS)
    divisor = 10 ** (STANDARD_DECIMALS - decimals)
    if round_up:
        return mul_div_up(amount, 1, divisor)
    return amount // divisor


def collateral_value(amount: int, price: int) -> int:
    """Value of ``amount`` collateral in loan-token native units, rounded down.

    ``price`` is the oracle quote: loan-token units per collateral unit,
    scaled by ORACLE_PRICE_SCALE.
    """
    return mul_div_down(amount, price, ORACLE_PRICE_SCALE)


# ---------------------------------------------------------------------------
# Shares <-> assets against live market totals
# ---------------------------------------------------------------------------


def to_shares_down(assets: int, total_assets: int, total_shares: int) -> int:
    return mul_div_down(
        assets, total_shares + VIRTUAL_SHARES, total_assets + VIRTUAL_ASSETS
    )


def to_shares_up(assets: int, total_assets: int, total_shares: int) -> int:
    return mul_div_up(
        assets, total_shares + VIRTUAL_SHARES, total_assets + VIRTUAL_ASSETS
    )


def to_assets_down(shares: int, total_assets: int, total_shares: int) -> int:
    return mul_div_down(
        shares, total_assets + VIRTUAL_ASSETS, total_shares + VIRTUAL_SHARES
    )


def to_assets_up(shares: int, total_assets: int, total_shares: int) -> int:
    return mul_div_up(
        shares, total_assets + VIRTUAL_ASSETS, total_shares + VIRTUAL_SHARES
    )


# ---------------------------------------------------------------------------
# Leverage math
# ---------------------------------------------------------------------------


def leverage_loan_wad(value_wad: int, desired_ltv: int) -> int:
    """Flash-loan size, in WAD, that brings ``value_wad`` of collateral to ``desired_ltv``.

    loan = value / (1 - ltv) - value
    """
    return w_div_down(value_wad, WAD - desired_ltv) - value_wad


def effective_ltv(loan_wad: int, value_wad: int) -> int:
    """LTV of a debt against collateral value, both in WAD, rounded up."""
    if value_wad == 0:
        raise ZeroAmount("Collateral value is zero, LTV is undefined")
    return w_div_up(loan_wad, value_wad)


def yield_fee(yield_amount: int, fee_rate: int, loan_decimals: int) -> int:
    """Protocol cut of ``yield_amount``, rounded down and never more than the yield.

    ``fee_rate`` is scaled by the loan token's own decimals.
    """
    return min(yield_amount, mul_div_down(yield_amount, fee_rate, 10**loan_decimals))
