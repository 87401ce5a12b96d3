"""In-memory swap adapter quoting from a fixed price table."""
from __future__ import annotations

import logging

from ..exceptions import SwapError, ValidationError, ZeroAmount
from ..fixed_point import ORACLE_PRICE_SCALE, mul_div_down
from ..world import World, atomic
from .instructions import decode_swap_instructions

logger = logging.getLogger(__name__)

BPS = 10_000


class MemorySwapAdapter:
    """Fills swaps out of its own token reserves.

    Prices use the oracle scale: output native units per input native unit
    times ORACLE_PRICE_SCALE. ``slippage_bps`` is shaved off every fill.
    """

    def __init__(self, address: str, world: World, slippage_bps: int = 0) -> None:
        self.address = address
        self._world = world
        self._prices: dict[tuple[str, str], int] = {}
        self.slippage_bps = 0
        self.set_slippage(slippage_bps)

    def set_price(self, token_in: str, token_out: str, price: int) -> None:
        if price <= 0:
            raise ValidationError(f"Swap price must be positive: {price}")
        self._prices[(token_in, token_out)] = price

    def set_pair_price(self, collateral_token: str, loan_token: str, price: int) -> None:
        """Quote both directions of a pair from one oracle-scaled price."""
        self.set_price(collateral_token, loan_token, price)
        self.set_price(loan_token, collateral_token, ORACLE_PRICE_SCALE**2 // price)

    def set_slippage(self, slippage_bps: int) -> None:
        if not 0 <= slippage_bps < BPS:
            raise ValidationError(f"Slippage out of range: {slippage_bps} bps")
        self.slippage_bps = slippage_bps

    def quote(self, token_in: str, token_out: str, amount: int) -> int:
        price = self._prices.get((token_in, token_out))
        if price is None:
            raise SwapError(f"No route from {token_in} to {token_out}")
        gross = mul_div_down(amount, price, ORACLE_PRICE_SCALE)
        return mul_div_down(gross, BPS - self.slippage_bps, BPS)

    @atomic
    def swap(self, sender: str, token_in: str, amount: int, instructions: bytes) -> int:
        """Pull ``amount`` of ``token_in`` from ``sender`` and pay out the route's token."""
        if amount == 0:
            raise ZeroAmount("Swap amount is zero")
        route = decode_swap_instructions(instructions)

        amount_out = self.quote(token_in, route.token_out, amount)
        if amount_out < route.min_amount_out:
            raise SwapError(
                f"Output {amount_out} below minimum {route.min_amount_out}"
            )

        token_out = self._world.token(route.token_out)
        reserves = token_out.balance_of(self.address)
        if reserves < amount_out:
            raise SwapError(f"Reserves {reserves} cannot fill {amount_out}")

        self._world.token(token_in).transfer_from(self.address, sender, self.address, amount)
        token_out.transfer(self.address, sender, amount_out)
        logger.debug(
            "Swapped %d %s -> %d %s for %s",
            amount, token_in, amount_out, route.token_out, sender,
        )
        return amount_out
