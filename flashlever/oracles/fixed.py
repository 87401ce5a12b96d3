"""Settable per-market price oracle."""
from __future__ import annotations

import logging
from decimal import Decimal

from ..exceptions import ValidationError
from ..fixed_point import ORACLE_PRICE_SCALE

logger = logging.getLogger(__name__)


def quote_to_price(
    collateral_usd: float | Decimal,
    loan_usd: float | Decimal,
    collateral_decimals: int,
    loan_decimals: int,
) -> int:
    """Convert two USD quotes into an oracle price.

    The result is loan-token native units per collateral native unit,
    scaled by ORACLE_PRICE_SCALE:
        price = collateral_usd / loan_usd * 10^(36 + loan_decimals - collateral_decimals)
    """
    if collateral_usd <= 0 or loan_usd <= 0:
        raise ValidationError(
            f"Quotes must be positive: collateral={collateral_usd} loan={loan_usd}"
        )
    ratio = Decimal(str(collateral_usd)) / Decimal(str(loan_usd))
    exponent = 36 + loan_decimals - collateral_decimals
    return int(ratio * (Decimal(10) ** exponent))


class FixedPriceOracle:
    """Oracle returning a fixed price until ``set_price`` is called."""

    def __init__(self, address: str, price: int = ORACLE_PRICE_SCALE) -> None:
        self.address = address
        self._price = price

    def price(self) -> int:
        return self._price

    def set_price(self, price: int) -> None:
        if price <= 0:
            raise ValidationError(f"Oracle price must be positive: {price}")
        logger.info("Oracle %s price set to %d", self.address, price)
        self._price = price
