"""Price oracles."""
from .fixed import FixedPriceOracle, quote_to_price
from .pyth import PythOracle

__all__ = ["FixedPriceOracle", "PythOracle", "quote_to_price"]
