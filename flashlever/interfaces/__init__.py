"""Protocol interfaces for the flash leverage engine."""
from .flash_loan import ActionHandler, FlashLoanReceiver
from .lending_market import LendingMarket
from .price_oracle import PriceOracle, PriceFeed
from .swap_adapter import SwapAdapter
from .token import FungibleToken

__all__ = [
    "ActionHandler",
    "FlashLoanReceiver",
    "FungibleToken",
    "LendingMarket",
    "PriceFeed",
    "PriceOracle",
    "SwapAdapter",
]
