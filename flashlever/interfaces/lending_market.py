"""Lending market protocol — supply/borrow/repay/withdraw and flash loans."""
from __future__ import annotations

from typing import Protocol

from ..models import AccountPosition, MarketParams, MarketState
from .flash_loan import FlashLoanReceiver


class LendingMarket(Protocol):
    """Abstract interface for an isolated-market lender."""

    @property
    def address(self) -> str: ...

    def market_params(self, market_id: str) -> MarketParams | None: ...

    def market(self, market_id: str) -> MarketState: ...

    def position(self, market_id: str, account: str) -> AccountPosition: ...

    def supply_collateral(
        self, sender: str, params: MarketParams, assets: int, on_behalf: str
    ) -> None: ...

    def borrow(
        self,
        sender: str,
        params: MarketParams,
        assets: int,
        shares: int,
        on_behalf: str,
        receiver: str,
    ) -> tuple[int, int]: ...

    def repay(
        self,
        sender: str,
        params: MarketParams,
        assets: int,
        shares: int,
        on_behalf: str,
    ) -> tuple[int, int]: ...

    def withdraw_collateral(
        self,
        sender: str,
        params: MarketParams,
        assets: int,
        on_behalf: str,
        receiver: str,
    ) -> None: ...

    def flash_loan(
        self, receiver: FlashLoanReceiver, token: str, assets: int, data: bytes
    ) -> None: ...
