"""Market plumbing: flash-loan callback dispatch and proxy-routed market operations."""
from __future__ import annotations

import logging
from typing import Any

from .actions import CloseAction, OpenAction, decode_action
from .exceptions import (
    InvalidCollateralDecimals,
    InvalidMarket,
    ReentrantCall,
    UnsupportedMarket,
    UntrustedLender,
)
from .fixed_point import STANDARD_DECIMALS, collateral_value, to_assets_up
from .interfaces.flash_loan import ActionHandler
from .interfaces.lending_market import LendingMarket
from .interfaces.price_oracle import PriceOracle
from .models import MarketParams
from .proxy import PositionProxy, ProxyCall
from .world import World

logger = logging.getLogger(__name__)


class MarketPositionManager:
    """Generic lending-market plumbing shared by the leverage engine.

    Owns the per-pair market registry and the cached loan-token decimals,
    authenticates flash-loan callbacks and hands each decoded action to the
    ``ActionHandler``. Collateral and debt only ever move through a
    ``PositionProxy``; ``address`` is the engine's own account.
    """

    def __init__(
        self,
        address: str,
        market: LendingMarket,
        world: World,
        handler: ActionHandler,
    ) -> None:
        self.address = address
        self._market = market
        self._world = world
        self._handler = handler
        self._markets: dict[tuple[str, str], MarketParams] = {}
        self._loan_decimals: dict[str, int] = {}
        self._entered = False

    @property
    def market(self) -> LendingMarket:
        return self._market

    # ------------------------------------------------------------------
    # Market registry
    # ------------------------------------------------------------------

    def register(self, collateral_token: str, loan_token: str, market_id: str) -> MarketParams:
        """Bind a (collateral, loan) pair to an existing lending market. Last write wins."""
        params = self._market.market_params(market_id)
        if params is None:
            raise InvalidMarket(f"Market does not exist: {market_id}")
        if params.collateral_token != collateral_token or params.loan_token != loan_token:
            raise InvalidMarket(
                f"Market {market_id} does not match pair "
                f"collateral={collateral_token} loan={loan_token}"
            )

        collateral_decimals = self._world.token(collateral_token).decimals
        if collateral_decimals != STANDARD_DECIMALS:
            raise InvalidCollateralDecimals(
                f"Collateral {collateral_token} has {collateral_decimals} decimals, "
                f"expected {STANDARD_DECIMALS}"
            )

        self._markets[(collateral_token, loan_token)] = params
        self._loan_decimals[loan_token] = self._world.token(loan_token).decimals
        return params

    def market_params(self, collateral_token: str, loan_token: str) -> MarketParams:
        try:
            return self._markets[(collateral_token, loan_token)]
        except KeyError:
            raise UnsupportedMarket(collateral_token, loan_token) from None

    def is_supported(self, collateral_token: str, loan_token: str) -> bool:
        return (collateral_token, loan_token) in self._markets

    def markets(self) -> dict[tuple[str, str], MarketParams]:
        return dict(self._markets)

    def loan_decimals(self, loan_token: str) -> int:
        return self._loan_decimals[loan_token]

    # ------------------------------------------------------------------
    # Flash-loan callback
    # ------------------------------------------------------------------

    def on_flash_loan(self, sender: str, assets: int, data: bytes) -> None:
        """Single callback entry point; only the registered lender may call it."""
        if sender != self._market.address:
            raise UntrustedLender(f"Flash-loan callback from untrusted lender {sender}")
        if self._entered:
            raise ReentrantCall("Flash-loan callback already in progress")

        action = decode_action(data)
        self._entered = True
        try:
            if isinstance(action, OpenAction):
                self._handler.handle_open(assets, action)
            elif isinstance(action, CloseAction):
                self._handler.handle_close(assets, action)
        finally:
            self._entered = False

    # ------------------------------------------------------------------
    # Value conversion
    # ------------------------------------------------------------------

    def collateral_value(self, params: MarketParams, amount: int) -> int:
        """Value of ``amount`` collateral in loan-token native units."""
        oracle: PriceOracle = self._world.get(params.oracle)
        return collateral_value(amount, oracle.price())

    def borrow_shares_to_assets_up(self, params: MarketParams, shares: int) -> int:
        """Assets needed to repay ``shares`` at the market's current borrow rate."""
        state = self._market.market(params.id)
        return to_assets_up(shares, state.total_borrow_assets, state.total_borrow_shares)

    def borrow_shares_of(self, params: MarketParams, account: str) -> int:
        return self._market.position(params.id, account).borrow_shares

    # ------------------------------------------------------------------
    # Proxy-routed market operations
    # ------------------------------------------------------------------

    def _call(self, proxy: PositionProxy, target: Any, method: str, **kwargs: Any) -> Any:
        return proxy.execute(self.address, ProxyCall(target, method, kwargs))

    def supply_collateral(self, proxy: PositionProxy, params: MarketParams, amount: int) -> None:
        collateral = self._world.token(params.collateral_token)
        collateral.transfer(self.address, proxy.address, amount)
        self._call(proxy, collateral, "approve", spender=self._market.address, amount=amount)
        self._call(
            proxy, self._market, "supply_collateral",
            params=params, assets=amount, on_behalf=proxy.address,
        )

    def borrow(self, proxy: PositionProxy, params: MarketParams, amount: int) -> int:
        """Borrow ``amount`` into this account; returns the debt shares minted."""
        _, shares = self._call(
            proxy, self._market, "borrow",
            params=params, assets=amount, shares=0,
            on_behalf=proxy.address, receiver=self.address,
        )
        return shares

    def repay(self, proxy: PositionProxy, params: MarketParams, shares: int) -> int:
        """Repay ``shares`` of the proxy's debt from this account; returns assets paid."""
        if shares == 0:
            return 0
        assets = self.borrow_shares_to_assets_up(params, shares)
        loan = self._world.token(params.loan_token)
        loan.transfer(self.address, proxy.address, assets)
        self._call(proxy, loan, "approve", spender=self._market.address, amount=assets)
        repaid, _ = self._call(
            proxy, self._market, "repay",
            params=params, assets=0, shares=shares, on_behalf=proxy.address,
        )
        return repaid

    def withdraw_collateral(self, proxy: PositionProxy, params: MarketParams, amount: int) -> None:
        self._call(
            proxy, self._market, "withdraw_collateral",
            params=params, assets=amount,
            on_behalf=proxy.address, receiver=self.address,
        )

    # ------------------------------------------------------------------
    # Transaction state
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[dict[tuple[str, str], MarketParams], dict[str, int]]:
        return dict(self._markets), dict(self._loan_decimals)

    def restore(self, state: tuple[dict[tuple[str, str], MarketParams], dict[str, int]]) -> None:
        self._markets, self._loan_decimals = dict(state[0]), dict(state[1])
