"""In-memory isolated lending market with share accounting and flash loans."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from ..exceptions import (
    InsufficientCollateral,
    InsufficientLiquidity,
    InvalidMarket,
    Unauthorized,
    ValidationError,
    ZeroAddress,
    ZeroAmount,
)
from ..fixed_point import (
    WAD,
    collateral_value,
    to_assets_down,
    to_assets_up,
    to_shares_down,
    to_shares_up,
    w_mul_down,
    zero_floor_sub,
)
from ..interfaces.flash_loan import FlashLoanReceiver
from ..models import AccountPosition, MarketParams, MarketState
from ..world import World, atomic

logger = logging.getLogger(__name__)


def _exactly_one_zero(x: int, y: int) -> bool:
    return (x == 0) != (y == 0)


class MemoryLendingMarket:
    """Isolated-market lender: supply, collateral, borrow, repay, flash loans.

    Debt is tracked in shares; ``accrue_interest`` raises the asset totals
    without minting shares, so every outstanding share becomes worth more.
    """

    def __init__(self, address: str, world: World) -> None:
        self.address = address
        self._world = world
        self._params: dict[str, MarketParams] = {}
        self._markets: dict[str, MarketState] = {}
        self._positions: dict[tuple[str, str], AccountPosition] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def market_params(self, market_id: str) -> MarketParams | None:
        return self._params.get(market_id)

    def market(self, market_id: str) -> MarketState:
        try:
            return self._markets[market_id]
        except KeyError:
            raise InvalidMarket(f"Market not created: {market_id}") from None

    def position(self, market_id: str, account: str) -> AccountPosition:
        return self._positions.get((market_id, account), AccountPosition())

    def is_healthy(self, params: MarketParams, account: str) -> bool:
        pos = self.position(params.id, account)
        if pos.borrow_shares == 0:
            return True
        state = self.market(params.id)
        borrowed = to_assets_up(
            pos.borrow_shares, state.total_borrow_assets, state.total_borrow_shares
        )
        price = self._world.get(params.oracle).price()
        max_borrow = w_mul_down(collateral_value(pos.collateral, price), params.lltv)
        return max_borrow >= borrowed

    # ------------------------------------------------------------------
    # Market lifecycle
    # ------------------------------------------------------------------

    @atomic
    def create_market(self, params: MarketParams) -> str:
        market_id = params.id
        if market_id in self._params:
            raise InvalidMarket(f"Market already created: {market_id}")
        if not 0 < params.lltv < WAD:
            raise InvalidMarket(f"LLTV out of range: {params.lltv}")
        for address in (params.loan_token, params.collateral_token, params.oracle):
            if address not in self._world:
                raise InvalidMarket(f"Unknown account in market params: {address}")

        self._params[market_id] = params
        self._markets[market_id] = MarketState()
        logger.info(
            "Created market %s (collateral=%s loan=%s lltv=%d)",
            market_id, params.collateral_token, params.loan_token, params.lltv,
        )
        return market_id

    def accrue_interest(self, market_id: str, interest: int) -> None:
        """Add ``interest`` to the borrow and supply totals of a market."""
        state = self.market(market_id)
        self._markets[market_id] = replace(
            state,
            total_borrow_assets=state.total_borrow_assets + interest,
            total_supply_assets=state.total_supply_assets + interest,
        )
        logger.debug("Accrued %d interest on market %s", interest, market_id)

    # ------------------------------------------------------------------
    # Lender side
    # ------------------------------------------------------------------

    @atomic
    def supply(
        self, sender: str, params: MarketParams, assets: int, on_behalf: str
    ) -> tuple[int, int]:
        market_id = self._require_market(params)
        if assets == 0:
            raise ZeroAmount("Supply amount is zero")
        if not on_behalf:
            raise ZeroAddress("on_behalf is the zero address")

        state = self._markets[market_id]
        shares = to_shares_down(
            assets, state.total_supply_assets, state.total_supply_shares
        )
        pos = self.position(market_id, on_behalf)
        self._positions[(market_id, on_behalf)] = replace(
            pos, supply_shares=pos.supply_shares + shares
        )
        self._markets[market_id] = replace(
            state,
            total_supply_assets=state.total_supply_assets + assets,
            total_supply_shares=state.total_supply_shares + shares,
        )

        self._world.token(params.loan_token).transfer_from(
            self.address, sender, self.address, assets
        )
        return assets, shares

    # ------------------------------------------------------------------
    # Borrower side
    # ------------------------------------------------------------------

    @atomic
    def supply_collateral(
        self, sender: str, params: MarketParams, assets: int, on_behalf: str
    ) -> None:
        market_id = self._require_market(params)
        if assets == 0:
            raise ZeroAmount("Collateral amount is zero")
        if not on_behalf:
            raise ZeroAddress("on_behalf is the zero address")

        pos = self.position(market_id, on_behalf)
        self._positions[(market_id, on_behalf)] = replace(
            pos, collateral=pos.collateral + assets
        )

        self._world.token(params.collateral_token).transfer_from(
            self.address, sender, self.address, assets
        )

    @atomic
    def borrow(
        self,
        sender: str,
        params: MarketParams,
        assets: int,
        shares: int,
        on_behalf: str,
        receiver: str,
    ) -> tuple[int, int]:
        market_id = self._require_market(params)
        if not _exactly_one_zero(assets, shares):
            raise ValidationError("Exactly one of assets and shares must be zero")
        if not receiver:
            raise ZeroAddress("receiver is the zero address")
        self._require_authorized(sender, on_behalf)

        state = self._markets[market_id]
        if assets > 0:
            shares = to_shares_up(
                assets, state.total_borrow_assets, state.total_borrow_shares
            )
        else:
            assets = to_assets_down(
                shares, state.total_borrow_assets, state.total_borrow_shares
            )

        pos = self.position(market_id, on_behalf)
        self._positions[(market_id, on_behalf)] = replace(
            pos, borrow_shares=pos.borrow_shares + shares
        )
        self._markets[market_id] = state = replace(
            state,
            total_borrow_assets=state.total_borrow_assets + assets,
            total_borrow_shares=state.total_borrow_shares + shares,
        )

        if not self.is_healthy(params, on_behalf):
            raise InsufficientCollateral(
                f"Borrow of {assets} would leave {on_behalf} unhealthy"
            )
        if state.total_borrow_assets > state.total_supply_assets:
            raise InsufficientLiquidity(
                f"Borrow of {assets} exceeds available liquidity"
            )

        self._world.token(params.loan_token).transfer(self.address, receiver, assets)
        logger.debug("Borrowed %d (%d shares) for %s", assets, shares, on_behalf)
        return assets, shares

    @atomic
    def repay(
        self,
        sender: str,
        params: MarketParams,
        assets: int,
        shares: int,
        on_behalf: str,
    ) -> tuple[int, int]:
        market_id = self._require_market(params)
        if not _exactly_one_zero(assets, shares):
            raise ValidationError("Exactly one of assets and shares must be zero")
        if not on_behalf:
            raise ZeroAddress("on_behalf is the zero address")

        state = self._markets[market_id]
        if assets > 0:
            shares = to_shares_down(
                assets, state.total_borrow_assets, state.total_borrow_shares
            )
        else:
            assets = to_assets_up(
                shares, state.total_borrow_assets, state.total_borrow_shares
            )

        pos = self.position(market_id, on_behalf)
        if shares > pos.borrow_shares:
            raise ValidationError(
                f"Repay of {shares} shares exceeds debt of {pos.borrow_shares}"
            )
        self._positions[(market_id, on_behalf)] = replace(
            pos, borrow_shares=pos.borrow_shares - shares
        )
        self._markets[market_id] = replace(
            state,
            total_borrow_assets=zero_floor_sub(state.total_borrow_assets, assets),
            total_borrow_shares=state.total_borrow_shares - shares,
        )

        self._world.token(params.loan_token).transfer_from(
            self.address, sender, self.address, assets
        )
        logger.debug("Repaid %d (%d shares) for %s", assets, shares, on_behalf)
        return assets, shares

    @atomic
    def withdraw_collateral(
        self,
        sender: str,
        params: MarketParams,
        assets: int,
        on_behalf: str,
        receiver: str,
    ) -> None:
        market_id = self._require_market(params)
        if assets == 0:
            raise ZeroAmount("Withdraw amount is zero")
        if not receiver:
            raise ZeroAddress("receiver is the zero address")
        self._require_authorized(sender, on_behalf)

        pos = self.position(market_id, on_behalf)
        if assets > pos.collateral:
            raise InsufficientCollateral(
                f"Withdraw of {assets} exceeds collateral of {pos.collateral}"
            )
        self._positions[(market_id, on_behalf)] = replace(
            pos, collateral=pos.collateral - assets
        )
        if not self.is_healthy(params, on_behalf):
            raise InsufficientCollateral(
                f"Withdraw of {assets} would leave {on_behalf} unhealthy"
            )

        self._world.token(params.collateral_token).transfer(
            self.address, receiver, assets
        )

    # ------------------------------------------------------------------
    # Flash loans
    # ------------------------------------------------------------------

    @atomic
    def flash_loan(
        self, receiver: FlashLoanReceiver, token: str, assets: int, data: bytes
    ) -> None:
        """Lend ``assets`` to ``receiver`` for the duration of its callback."""
        if assets == 0:
            raise ZeroAmount("Flash loan amount is zero")

        asset_token = self._world.token(token)
        asset_token.transfer(self.address, receiver.address, assets)
        logger.debug("Flash loan of %d %s to %s", assets, token, receiver.address)

        receiver.on_flash_loan(sender=self.address, assets=assets, data=data)

        asset_token.transfer_from(self.address, receiver.address, self.address, assets)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_market(self, params: MarketParams) -> str:
        market_id = params.id
        if market_id not in self._markets:
            raise InvalidMarket(f"Market not created: {market_id}")
        return market_id

    @staticmethod
    def _require_authorized(sender: str, on_behalf: str) -> None:
        if sender != on_behalf:
            raise Unauthorized(f"{sender} may not act on behalf of {on_behalf}")

    # ------------------------------------------------------------------
    # Transaction state
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[Any, ...]:
        # Values are frozen dataclasses; shallow copies are enough.
        return dict(self._params), dict(self._markets), dict(self._positions)

    def restore(self, state: tuple[Any, ...]) -> None:
        self._params = dict(state[0])
        self._markets = dict(state[1])
        self._positions = dict(state[2])
