"""Simulation service: deploys a complete in-memory world from configuration."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from ..config import AppConfig, MarketConfig
from ..engine import FlashLeverageEngine
from ..interfaces.price_oracle import PriceFeed
from ..market import MemoryLendingMarket
from ..models import MarketParams, PositionClosed
from ..oracles import FixedPriceOracle, PythOracle, quote_to_price
from ..swap import MemorySwapAdapter, encode_swap_instructions
from ..tokens import Token
from ..world import World

logger = logging.getLogger(__name__)

# Whole tokens minted to the swap adapter per configured token.
_SWAP_RESERVE_UNITS = 10**12


def to_units(amount: float | str | Decimal, decimals: int) -> int:
    """Convert a human amount (``1.5``) to native token units."""
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_units(amount: int, decimals: int) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)


async def fetch_live_prices(
    config: AppConfig, feed: PriceFeed | None = None
) -> dict[tuple[str, str], int]:
    """Oracle-scale prices for every configured market both of whose tokens have a feed."""
    feed = feed or PythOracle(config.price_oracle.pyth)
    return await feed.fetch_pair_prices(
        [(m.collateral, m.loan) for m in config.markets],
        {symbol: token.decimals for symbol, token in config.tokens.items()},
    )


class Simulation:
    """Tokens, oracles, lending market, swap adapter and engine wired together.

    Markets are seeded with lender liquidity and the swap adapter with
    reserves, so leverage and deleverage can run end to end.
    """

    def __init__(
        self, config: AppConfig, prices: dict[tuple[str, str], int] | None = None
    ) -> None:
        self._config = config
        self.world = World()
        self.owner = config.protocol.owner
        self.lender = self.world.new_address("lender")

        self.tokens: dict[str, Token] = {}
        for symbol, token_cfg in config.tokens.items():
            token = Token(self.world.new_address(symbol), symbol, token_cfg.decimals)
            self.tokens[symbol] = self.world.deploy(token)

        self.market = self.world.deploy(
            MemoryLendingMarket(self.world.new_address("market"), self.world)
        )
        self.swap = self.world.deploy(
            MemorySwapAdapter(
                self.world.new_address("swap"), self.world, config.swap.slippage_bps
            )
        )
        self.engine = self.world.deploy(
            FlashLeverageEngine(
                self.world.new_address("engine"),
                self.world,
                self.market,
                self.swap,
                owner=config.protocol.owner,
                treasury=config.protocol.treasury,
                yield_fee=config.protocol.yield_fee,
            )
        )

        for token in self.tokens.values():
            token.mint(
                self.swap.address, _SWAP_RESERVE_UNITS * 10**token.decimals
            )

        self.oracles: dict[tuple[str, str], FixedPriceOracle] = {}
        self.market_params: dict[tuple[str, str], MarketParams] = {}
        for market_cfg in config.markets:
            self._deploy_market(market_cfg, prices or {})

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _deploy_market(
        self, market_cfg: MarketConfig, prices: dict[tuple[str, str], int]
    ) -> None:
        collateral = self.tokens[market_cfg.collateral]
        loan = self.tokens[market_cfg.loan]
        pair = (market_cfg.collateral, market_cfg.loan)

        if pair in prices:
            price = prices[pair]
            logger.info("Using live price for %s/%s", *pair)
        else:
            price = quote_to_price(
                market_cfg.price, 1.0, collateral.decimals, loan.decimals
            )

        oracle = self.world.deploy(
            FixedPriceOracle(self.world.new_address(f"oracle:{pair}"), price)
        )
        self.oracles[pair] = oracle

        params = MarketParams(
            loan_token=loan.address,
            collateral_token=collateral.address,
            oracle=oracle.address,
            irm=self.world.new_address("irm"),
            lltv=market_cfg.lltv,
        )
        market_id = self.market.create_market(params)
        self.market_params[pair] = params

        liquidity = to_units(market_cfg.liquidity, loan.decimals)
        if liquidity > 0:
            loan.mint(self.lender, liquidity)
            loan.approve(self.lender, self.market.address, liquidity)
            self.market.supply(self.lender, params, liquidity, self.lender)

        self.swap.set_pair_price(collateral.address, loan.address, price)
        self.engine.register_market(self.owner, collateral.address, loan.address, market_id)

    # ------------------------------------------------------------------
    # Scenario helpers
    # ------------------------------------------------------------------

    def token(self, symbol: str) -> Token:
        return self.tokens[symbol]

    def new_user(self, label: str = "user") -> str:
        return self.world.new_address(label)

    def fund(self, user: str, symbol: str, amount: float | str | Decimal) -> int:
        token = self.tokens[symbol]
        units = to_units(amount, token.decimals)
        token.mint(user, units)
        return units

    def set_price(self, collateral: str, loan: str, price: float) -> int:
        """Move the oracle and the swap adapter to ``price`` (loan per collateral)."""
        raw = quote_to_price(
            price, 1.0, self.tokens[collateral].decimals, self.tokens[loan].decimals
        )
        self.oracles[(collateral, loan)].set_price(raw)
        self.swap.set_pair_price(
            self.tokens[collateral].address, self.tokens[loan].address, raw
        )
        return raw

    def accrue_interest(self, collateral: str, loan: str, amount: float) -> None:
        params = self.market_params[(collateral, loan)]
        self.market.accrue_interest(
            params.id, to_units(amount, self.tokens[loan].decimals)
        )

    def quote(self, collateral: str, loan: str, amount: float, ltv: float) -> int:
        return self.engine.calc_leverage_flash_loan(
            self.tokens[collateral].address,
            self.tokens[loan].address,
            to_units(amount, self.tokens[collateral].decimals),
            to_units(ltv, 18),
        )

    def open_position(
        self, user: str, collateral: str, loan: str, amount: float, ltv: float
    ) -> int:
        collateral_token = self.tokens[collateral]
        units = to_units(amount, collateral_token.decimals)
        collateral_token.approve(user, self.engine.address, units)
        return self.engine.leverage(
            user,
            user,
            to_units(ltv, 18),
            collateral_token.address,
            self.tokens[loan].address,
            units,
            encode_swap_instructions(collateral_token.address),
        )

    def close_position(self, user: str, position_id: int) -> PositionClosed:
        position = self.engine.position(user, position_id)
        self.engine.deleverage(
            user, position_id, encode_swap_instructions(position.loan_token)
        )
        return self.world.events(PositionClosed)[-1]

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def market_rows(self) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for (collateral, loan), params in self.market_params.items():
            state = self.market.market(params.id)
            loan_decimals = self.tokens[loan].decimals
            rows.append(
                {
                    "pair": f"{collateral}/{loan}",
                    "market_id": params.id,
                    "lltv": from_units(params.lltv, 18),
                    "max_ltv": from_units(
                        self.engine.max_ltv(params.collateral_token, params.loan_token), 18
                    ),
                    "liquidity": from_units(state.total_supply_assets, loan_decimals),
                    "borrowed": from_units(state.total_borrow_assets, loan_decimals),
                }
            )
        return rows

    def run_round_trip(
        self,
        collateral: str,
        loan: str,
        amount: float,
        ltv: float,
        exit_price: float | None = None,
    ) -> dict[str, Any]:
        """Open then close one position for a fresh user; returns the settlement."""
        user = self.new_user()
        self.fund(user, collateral, amount)
        position_id = self.open_position(user, collateral, loan, amount, ltv)
        position = self.engine.position(user, position_id)

        if exit_price is not None:
            self.set_price(collateral, loan, exit_price)

        closed = self.close_position(user, position_id)
        loan_decimals = self.tokens[loan].decimals
        return {
            "user": user,
            "position_id": position_id,
            "proxy": position.proxy,
            "collateral": from_units(position.amount_collateral, 18),
            "leveraged_collateral": from_units(position.amount_leveraged_collateral, 18),
            "deposit_value": from_units(position.amount_collateral_in_loan_token, loan_decimals),
            "returned": from_units(closed.total_amount_returned, loan_decimals),
            "to_user": from_units(closed.user_amount_returned, loan_decimals),
            "fee": from_units(closed.fee, loan_decimals),
        }
