"""Integration tests for closing positions and settling the yield fee."""
from __future__ import annotations

import logging

import pytest

from flashlever.engine import FlashLeverageEngine
from flashlever.exceptions import (
    InsufficientProceeds,
    PositionAlreadyClosed,
    PositionNotFound,
)
from flashlever.market import MemoryLendingMarket
from flashlever.models import MarketParams, PositionClosed
from flashlever.oracles import FixedPriceOracle
from flashlever.proxy import ProxyCall
from flashlever.swap import MemorySwapAdapter
from flashlever.tokens import Token
from flashlever.world import World

ONE = 10**18
HALF = 5 * 10**17


@pytest.fixture()
def opened(
    engine: FlashLeverageEngine,
    registered: MarketParams,
    funded_user: str,
    collateral: Token,
    loan: Token,
    open_instructions: bytes,
) -> int:
    """100 collateral levered to 200 at 50% LTV, at parity."""
    return engine.leverage(
        funded_user, funded_user, HALF,
        collateral.address, loan.address, 100 * ONE, open_instructions,
    )


class TestCalcDeleverageFlashLoan:
    def test_matches_debt(
        self, engine: FlashLeverageEngine, funded_user: str, opened: int
    ) -> None:
        assert engine.calc_deleverage_flash_loan(funded_user, opened) == 100 * ONE

    def test_includes_accrued_interest(
        self,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        registered: MarketParams,
        funded_user: str,
        opened: int,
    ) -> None:
        market.accrue_interest(registered.id, 5 * ONE)
        assert engine.calc_deleverage_flash_loan(funded_user, opened) == 105 * ONE

    def test_unknown_position(self, engine: FlashLeverageEngine, funded_user: str) -> None:
        with pytest.raises(PositionNotFound):
            engine.calc_deleverage_flash_loan(funded_user, 0)


class TestDeleverage:
    def test_profit_pays_fee_to_treasury(
        self,
        world: World,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        registered: MarketParams,
        swap: MemorySwapAdapter,
        oracle: FixedPriceOracle,
        funded_user: str,
        treasury: str,
        collateral: Token,
        loan: Token,
        opened: int,
        close_instructions: bytes,
    ) -> None:
        oracle.set_price(11 * 10**35)
        swap.set_pair_price(collateral.address, loan.address, 11 * 10**35)

        engine.deleverage(funded_user, opened, close_instructions)

        # 200 collateral -> 220, minus the 100 flash loan, 20 of which is yield
        (closed,) = world.events(PositionClosed)
        assert closed.total_amount_returned == 120 * ONE
        assert closed.fee == 2 * ONE
        assert closed.user_amount_returned == 118 * ONE
        assert loan.balance_of(treasury) == 2 * ONE
        assert loan.balance_of(funded_user) == 118 * ONE

        position = engine.position(funded_user, opened)
        assert not position.open
        assert position.amount_leveraged_collateral == 200 * ONE
        on_market = market.position(registered.id, position.proxy)
        assert on_market.collateral == 0
        assert on_market.borrow_shares == 0
        assert loan.balance_of(engine.address) == 0
        assert collateral.balance_of(engine.address) == 0

    def test_loss_charges_no_fee(
        self,
        world: World,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        registered: MarketParams,
        funded_user: str,
        treasury: str,
        loan: Token,
        opened: int,
        close_instructions: bytes,
    ) -> None:
        market.accrue_interest(registered.id, 5 * ONE)

        engine.deleverage(funded_user, opened, close_instructions)

        closed = world.events(PositionClosed)[-1]
        assert closed.total_amount_returned == 95 * ONE
        assert closed.fee == 0
        assert loan.balance_of(funded_user) == 95 * ONE
        assert loan.balance_of(treasury) == 0

    def test_break_even_round_trip(
        self,
        world: World,
        engine: FlashLeverageEngine,
        registered: MarketParams,
        swap: MemorySwapAdapter,
        funded_user: str,
        treasury: str,
        collateral: Token,
        loan: Token,
        open_instructions: bytes,
        close_instructions: bytes,
    ) -> None:
        assert engine.calc_leverage_flash_loan(collateral.address, loan.address, 100, HALF) == 100
        position_id = engine.leverage(
            funded_user, funded_user, HALF,
            collateral.address, loan.address, 100, open_instructions,
        )
        # The exit swap returns exactly the flash-loan amount.
        swap.set_price(collateral.address, loan.address, 5 * 10**35)

        engine.deleverage(funded_user, position_id, close_instructions)

        closed = world.events(PositionClosed)[-1]
        assert closed.total_amount_returned == 0
        assert closed.user_amount_returned == 0
        assert closed.fee == 0
        assert loan.balance_of(treasury) == 0

    def test_double_close(
        self,
        engine: FlashLeverageEngine,
        funded_user: str,
        opened: int,
        close_instructions: bytes,
    ) -> None:
        engine.deleverage(funded_user, opened, close_instructions)
        with pytest.raises(PositionAlreadyClosed):
            engine.deleverage(funded_user, opened, close_instructions)

    def test_other_users_position_is_not_found(
        self,
        engine: FlashLeverageEngine,
        stranger: str,
        opened: int,
        close_instructions: bytes,
    ) -> None:
        with pytest.raises(PositionNotFound):
            engine.deleverage(stranger, opened, close_instructions)

    def test_insufficient_proceeds_reverts(
        self,
        world: World,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        registered: MarketParams,
        swap: MemorySwapAdapter,
        funded_user: str,
        collateral: Token,
        loan: Token,
        opened: int,
        close_instructions: bytes,
    ) -> None:
        swap.set_price(collateral.address, loan.address, 4 * 10**35)

        with pytest.raises(InsufficientProceeds) as exc_info:
            engine.deleverage(funded_user, opened, close_instructions)

        assert exc_info.value.proceeds == 80 * ONE
        assert exc_info.value.flash_loan == 100 * ONE
        position = engine.position(funded_user, opened)
        assert position.open
        on_market = market.position(registered.id, position.proxy)
        assert on_market.collateral == 200 * ONE
        assert on_market.borrow_shares == position.shares_borrowed
        assert world.events(PositionClosed) == []

    def test_positions_close_independently(
        self,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        registered: MarketParams,
        funded_user: str,
        collateral: Token,
        loan: Token,
        opened: int,
        open_instructions: bytes,
        close_instructions: bytes,
    ) -> None:
        second = engine.leverage(
            funded_user, funded_user, HALF,
            collateral.address, loan.address, 50 * ONE, open_instructions,
        )
        engine.deleverage(funded_user, opened, close_instructions)

        remaining = engine.position(funded_user, second)
        assert remaining.open
        on_market = market.position(registered.id, remaining.proxy)
        assert on_market.collateral == 100 * ONE
        assert on_market.borrow_shares == remaining.shares_borrowed


class TestPartiallyRepaidPosition:
    def test_repays_only_live_shares(
        self,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        registered: MarketParams,
        owner: str,
        funded_user: str,
        loan: Token,
        opened: int,
        close_instructions: bytes,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        position = engine.position(funded_user, opened)
        proxy = engine.proxies.get(position.proxy)

        # Half the debt is paid directly through the proxy while recovery is on.
        engine.set_recovery_mode(owner, True)
        loan.mint(funded_user, 50 * ONE)
        loan.transfer(funded_user, position.proxy, 50 * ONE)
        proxy.execute(
            funded_user,
            ProxyCall(loan, "approve", {"spender": market.address, "amount": 50 * ONE}),
        )
        proxy.execute(
            funded_user,
            ProxyCall(market, "repay", {
                "params": registered, "assets": 0,
                "shares": position.shares_borrowed // 2, "on_behalf": position.proxy,
            }),
        )
        engine.set_recovery_mode(owner, False)

        # The flash loan is still sized from the recorded shares.
        assert engine.calc_deleverage_flash_loan(funded_user, opened) == 100 * ONE

        with caplog.at_level(logging.WARNING, logger="flashlever.engine"):
            engine.deleverage(funded_user, opened, close_instructions)

        on_market = market.position(registered.id, position.proxy)
        assert on_market.borrow_shares == 0
        assert on_market.collateral == 0
        assert not engine.position(funded_user, opened).open
        assert loan.balance_of(funded_user) == 100 * ONE
        # 50 of the flash loan was never needed to repay.
        assert loan.balance_of(engine.address) == 50 * ONE
        assert "stays in the engine" in caplog.text

    def test_full_close_logs_no_warning(
        self,
        engine: FlashLeverageEngine,
        funded_user: str,
        opened: int,
        close_instructions: bytes,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="flashlever.engine"):
            engine.deleverage(funded_user, opened, close_instructions)

        assert "stays in the engine" not in caplog.text


class TestPositionLedger:
    def test_closing_keeps_every_entry(
        self,
        engine: FlashLeverageEngine,
        funded_user: str,
        collateral: Token,
        loan: Token,
        open_instructions: bytes,
        close_instructions: bytes,
    ) -> None:
        ids = [
            engine.leverage(
                funded_user, funded_user, HALF,
                collateral.address, loan.address, amount * ONE, open_instructions,
            )
            for amount in (10, 20, 30)
        ]
        assert ids == [0, 1, 2]
        proxies = [p.proxy for p in engine.positions(funded_user)]

        engine.deleverage(funded_user, 1, close_instructions)

        positions = engine.positions(funded_user)
        assert len(positions) == 3
        assert [p.open for p in positions] == [True, False, True]
        assert [p.proxy for p in positions] == proxies
        assert [p.amount_collateral for p in positions] == [10 * ONE, 20 * ONE, 30 * ONE]

        engine.deleverage(funded_user, 0, close_instructions)

        positions = engine.positions(funded_user)
        assert len(positions) == 3
        assert [p.open for p in positions] == [False, False, True]
        assert [p.proxy for p in positions] == proxies

        # New positions are appended after closed ones.
        new_id = engine.leverage(
            funded_user, funded_user, HALF,
            collateral.address, loan.address, 5 * ONE, open_instructions,
        )
        assert new_id == 3
        assert len(engine.positions(funded_user)) == 4
