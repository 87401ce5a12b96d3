"""Integration tests for owner-gated administration."""
from __future__ import annotations

import pytest

from flashlever.constants import MAX_YIELD_FEE
from flashlever.engine import FlashLeverageEngine
from flashlever.exceptions import (
    InvalidCollateralDecimals,
    InvalidFee,
    InvalidMarket,
    NotOwner,
    UnsupportedMarket,
    ZeroAddress,
)
from flashlever.market import MemoryLendingMarket
from flashlever.models import (
    MarketParams,
    MarketRegistered,
    TokenRecovered,
    TreasuryUpdated,
    YieldFeeUpdated,
)
from flashlever.oracles import FixedPriceOracle
from flashlever.swap import MemorySwapAdapter
from flashlever.tokens import Token
from flashlever.world import World

ONE = 10**18


def _params(
    world: World, collateral: Token, loan: Token, oracle: FixedPriceOracle, lltv: int
) -> MarketParams:
    return MarketParams(
        loan_token=loan.address,
        collateral_token=collateral.address,
        oracle=oracle.address,
        irm=world.new_address("irm"),
        lltv=lltv,
    )


class TestConstruction:
    def test_rejects_invalid_fee(
        self, world: World, market: MemoryLendingMarket, swap: MemorySwapAdapter,
        owner: str, treasury: str,
    ) -> None:
        with pytest.raises(InvalidFee):
            FlashLeverageEngine("0xe", world, market, swap, owner, treasury, 0)

    def test_rejects_zero_treasury(
        self, world: World, market: MemoryLendingMarket, swap: MemorySwapAdapter,
        owner: str,
    ) -> None:
        with pytest.raises(ZeroAddress):
            FlashLeverageEngine("0xe", world, market, swap, owner, "", 10**17)


class TestRegisterMarket:
    def test_registers_pair(
        self,
        world: World,
        engine: FlashLeverageEngine,
        registered: MarketParams,
        collateral: Token,
        loan: Token,
    ) -> None:
        assert engine.market_params(collateral.address, loan.address) == registered
        assert engine.manager.is_supported(collateral.address, loan.address)
        assert engine.manager.loan_decimals(loan.address) == 18
        (event,) = world.events(MarketRegistered)
        assert event.market_id == registered.id
        assert event.loan_decimals == 18

    def test_owner_only(
        self,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        params: MarketParams,
        stranger: str,
        collateral: Token,
        loan: Token,
    ) -> None:
        market.create_market(params)
        with pytest.raises(NotOwner):
            engine.register_market(stranger, collateral.address, loan.address, params.id)
        assert not engine.manager.is_supported(collateral.address, loan.address)

    def test_market_must_exist(
        self, engine: FlashLeverageEngine, owner: str, collateral: Token, loan: Token
    ) -> None:
        with pytest.raises(InvalidMarket, match="does not exist"):
            engine.register_market(owner, collateral.address, loan.address, "0xmissing")

    def test_pair_must_match_market(
        self,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        params: MarketParams,
        owner: str,
        collateral: Token,
        loan: Token,
    ) -> None:
        market.create_market(params)
        with pytest.raises(InvalidMarket, match="does not match"):
            engine.register_market(owner, loan.address, collateral.address, params.id)

    def test_collateral_must_use_18_decimals(
        self,
        world: World,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        oracle: FixedPriceOracle,
        owner: str,
        loan: Token,
    ) -> None:
        usdc = world.deploy(Token(world.new_address("usdc"), "USDC", 6))
        params = _params(world, usdc, loan, oracle, 9 * 10**17)
        market.create_market(params)
        with pytest.raises(InvalidCollateralDecimals):
            engine.register_market(owner, usdc.address, loan.address, params.id)

    def test_lltv_must_clear_liquidation_buffer(
        self,
        world: World,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        oracle: FixedPriceOracle,
        owner: str,
        collateral: Token,
        loan: Token,
    ) -> None:
        params = _params(world, collateral, loan, oracle, 2 * 10**16)
        market.create_market(params)
        with pytest.raises(InvalidMarket, match="liquidation buffer"):
            engine.register_market(owner, collateral.address, loan.address, params.id)

    def test_last_registration_wins(
        self,
        world: World,
        engine: FlashLeverageEngine,
        market: MemoryLendingMarket,
        registered: MarketParams,
        oracle: FixedPriceOracle,
        owner: str,
        collateral: Token,
        loan: Token,
    ) -> None:
        replacement = _params(world, collateral, loan, oracle, 86 * 10**16)
        market.create_market(replacement)
        engine.register_market(owner, collateral.address, loan.address, replacement.id)

        assert engine.market_params(collateral.address, loan.address) == replacement
        assert engine.max_ltv(collateral.address, loan.address) == 835 * 10**15

    def test_unregistered_pair(
        self, engine: FlashLeverageEngine, collateral: Token, loan: Token
    ) -> None:
        with pytest.raises(UnsupportedMarket):
            engine.max_ltv(collateral.address, loan.address)


class TestSettings:
    def test_set_treasury(
        self, world: World, engine: FlashLeverageEngine, owner: str
    ) -> None:
        engine.set_treasury(owner, "0xnewtreasury")
        assert engine.treasury == "0xnewtreasury"
        assert world.events(TreasuryUpdated)[-1].treasury == "0xnewtreasury"

    def test_set_treasury_rejects_zero(self, engine: FlashLeverageEngine, owner: str) -> None:
        with pytest.raises(ZeroAddress):
            engine.set_treasury(owner, "")

    def test_set_treasury_owner_only(
        self, engine: FlashLeverageEngine, stranger: str, treasury: str
    ) -> None:
        with pytest.raises(NotOwner):
            engine.set_treasury(stranger, stranger)
        assert engine.treasury == treasury

    @pytest.mark.parametrize("fee", [1, 10**17, MAX_YIELD_FEE])
    def test_set_yield_fee(
        self, world: World, engine: FlashLeverageEngine, owner: str, fee: int
    ) -> None:
        engine.set_yield_fee(owner, fee)
        assert engine.yield_fee == fee
        assert world.events(YieldFeeUpdated)[-1].yield_fee == fee

    @pytest.mark.parametrize("fee", [0, MAX_YIELD_FEE + 1])
    def test_set_yield_fee_out_of_bounds(
        self, engine: FlashLeverageEngine, owner: str, fee: int
    ) -> None:
        with pytest.raises(InvalidFee):
            engine.set_yield_fee(owner, fee)
        assert engine.yield_fee == 10**17

    def test_settings_snapshot(self, engine: FlashLeverageEngine, treasury: str) -> None:
        settings = engine.settings
        assert settings.treasury == treasury
        assert settings.yield_fee == 10**17
        assert settings.recovery_mode is False


class TestRecoverToken:
    def test_defaults_to_owner(
        self, world: World, engine: FlashLeverageEngine, owner: str, loan: Token
    ) -> None:
        loan.mint(engine.address, 5 * ONE)
        engine.recover_token(owner, loan.address, 5 * ONE)
        assert loan.balance_of(owner) == 5 * ONE
        assert world.events(TokenRecovered)[-1].to == owner

    def test_explicit_recipient(
        self, engine: FlashLeverageEngine, owner: str, stranger: str, loan: Token
    ) -> None:
        loan.mint(engine.address, 5 * ONE)
        engine.recover_token(owner, loan.address, 2 * ONE, stranger)
        assert loan.balance_of(stranger) == 2 * ONE
        assert loan.balance_of(engine.address) == 3 * ONE

    def test_owner_only(
        self, engine: FlashLeverageEngine, stranger: str, loan: Token
    ) -> None:
        loan.mint(engine.address, ONE)
        with pytest.raises(NotOwner):
            engine.recover_token(stranger, loan.address, ONE, stranger)


class TestOwnership:
    def test_transfer_ownership(
        self, engine: FlashLeverageEngine, owner: str, stranger: str
    ) -> None:
        engine.transfer_ownership(owner, stranger)
        assert engine.owner == stranger
        engine.set_yield_fee(stranger, 2 * 10**17)
        with pytest.raises(NotOwner):
            engine.set_yield_fee(owner, 10**17)
