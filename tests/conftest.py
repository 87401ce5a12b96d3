"""Shared test fixtures: a deployed in-memory world with one registered market."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from flashlever.engine import FlashLeverageEngine
from flashlever.fixed_point import ORACLE_PRICE_SCALE
from flashlever.market import MemoryLendingMarket
from flashlever.models import MarketParams
from flashlever.oracles import FixedPriceOracle
from flashlever.swap import MemorySwapAdapter, encode_swap_instructions
from flashlever.tokens import Token
from flashlever.world import World

ONE = 10**18

OWNER = "0x00000000000000000000000000000000000000a1"
TREASURY = "0x00000000000000000000000000000000000000f1"
USER = "0x0000000000000000000000000000000000000b0b"
STRANGER = "0x0000000000000000000000000000000000000bad"
LENDER = "0x0000000000000000000000000000000000001e0d"

LLTV = 945 * 10**15
YIELD_FEE = 10**17
LIQUIDITY = 10_000 * ONE


# ---------------------------------------------------------------------------
# World fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def world() -> World:
    return World()


@pytest.fixture()
def owner() -> str:
    return OWNER


@pytest.fixture()
def treasury() -> str:
    return TREASURY


@pytest.fixture()
def stranger() -> str:
    return STRANGER


@pytest.fixture()
def lender() -> str:
    return LENDER


@pytest.fixture()
def collateral(world: World) -> Token:
    return world.deploy(Token(world.new_address("wsteth"), "WSTETH", 18))


@pytest.fixture()
def loan(world: World) -> Token:
    return world.deploy(Token(world.new_address("weth"), "WETH", 18))


@pytest.fixture()
def oracle(world: World) -> FixedPriceOracle:
    return world.deploy(FixedPriceOracle(world.new_address("oracle"), ORACLE_PRICE_SCALE))


@pytest.fixture()
def market(world: World) -> MemoryLendingMarket:
    return world.deploy(MemoryLendingMarket(world.new_address("market"), world))


@pytest.fixture()
def swap(world: World, collateral: Token, loan: Token) -> MemorySwapAdapter:
    adapter = world.deploy(MemorySwapAdapter(world.new_address("swap"), world))
    collateral.mint(adapter.address, 10**12 * ONE)
    loan.mint(adapter.address, 10**12 * ONE)
    adapter.set_pair_price(collateral.address, loan.address, ORACLE_PRICE_SCALE)
    return adapter


@pytest.fixture()
def engine(
    world: World, market: MemoryLendingMarket, swap: MemorySwapAdapter
) -> FlashLeverageEngine:
    return world.deploy(
        FlashLeverageEngine(
            world.new_address("engine"),
            world,
            market,
            swap,
            owner=OWNER,
            treasury=TREASURY,
            yield_fee=YIELD_FEE,
        )
    )


@pytest.fixture()
def params(
    collateral: Token, loan: Token, oracle: FixedPriceOracle, world: World
) -> MarketParams:
    return MarketParams(
        loan_token=loan.address,
        collateral_token=collateral.address,
        oracle=oracle.address,
        irm=world.new_address("irm"),
        lltv=LLTV,
    )


@pytest.fixture()
def registered(
    engine: FlashLeverageEngine,
    market: MemoryLendingMarket,
    params: MarketParams,
    collateral: Token,
    loan: Token,
) -> MarketParams:
    """Market created, funded by a lender and registered with the engine."""
    market.create_market(params)
    loan.mint(LENDER, LIQUIDITY)
    loan.approve(LENDER, market.address, LIQUIDITY)
    market.supply(LENDER, params, LIQUIDITY, LENDER)
    engine.register_market(OWNER, collateral.address, loan.address, params.id)
    return params


@pytest.fixture()
def funded_user(
    registered: MarketParams, collateral: Token, engine: FlashLeverageEngine
) -> str:
    collateral.mint(USER, 1_000 * ONE)
    collateral.approve(USER, engine.address, 10**30)
    return USER


@pytest.fixture()
def open_instructions(collateral: Token) -> bytes:
    return encode_swap_instructions(collateral.address)


@pytest.fixture()
def close_instructions(loan: Token) -> bytes:
    return encode_swap_instructions(loan.address)


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    protocol:
      owner: "0xOWNER"
      treasury: "0xTREASURY"
      yield_fee: 0.1
    swap:
      slippage_bps: 0
    tokens:
      WSTETH: {decimals: 18}
      WETH: {decimals: 18}
      USDC: {decimals: 6}
    markets:
      - collateral: WSTETH
        loan: WETH
        lltv: 0.945
        price: 1.2
        liquidity: 1000
    price_oracle:
      provider: pyth
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {WETH: "aaa", USDC: "bbb"}
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
