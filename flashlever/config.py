"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .constants import LIQUIDATION_BUFFER, MAX_YIELD_FEE
from .exceptions import ConfigError
from .fixed_point import STANDARD_DECIMALS, WAD

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProtocolConfig:
    owner: str = "0x0000000000000000000000000000000000000001"
    treasury: str = "0x0000000000000000000000000000000000000002"
    yield_fee: int = 10**17


@dataclass(frozen=True)
class SwapConfig:
    slippage_bps: int = 0


@dataclass(frozen=True)
class TokenConfig:
    symbol: str = ""
    decimals: int = STANDARD_DECIMALS


@dataclass(frozen=True)
class MarketConfig:
    collateral: str = ""
    loan: str = ""
    lltv: int = 0
    price: float = 1.0
    liquidity: float = 0.0


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "pyth"
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class AppConfig:
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    swap: SwapConfig = field(default_factory=SwapConfig)
    tokens: dict[str, TokenConfig] = field(default_factory=dict)
    markets: tuple[MarketConfig, ...] = ()
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)

    def market(self, collateral: str, loan: str) -> MarketConfig:
        for m in self.markets:
            if m.collateral == collateral and m.loan == loan:
                return m
        raise ConfigError(f"No market configured for {collateral}/{loan}")


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def parse_wad(value: Any) -> int:
    """Turn a decimal fraction (``0.945``, ``"0.1"``) into 18-decimal fixed point."""
    try:
        return int(Decimal(str(value)) * WAD)
    except InvalidOperation:
        raise ConfigError(f"Not a decimal number: {value!r}") from None


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_protocol(raw: dict[str, Any]) -> ProtocolConfig:
    return ProtocolConfig(
        owner=raw.get("owner", ProtocolConfig.owner),
        treasury=raw.get("treasury", ProtocolConfig.treasury),
        yield_fee=parse_wad(raw.get("yield_fee", "0.1")),
    )


def _build_swap(raw: dict[str, Any]) -> SwapConfig:
    return SwapConfig(slippage_bps=int(raw.get("slippage_bps", 0)))


def _build_tokens(raw: dict[str, Any]) -> dict[str, TokenConfig]:
    tokens: dict[str, TokenConfig] = {}
    for symbol, cfg in raw.items():
        cfg = cfg or {}
        tokens[symbol] = TokenConfig(
            symbol=symbol,
            decimals=int(cfg.get("decimals", STANDARD_DECIMALS)),
        )
    return tokens


def _build_markets(raw: list[dict[str, Any]]) -> tuple[MarketConfig, ...]:
    markets: list[MarketConfig] = []
    for m in raw:
        markets.append(
            MarketConfig(
                collateral=m.get("collateral", ""),
                loan=m.get("loan", ""),
                lltv=parse_wad(m.get("lltv", 0)),
                price=float(m.get("price", 1.0)),
                liquidity=float(m.get("liquidity", 0.0)),
            )
        )
    return tuple(markets)


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "pyth"),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        protocol=_build_protocol(raw.get("protocol", {})),
        swap=_build_swap(raw.get("swap", {})),
        tokens=_build_tokens(raw.get("tokens", {})),
        markets=_build_markets(raw.get("markets", [])),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.protocol.owner:
        raise ConfigError("Protocol owner is not set")
    if not cfg.protocol.treasury:
        raise ConfigError("Protocol treasury is not set")
    if not 1 <= cfg.protocol.yield_fee <= MAX_YIELD_FEE:
        raise ConfigError(
            f"Yield fee {cfg.protocol.yield_fee} outside [1, {MAX_YIELD_FEE}]"
        )
    if not 0 <= cfg.swap.slippage_bps < 10_000:
        raise ConfigError(f"Swap slippage out of range: {cfg.swap.slippage_bps} bps")

    if not cfg.markets:
        raise ConfigError("At least one market must be configured")

    for m in cfg.markets:
        label = f"{m.collateral}/{m.loan}"
        for symbol in (m.collateral, m.loan):
            if symbol not in cfg.tokens:
                raise ConfigError(f"Market '{label}' references unknown token '{symbol}'")
        if cfg.tokens[m.collateral].decimals != STANDARD_DECIMALS:
            raise ConfigError(
                f"Market '{label}' collateral must use {STANDARD_DECIMALS} decimals"
            )
        loan_scale = 10**cfg.tokens[m.loan].decimals
        if cfg.protocol.yield_fee > loan_scale:
            raise ConfigError(
                f"Market '{label}' yield fee {cfg.protocol.yield_fee} exceeds "
                f"100% at {cfg.tokens[m.loan].decimals} loan decimals (max {loan_scale})"
            )
        if not LIQUIDATION_BUFFER < m.lltv < WAD:
            raise ConfigError(f"Market '{label}' has lltv out of range: {m.lltv}")
        if m.price <= 0:
            raise ConfigError(f"Market '{label}' has non-positive price: {m.price}")
