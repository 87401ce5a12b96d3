"""Data models — all frozen (immutable)."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass


@dataclass(frozen=True)
class MarketParams:
    """Identity of one isolated lending market."""

    loan_token: str
    collateral_token: str
    oracle: str
    irm: str
    lltv: int

    @property
    def id(self) -> str:
        """Deterministic market id derived from the parameters."""
        raw = "|".join(
            (self.loan_token, self.collateral_token, self.oracle, self.irm, str(self.lltv))
        )
        return "0x" + hashlib.sha256(raw.encode()).hexdigest()


@dataclass(frozen=True)
class MarketState:
    """Aggregate supply/borrow totals of a market."""

    total_supply_assets: int = 0
    total_supply_shares: int = 0
    total_borrow_assets: int = 0
    total_borrow_shares: int = 0


@dataclass(frozen=True)
class AccountPosition:
    """One account's holdings in a market."""

    supply_shares: int = 0
    borrow_shares: int = 0
    collateral: int = 0


@dataclass(frozen=True)
class LeveragePosition:
    """A leveraged position opened through the engine.

    Closing replaces the record with ``open=False``; the historical fields
    stay queryable.
    """

    open: bool
    collateral_token: str
    loan_token: str
    amount_collateral: int
    amount_leveraged_collateral: int
    shares_borrowed: int
    proxy: str
    amount_collateral_in_loan_token: int


@dataclass(frozen=True)
class ProtocolSettings:
    """Owner-mutable protocol configuration held by the engine."""

    treasury: str
    yield_fee: int
    recovery_mode: bool = False


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionOpened:
    user: str
    position_id: int
    proxy: str
    collateral_token: str
    loan_token: str
    amount_collateral: int
    amount_leveraged_collateral: int
    loan_amount: int
    shares_borrowed: int


@dataclass(frozen=True)
class PositionClosed:
    user: str
    position_id: int
    total_amount_returned: int
    user_amount_returned: int
    fee: int


@dataclass(frozen=True)
class MarketRegistered:
    collateral_token: str
    loan_token: str
    market_id: str
    loan_decimals: int


@dataclass(frozen=True)
class ProxyCreated:
    user: str
    proxy: str


@dataclass(frozen=True)
class TreasuryUpdated:
    treasury: str


@dataclass(frozen=True)
class YieldFeeUpdated:
    yield_fee: int


@dataclass(frozen=True)
class RecoveryModeUpdated:
    enabled: bool


@dataclass(frozen=True)
class TokenRecovered:
    token: str
    amount: int
    to: str
