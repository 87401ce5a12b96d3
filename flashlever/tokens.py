"""In-memory fungible token with balance/transfer/approve semantics."""
from __future__ import annotations

import logging

from .exceptions import (
    InsufficientAllowance,
    InsufficientBalance,
    ValidationError,
    ZeroAddress,
)

logger = logging.getLogger(__name__)


class Token:
    """Fungible token ledger keyed by address."""

    def __init__(self, address: str, symbol: str, decimals: int = 18) -> None:
        if decimals < 0:
            raise ValidationError(f"Invalid decimals for {symbol}: {decimals}")
        self.address = address
        self.symbol = symbol
        self.decimals = decimals
        self._balances: dict[str, int] = {}
        self._allowances: dict[tuple[str, str], int] = {}
        self.total_supply = 0

    def __repr__(self) -> str:
        return f"Token({self.symbol}, {self.address})"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def mint(self, to: str, amount: int) -> None:
        if not to:
            raise ZeroAddress("Cannot mint to the zero address")
        self._balances[to] = self.balance_of(to) + amount
        self.total_supply += amount

    def approve(self, sender: str, spender: str, amount: int) -> bool:
        if not spender:
            raise ZeroAddress("Cannot approve the zero address")
        self._allowances[(sender, spender)] = amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        self._move(sender, to, amount)
        return True

    def transfer_from(self, sender: str, owner: str, to: str, amount: int) -> bool:
        allowed = self.allowance(owner, sender)
        if allowed < amount:
            raise InsufficientAllowance(
                f"{self.symbol}: allowance {allowed} < {amount} "
                f"(owner={owner}, spender={sender})"
            )
        self._move(owner, to, amount)
        self._allowances[(owner, sender)] = allowed - amount
        return True

    def _move(self, source: str, to: str, amount: int) -> None:
        if not to:
            raise ZeroAddress("Cannot transfer to the zero address")
        if amount < 0:
            raise ValidationError(f"Negative transfer amount: {amount}")
        balance = self.balance_of(source)
        if balance < amount:
            raise InsufficientBalance(
                f"{self.symbol}: balance {balance} < {amount} (account={source})"
            )
        self._balances[source] = balance - amount
        self._balances[to] = self.balance_of(to) + amount

    # ------------------------------------------------------------------
    # Transaction state
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[dict[str, int], dict[tuple[str, str], int], int]:
        return dict(self._balances), dict(self._allowances), self.total_supply

    def restore(self, state: tuple[dict[str, int], dict[tuple[str, str], int], int]) -> None:
        self._balances, self._allowances, self.total_supply = (
            dict(state[0]),
            dict(state[1]),
            state[2],
        )
