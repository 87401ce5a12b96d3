"""Fungible token protocol."""
from typing import Protocol


class FungibleToken(Protocol):
    """Standard balance/transfer/approve semantics."""

    @property
    def address(self) -> str: ...

    @property
    def decimals(self) -> int: ...

    def balance_of(self, account: str) -> int: ...

    def approve(self, sender: str, spender: str, amount: int) -> bool: ...

    def transfer(self, sender: str, to: str, amount: int) -> bool: ...

    def transfer_from(self, sender: str, owner: str, to: str, amount: int) -> bool: ...
