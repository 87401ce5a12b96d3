"""Swap adapter protocol."""
from typing import Protocol


class SwapAdapter(Protocol):
    """Converts ``amount`` of ``token_in`` following caller-supplied instructions."""

    @property
    def address(self) -> str: ...

    def swap(self, sender: str, token_in: str, amount: int, instructions: bytes) -> int: ...
