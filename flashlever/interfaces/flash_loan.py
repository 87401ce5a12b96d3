"""Flash-loan callback protocols."""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..actions import CloseAction, OpenAction


class FlashLoanReceiver(Protocol):
    """Borrower called back synchronously by the lender during a flash loan."""

    @property
    def address(self) -> str: ...

    def on_flash_loan(self, sender: str, assets: int, data: bytes) -> None: ...


class ActionHandler(Protocol):
    """Leverage policy invoked by the callback dispatcher, one method per action tag."""

    def handle_open(self, assets: int, action: "OpenAction") -> None: ...

    def handle_close(self, assets: int, action: "CloseAction") -> None: ...
