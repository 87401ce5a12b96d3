"""Price oracle protocols."""
from collections.abc import Iterable
from typing import Protocol


class PriceOracle(Protocol):
    """On-chain style oracle: loan units per collateral unit, scaled by 1e36."""

    def price(self) -> int: ...


class PriceFeed(Protocol):
    """Off-chain USD quote source."""

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]: ...

    async def fetch_pair_prices(
        self, pairs: Iterable[tuple[str, str]], decimals: dict[str, int]
    ) -> dict[tuple[str, str], int]: ...
