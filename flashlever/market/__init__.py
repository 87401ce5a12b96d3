"""Lending market implementations."""
from .memory import MemoryLendingMarket

__all__ = ["MemoryLendingMarket"]
