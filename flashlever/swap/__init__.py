"""Swap adapters and instruction encoding."""
from .instructions import SwapRoute, decode_swap_instructions, encode_swap_instructions
from .memory import MemorySwapAdapter

__all__ = [
    "MemorySwapAdapter",
    "SwapRoute",
    "decode_swap_instructions",
    "encode_swap_instructions",
]
