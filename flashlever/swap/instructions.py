"""Swap instruction encoding. Opaque to the engine, parsed only by the adapter."""
from __future__ import annotations

import json
from dataclasses import dataclass

from ..exceptions import SwapError


@dataclass(frozen=True)
class SwapRoute:
    token_out: str
    min_amount_out: int = 0


def encode_swap_instructions(token_out: str, min_amount_out: int = 0) -> bytes:
    return json.dumps(
        {"token_out": token_out, "min_amount_out": min_amount_out}, sort_keys=True
    ).encode()


def decode_swap_instructions(data: bytes) -> SwapRoute:
    try:
        doc = json.loads(data)
        return SwapRoute(
            token_out=str(doc["token_out"]),
            min_amount_out=int(doc.get("min_amount_out", 0)),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise SwapError(f"Malformed swap instructions: {e}") from e
