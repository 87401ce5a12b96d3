"""Flash-loan action payloads carried across the lender callback."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from .exceptions import InvalidAction

OPEN = "open"
CLOSE = "close"


@dataclass(frozen=True)
class OpenAction:
    """Open a leveraged position for ``user``."""

    user: str
    desired_ltv: int
    collateral_token: str
    loan_token: str
    amount_collateral: int
    swap_instructions: bytes


@dataclass(frozen=True)
class CloseAction:
    """Close ``user``'s position ``position_id``."""

    user: str
    position_id: int
    swap_instructions: bytes


Action = Union[OpenAction, CloseAction]


def encode_action(action: Action) -> bytes:
    """Serialize an action as a tagged JSON document."""
    if isinstance(action, OpenAction):
        doc: dict[str, Any] = {
            "action": OPEN,
            "user": action.user,
            "desired_ltv": action.desired_ltv,
            "collateral_token": action.collateral_token,
            "loan_token": action.loan_token,
            "amount_collateral": action.amount_collateral,
            "swap_instructions": action.swap_instructions.hex(),
        }
    elif isinstance(action, CloseAction):
        doc = {
            "action": CLOSE,
            "user": action.user,
            "position_id": action.position_id,
            "swap_instructions": action.swap_instructions.hex(),
        }
    else:
        raise InvalidAction(f"Cannot encode {type(action).__name__}")
    return json.dumps(doc, sort_keys=True).encode()


def decode_action(data: bytes) -> Action:
    """Parse a payload produced by ``encode_action``."""
    try:
        doc = json.loads(data)
        tag = doc["action"]
        if tag == OPEN:
            return OpenAction(
                user=str(doc["user"]),
                desired_ltv=int(doc["desired_ltv"]),
                collateral_token=str(doc["collateral_token"]),
                loan_token=str(doc["loan_token"]),
                amount_collateral=int(doc["amount_collateral"]),
                swap_instructions=bytes.fromhex(doc["swap_instructions"]),
            )
        if tag == CLOSE:
            return CloseAction(
                user=str(doc["user"]),
                position_id=int(doc["position_id"]),
                swap_instructions=bytes.fromhex(doc["swap_instructions"]),
            )
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidAction(f"Malformed action payload: {e}") from e
    raise InvalidAction(f"Unknown action tag: {tag!r}")
