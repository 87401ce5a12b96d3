"""In-process world state: account registry, event log, atomic transactions."""
from __future__ import annotations

import functools
import hashlib
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Protocol, TypeVar, runtime_checkable

from .exceptions import ValidationError
from .interfaces.token import FungibleToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class Stateful(Protocol):
    """Participant whose mutable state is rolled back with a failed transaction."""

    def snapshot(self) -> Any: ...

    def restore(self, state: Any) -> None: ...


class World:
    """Registry of deployed accounts plus the transaction boundary.

    Only the outermost ``transaction()`` takes a snapshot. If an exception
    escapes it, every participant, the account registry and the event log
    are restored before the exception propagates.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Any] = {}
        self._events: list[Any] = []
        self._nonce = 0
        self._depth = 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def new_address(self, label: str = "") -> str:
        """Allocate a fresh deterministic address."""
        self._nonce += 1
        digest = hashlib.sha256(f"{self._nonce}:{label}".encode()).hexdigest()
        return "0x" + digest[:40]

    def deploy(self, account: T) -> T:
        """Register an object carrying an ``address`` attribute."""
        address = getattr(account, "address", "")
        if not address:
            raise ValidationError("Account has no address")
        if address in self._accounts:
            raise ValidationError(f"Address already in use: {address}")
        self._accounts[address] = account
        logger.debug("Deployed %s at %s", type(account).__name__, address)
        return account

    def get(self, address: str) -> Any:
        try:
            return self._accounts[address]
        except KeyError:
            raise ValidationError(f"Unknown account: {address}") from None

    def token(self, address: str) -> FungibleToken:
        """Resolve a token by address."""
        account = self.get(address)
        if not hasattr(account, "transfer_from"):
            raise ValidationError(f"Account {address} is not a token")
        return account

    def __contains__(self, address: object) -> bool:
        return address in self._accounts

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def emit(self, event: Any) -> None:
        self._events.append(event)

    def events(self, kind: type | None = None) -> list[Any]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if isinstance(e, kind)]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        accounts = dict(self._accounts)
        states = {
            address: account.snapshot()
            for address, account in accounts.items()
            if isinstance(account, Stateful)
        }
        events_len = len(self._events)
        nonce = self._nonce

        self._depth = 1
        try:
            yield
        except BaseException as e:
            self._accounts = accounts
            for address, state in states.items():
                accounts[address].restore(state)
            del self._events[events_len:]
            self._nonce = nonce
            logger.debug("Transaction reverted: %s", e)
            raise
        finally:
            self._depth = 0


def atomic(method: Callable[..., T]) -> Callable[..., T]:
    """Run a method of an object holding ``self._world`` inside a transaction."""

    @functools.wraps(method)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
        with self._world.transaction():
            return method(self, *args, **kwargs)

    return wrapper
