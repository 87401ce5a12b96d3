"""Per-position proxy identities and their factory.

Each opened position gets its own proxy, so its market account holds
exactly that position's collateral and debt.

While the controller's recovery mode is on, a proxy's own user may drive
it directly. That bypasses the engine's risk checks and fee accounting
for the duration, so the isolation invariants only hold while recovery
mode is off.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .exceptions import AlreadyInitialized, CallFailed, Unauthorized, ZeroAddress
from .world import World, atomic

logger = logging.getLogger(__name__)


class ProxyController(Protocol):
    """Engine-side view a proxy needs for authorization."""

    @property
    def address(self) -> str: ...

    @property
    def recovery_mode(self) -> bool: ...


@dataclass(frozen=True)
class ProxyCall:
    """A call the proxy makes as itself: ``target.method(sender=proxy, **kwargs)``."""

    target: Any
    method: str
    kwargs: dict[str, Any] = field(default_factory=dict)


class PositionProxy:
    """Disposable identity owning one position's market account."""

    def __init__(self, address: str, controller: ProxyController, world: World) -> None:
        self.address = address
        self._controller = controller
        self._world = world
        self._user = ""
        self._initialized = False

    @property
    def user(self) -> str:
        return self._user

    @property
    def initialized(self) -> bool:
        return self._initialized

    @atomic
    def initialize(self, sender: str, user: str) -> None:
        if self._initialized:
            raise AlreadyInitialized(f"Proxy {self.address} already initialized")
        if sender != self._controller.address:
            raise Unauthorized(f"{sender} may not initialize proxy {self.address}")
        if not user:
            raise ZeroAddress("Proxy user is the zero address")
        self._user = user
        self._initialized = True

    @atomic
    def execute(self, sender: str, call: ProxyCall) -> Any:
        """Forward ``call`` as this proxy, if ``sender`` is allowed to drive it."""
        if not self._is_authorized(sender):
            raise Unauthorized(f"{sender} may not execute through proxy {self.address}")

        try:
            fn = getattr(call.target, call.method)
        except AttributeError as e:
            raise CallFailed(f"{call.method} is not callable on target") from e

        try:
            return fn(sender=self.address, **call.kwargs)
        except Exception as e:
            raise CallFailed(f"Proxy {self.address} call {call.method} failed: {e}") from e

    def _is_authorized(self, sender: str) -> bool:
        if sender == self._controller.address:
            return True
        return (
            self._initialized
            and sender == self._user
            and self._controller.recovery_mode
        )

    def snapshot(self) -> tuple[str, bool]:
        return self._user, self._initialized

    def restore(self, state: tuple[str, bool]) -> None:
        self._user, self._initialized = state


class ProxyFactory:
    """Allocates a fresh proxy per position and keeps the registry."""

    def __init__(self, controller: ProxyController, world: World) -> None:
        self._controller = controller
        self._world = world
        self._proxies: list[str] = []

    def create(self, user: str) -> PositionProxy:
        """Deploy and initialize a new proxy bound to ``user``."""
        if not user:
            raise ZeroAddress("Proxy user is the zero address")
        proxy = PositionProxy(
            self._world.new_address("proxy"), self._controller, self._world
        )
        self._world.deploy(proxy)
        proxy.initialize(self._controller.address, user)
        self._proxies.append(proxy.address)
        logger.info("Created proxy %s for %s", proxy.address, user)
        return proxy

    def get(self, address: str) -> PositionProxy:
        return self._world.get(address)

    def proxies(self) -> list[str]:
        return list(self._proxies)

    def snapshot(self) -> list[str]:
        return list(self._proxies)

    def restore(self, state: list[str]) -> None:
        self._proxies = list(state)
