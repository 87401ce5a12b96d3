"""Flash leverage engine — open and close leveraged positions in one transaction.

Open: pull the user's collateral, flash-borrow the loan token, swap it to
collateral, supply everything through a fresh proxy, borrow against it and
repay the flash loan with the borrowed funds.

Close: flash-borrow enough loan token to clear the proxy's debt, withdraw
the collateral, swap it back, repay the flash loan and split what is left
between the treasury (a cut of the yield) and the user.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from .actions import CloseAction, OpenAction, encode_action
from .constants import LIQUIDATION_BUFFER, MAX_YIELD_FEE, SLIPPAGE_BUFFER
from .exceptions import (
    InsufficientProceeds,
    InvalidFee,
    InvalidMarket,
    LtvTooHigh,
    NotOwner,
    PositionAlreadyClosed,
    PositionNotFound,
    SlippageExceeded,
    ValidationError,
    ZeroAddress,
    ZeroAmount,
)
from .fixed_point import (
    WAD,
    effective_ltv,
    from_wad,
    leverage_loan_wad,
    to_wad,
    yield_fee,
    zero_floor_sub,
)
from .interfaces.lending_market import LendingMarket
from .interfaces.swap_adapter import SwapAdapter
from .manager import MarketPositionManager
from .models import (
    LeveragePosition,
    MarketParams,
    MarketRegistered,
    PositionClosed,
    PositionOpened,
    ProtocolSettings,
    ProxyCreated,
    RecoveryModeUpdated,
    TokenRecovered,
    TreasuryUpdated,
    YieldFeeUpdated,
)
from .proxy import ProxyFactory
from .world import World, atomic

logger = logging.getLogger(__name__)


def validate_yield_fee(fee: int) -> int:
    if not 1 <= fee <= MAX_YIELD_FEE:
        raise InvalidFee(f"Yield fee {fee} outside [1, {MAX_YIELD_FEE}]")
    return fee


class FlashLeverageEngine:
    """Public entry point: position ledger, protocol settings, open/close handlers."""

    def __init__(
        self,
        address: str,
        world: World,
        market: LendingMarket,
        swap_adapter: SwapAdapter,
        owner: str,
        treasury: str,
        yield_fee: int,
    ) -> None:
        if not owner:
            raise ZeroAddress("Owner is the zero address")
        if not treasury:
            raise ZeroAddress("Treasury is the zero address")

        self.address = address
        self._world = world
        self._swap = swap_adapter
        self._owner = owner
        self._settings = ProtocolSettings(
            treasury=treasury, yield_fee=validate_yield_fee(yield_fee)
        )
        self._positions: dict[str, list[LeveragePosition]] = {}
        self._manager = MarketPositionManager(address, market, world, handler=self)
        self._proxies = ProxyFactory(self, world)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def settings(self) -> ProtocolSettings:
        return self._settings

    @property
    def treasury(self) -> str:
        return self._settings.treasury

    @property
    def yield_fee(self) -> int:
        return self._settings.yield_fee

    @property
    def recovery_mode(self) -> bool:
        return self._settings.recovery_mode

    @property
    def manager(self) -> MarketPositionManager:
        return self._manager

    @property
    def proxies(self) -> ProxyFactory:
        return self._proxies

    def positions(self, user: str) -> list[LeveragePosition]:
        return list(self._positions.get(user, []))

    def position_count(self, user: str) -> int:
        return len(self._positions.get(user, []))

    def position(self, user: str, position_id: int) -> LeveragePosition:
        user_positions = self._positions.get(user, [])
        if not 0 <= position_id < len(user_positions):
            raise PositionNotFound(f"No position {position_id} for {user}")
        return user_positions[position_id]

    def market_params(self, collateral_token: str, loan_token: str) -> MarketParams:
        return self._manager.market_params(collateral_token, loan_token)

    def max_ltv(self, collateral_token: str, loan_token: str) -> int:
        """Highest desired LTV accepted for a pair: liquidation LTV minus the buffer."""
        params = self._manager.market_params(collateral_token, loan_token)
        return params.lltv - LIQUIDATION_BUFFER

    def calc_leverage_flash_loan(
        self,
        collateral_token: str,
        loan_token: str,
        amount_collateral: int,
        desired_ltv: int,
    ) -> int:
        """Loan-token amount that takes ``amount_collateral`` to ``desired_ltv``."""
        if not 0 <= desired_ltv < WAD:
            raise ValidationError(f"Desired LTV out of range: {desired_ltv}")
        params = self._manager.market_params(collateral_token, loan_token)
        decimals = self._manager.loan_decimals(loan_token)

        value = self._manager.collateral_value(params, amount_collateral)
        loan_wad = leverage_loan_wad(to_wad(value, decimals), desired_ltv)
        return from_wad(loan_wad, decimals)

    def calc_deleverage_flash_loan(self, user: str, position_id: int) -> int:
        """Loan-token amount that clears a position's debt at the current borrow rate."""
        position = self.position(user, position_id)
        params = self._manager.market_params(position.collateral_token, position.loan_token)
        return self._manager.borrow_shares_to_assets_up(params, position.shares_borrowed)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @atomic
    def leverage(
        self,
        sender: str,
        on_behalf_of: str,
        desired_ltv: int,
        collateral_token: str,
        loan_token: str,
        amount_collateral: int,
        swap_instructions: bytes,
    ) -> int:
        """Open a leveraged position for ``on_behalf_of``; returns its position id."""
        if not on_behalf_of:
            raise ZeroAddress("on_behalf_of is the zero address")
        if amount_collateral == 0:
            raise ZeroAmount("Collateral amount is zero")

        max_ltv = self.max_ltv(collateral_token, loan_token)
        if desired_ltv > max_ltv:
            raise LtvTooHigh(desired_ltv, max_ltv)

        self._world.token(collateral_token).transfer_from(
            self.address, sender, self.address, amount_collateral
        )

        loan_amount = self.calc_leverage_flash_loan(
            collateral_token, loan_token, amount_collateral, desired_ltv
        )
        logger.info(
            "Leverage requested by %s for %s: %d collateral at LTV %d, flash loan %d",
            sender, on_behalf_of, amount_collateral, desired_ltv, loan_amount,
        )

        data = encode_action(
            OpenAction(
                user=on_behalf_of,
                desired_ltv=desired_ltv,
                collateral_token=collateral_token,
                loan_token=loan_token,
                amount_collateral=amount_collateral,
                swap_instructions=swap_instructions,
            )
        )
        self._manager.market.flash_loan(self, loan_token, loan_amount, data)
        return self.position_count(on_behalf_of) - 1

    @atomic
    def deleverage(self, sender: str, position_id: int, swap_instructions: bytes) -> None:
        """Close ``sender``'s position ``position_id``."""
        position = self.position(sender, position_id)
        if not position.open:
            raise PositionAlreadyClosed(f"Position {position_id} of {sender} is closed")

        loan_amount = self.calc_deleverage_flash_loan(sender, position_id)
        logger.info(
            "Deleverage requested by %s for position %d, flash loan %d",
            sender, position_id, loan_amount,
        )

        data = encode_action(
            CloseAction(
                user=sender,
                position_id=position_id,
                swap_instructions=swap_instructions,
            )
        )
        self._manager.market.flash_loan(self, position.loan_token, loan_amount, data)

    @atomic
    def create_user_proxy(self, user: str) -> str:
        """Allocate a fresh proxy bound to ``user``; returns its address."""
        proxy = self._proxies.create(user)
        self._world.emit(ProxyCreated(user=user, proxy=proxy.address))
        return proxy.address

    def on_flash_loan(self, sender: str, assets: int, data: bytes) -> None:
        self._manager.on_flash_loan(sender, assets, data)

    # ------------------------------------------------------------------
    # Action handlers (called by the manager inside the flash loan)
    # ------------------------------------------------------------------

    def handle_open(self, assets: int, action: OpenAction) -> None:
        params = self._manager.market_params(action.collateral_token, action.loan_token)
        decimals = self._manager.loan_decimals(action.loan_token)
        loan = self._world.token(action.loan_token)

        loan.approve(self.address, self._swap.address, assets)
        amount_out = self._swap.swap(
            self.address, action.loan_token, assets, action.swap_instructions
        )
        amount_leveraged = action.amount_collateral + amount_out

        ltv = effective_ltv(
            to_wad(assets, decimals, round_up=True),
            to_wad(self._manager.collateral_value(params, amount_leveraged), decimals),
        )
        if ltv > action.desired_ltv + SLIPPAGE_BUFFER:
            raise SlippageExceeded(action.desired_ltv, ltv)

        proxy = self._proxies.create(action.user)
        self._world.emit(ProxyCreated(user=action.user, proxy=proxy.address))
        self._manager.supply_collateral(proxy, params, amount_leveraged)
        shares = self._manager.borrow(proxy, params, assets)

        loan.approve(self.address, self._manager.market.address, assets)

        position = LeveragePosition(
            open=True,
            collateral_token=action.collateral_token,
            loan_token=action.loan_token,
            amount_collateral=action.amount_collateral,
            amount_leveraged_collateral=amount_leveraged,
            shares_borrowed=shares,
            proxy=proxy.address,
            amount_collateral_in_loan_token=self._manager.collateral_value(
                params, action.amount_collateral
            ),
        )
        user_positions = self._positions.setdefault(action.user, [])
        position_id = len(user_positions)
        user_positions.append(position)

        logger.info(
            "Opened position %d for %s: collateral %d -> %d, debt %d (%d shares), LTV %d",
            position_id, action.user, action.amount_collateral, amount_leveraged,
            assets, shares, ltv,
        )
        self._world.emit(
            PositionOpened(
                user=action.user,
                position_id=position_id,
                proxy=proxy.address,
                collateral_token=action.collateral_token,
                loan_token=action.loan_token,
                amount_collateral=action.amount_collateral,
                amount_leveraged_collateral=amount_leveraged,
                loan_amount=assets,
                shares_borrowed=shares,
            )
        )

    def handle_close(self, assets: int, action: CloseAction) -> None:
        position = self.position(action.user, action.position_id)
        if not position.open:
            raise PositionAlreadyClosed(
                f"Position {action.position_id} of {action.user} is closed"
            )
        params = self._manager.market_params(position.collateral_token, position.loan_token)
        decimals = self._manager.loan_decimals(position.loan_token)
        proxy = self._proxies.get(position.proxy)
        loan = self._world.token(position.loan_token)

        live_shares = self._manager.borrow_shares_of(params, proxy.address)
        repaid = self._manager.repay(
            proxy, params, min(position.shares_borrowed, live_shares)
        )
        if repaid < assets:
            logger.warning(
                "Position %d of %s owed %d but the flash loan was %d; "
                "%d stays in the engine until recovered",
                action.position_id, action.user, repaid, assets, assets - repaid,
            )
        self._manager.withdraw_collateral(
            proxy, params, position.amount_leveraged_collateral
        )

        self._world.token(position.collateral_token).approve(
            self.address, self._swap.address, position.amount_leveraged_collateral
        )
        swapped = self._swap.swap(
            self.address,
            position.collateral_token,
            position.amount_leveraged_collateral,
            action.swap_instructions,
        )
        if swapped < assets:
            raise InsufficientProceeds(swapped, assets)
        total_returned = zero_floor_sub(swapped, assets)

        self._positions[action.user][action.position_id] = replace(position, open=False)

        earned = zero_floor_sub(total_returned, position.amount_collateral_in_loan_token)
        fee = yield_fee(earned, self._settings.yield_fee, decimals)
        user_amount = total_returned - fee
        if fee > 0:
            loan.transfer(self.address, self._settings.treasury, fee)
        if user_amount > 0:
            loan.transfer(self.address, action.user, user_amount)

        loan.approve(self.address, self._manager.market.address, assets)

        logger.info(
            "Closed position %d for %s: returned %d, yield %d, fee %d",
            action.position_id, action.user, total_returned, earned, fee,
        )
        self._world.emit(
            PositionClosed(
                user=action.user,
                position_id=action.position_id,
                total_amount_returned=total_returned,
                user_amount_returned=user_amount,
                fee=fee,
            )
        )

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def _only_owner(self, sender: str) -> None:
        if sender != self._owner:
            raise NotOwner(f"{sender} is not the owner")

    @atomic
    def register_market(
        self, sender: str, collateral_token: str, loan_token: str, market_id: str
    ) -> MarketParams:
        self._only_owner(sender)
        params = self._manager.market.market_params(market_id)
        if params is not None and params.lltv <= LIQUIDATION_BUFFER:
            raise InvalidMarket(
                f"LLTV {params.lltv} leaves no room below the liquidation buffer"
            )
        params = self._manager.register(collateral_token, loan_token, market_id)
        decimals = self._manager.loan_decimals(loan_token)
        logger.info(
            "Registered market %s for collateral=%s loan=%s (lltv=%d, loan decimals=%d)",
            market_id, collateral_token, loan_token, params.lltv, decimals,
        )
        self._world.emit(
            MarketRegistered(
                collateral_token=collateral_token,
                loan_token=loan_token,
                market_id=market_id,
                loan_decimals=decimals,
            )
        )
        return params

    @atomic
    def set_treasury(self, sender: str, treasury: str) -> None:
        self._only_owner(sender)
        if not treasury:
            raise ZeroAddress("Treasury is the zero address")
        self._settings = replace(self._settings, treasury=treasury)
        self._world.emit(TreasuryUpdated(treasury=treasury))

    @atomic
    def set_yield_fee(self, sender: str, fee: int) -> None:
        self._only_owner(sender)
        self._settings = replace(self._settings, yield_fee=validate_yield_fee(fee))
        self._world.emit(YieldFeeUpdated(yield_fee=fee))

    @atomic
    def set_recovery_mode(self, sender: str, enabled: bool) -> None:
        self._only_owner(sender)
        self._settings = replace(self._settings, recovery_mode=enabled)
        if enabled:
            logger.warning(
                "Recovery mode enabled: users may operate their proxies directly"
            )
        else:
            logger.info("Recovery mode disabled")
        self._world.emit(RecoveryModeUpdated(enabled=enabled))

    @atomic
    def recover_token(self, sender: str, token: str, amount: int, to: str = "") -> None:
        """Send a stray token balance held by the engine to ``to`` (default: owner)."""
        self._only_owner(sender)
        to = to or self._owner
        self._world.token(token).transfer(self.address, to, amount)
        self._world.emit(TokenRecovered(token=token, amount=amount, to=to))

    @atomic
    def transfer_ownership(self, sender: str, new_owner: str) -> None:
        self._only_owner(sender)
        if not new_owner:
            raise ZeroAddress("New owner is the zero address")
        logger.info("Ownership transferred from %s to %s", self._owner, new_owner)
        self._owner = new_owner

    # ------------------------------------------------------------------
    # Transaction state
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[Any, ...]:
        return (
            {user: list(entries) for user, entries in self._positions.items()},
            self._settings,
            self._owner,
            self._manager.snapshot(),
            self._proxies.snapshot(),
        )

    def restore(self, state: tuple[Any, ...]) -> None:
        positions, self._settings, self._owner, manager_state, proxies_state = state
        self._positions = {user: list(entries) for user, entries in positions.items()}
        self._manager.restore(manager_state)
        self._proxies.restore(proxies_state)
