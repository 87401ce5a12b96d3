"""Exception hierarchy for the flash leverage engine.

Every error aborts the enclosing transaction; nothing is caught and
retried inside the core.
"""
from __future__ import annotations


class FlashLeverError(Exception):
    """Base exception for flashlever."""


class ConfigError(FlashLeverError, ValueError):
    """Configuration is missing, invalid, or inconsistent."""


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class ValidationError(FlashLeverError):
    """A caller supplied an invalid argument."""


class ZeroAddress(ValidationError):
    """An address argument was empty."""


class ZeroAmount(ValidationError):
    """An amount argument was zero."""


class UnsupportedMarket(ValidationError):
    """The collateral/loan pair is not registered."""

    def __init__(self, collateral_token: str, loan_token: str) -> None:
        super().__init__(
            f"Unsupported market: collateral={collateral_token} loan={loan_token}"
        )
        self.collateral_token = collateral_token
        self.loan_token = loan_token


class LtvTooHigh(ValidationError):
    """Desired LTV exceeds the market's maximum."""

    def __init__(self, desired_ltv: int, max_ltv: int) -> None:
        super().__init__(f"Desired LTV {desired_ltv} exceeds max LTV {max_ltv}")
        self.desired_ltv = desired_ltv
        self.max_ltv = max_ltv


class InvalidFee(ValidationError):
    """Yield fee outside [1, MAX_YIELD_FEE]."""


class InvalidMarket(ValidationError):
    """Market parameters do not describe a usable market."""


class InvalidCollateralDecimals(ValidationError):
    """Collateral token does not use 18 decimals."""


class InvalidAction(ValidationError):
    """Flash-loan payload could not be decoded."""


class PositionNotFound(ValidationError, IndexError):
    """No position at the requested id."""


class PositionAlreadyClosed(ValidationError):
    """The position has already been closed."""


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationError(FlashLeverError):
    """Caller is not allowed to perform the operation."""


class NotOwner(AuthorizationError):
    """Caller is not the contract owner."""


class UntrustedLender(AuthorizationError):
    """Flash-loan callback did not come from the registered lending market."""


class Unauthorized(AuthorizationError):
    """Caller may not act through this proxy or on behalf of this account."""


class AlreadyInitialized(AuthorizationError):
    """Proxy has already been bound to a user."""


# ---------------------------------------------------------------------------
# Risk
# ---------------------------------------------------------------------------


class RiskError(FlashLeverError):
    """A risk limit would be breached."""


class SlippageExceeded(RiskError):
    """Effective LTV after the swap is above desired LTV plus the slippage buffer."""

    def __init__(self, desired_ltv: int, effective_ltv: int) -> None:
        super().__init__(
            f"Effective LTV {effective_ltv} exceeds desired LTV {desired_ltv} "
            "plus slippage buffer"
        )
        self.desired_ltv = desired_ltv
        self.effective_ltv = effective_ltv


class InsufficientCollateral(RiskError):
    """Market position would be unhealthy."""


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecutionError(FlashLeverError):
    """A downstream step failed."""


class CallFailed(ExecutionError):
    """A call forwarded through a proxy raised."""


class ReentrantCall(ExecutionError):
    """Callback entered while another callback is in progress."""


class InsufficientBalance(ExecutionError):
    """Token balance too low for a transfer."""


class InsufficientAllowance(ExecutionError):
    """Token allowance too low for a transfer_from."""


class InsufficientLiquidity(ExecutionError):
    """Market cannot fund the requested borrow."""


class InsufficientProceeds(ExecutionError):
    """Swap proceeds do not cover the flash loan being repaid."""

    def __init__(self, proceeds: int, flash_loan: int) -> None:
        super().__init__(
            f"Swap proceeds {proceeds} do not cover flash loan {flash_loan}"
        )
        self.proceeds = proceeds
        self.flash_loan = flash_loan


class SwapError(ExecutionError):
    """Swap adapter could not execute the instructions."""
