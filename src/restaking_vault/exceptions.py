"""
Vault exception hierarchy.

Typed exceptions for every failure the vault can surface, grouped by the
kind of rule that was broken so callers can catch a whole family
(``SequencingError``) or one precise condition (``InsufficientScheduled``).
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class VaultError(Exception):
    """Base exception for all vault errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ReentrancyError(VaultError):
    """Raised when a state-changing call arrives while another is in progress."""
    pass


# ==================== Validation Errors ====================


class ValidationError(VaultError):
    """Raised when a request is rejected before any state is touched."""
    pass


class InvalidToken(ValidationError):
    """Raised when a reward token is the base asset or a null identifier."""
    pass


class AlreadyRegistered(ValidationError):
    """Raised when registering a reward token twice."""
    pass


class UnknownToken(ValidationError):
    """Raised when a reward token was never registered."""
    pass


class InvalidAmount(ValidationError):
    """Raised for zero or negative amounts where a positive one is required."""
    pass


class InsufficientShares(ValidationError):
    """Raised when an account's earning share balance cannot cover a request."""
    pass


class InsufficientBalance(ValidationError):
    """Raised when a token balance or allowance is too small for a transfer."""
    pass


# ==================== Authorization Errors ====================


class AuthorizationError(VaultError):
    pass


class Unauthorized(AuthorizationError):
    """Raised when the caller may not act for the given account."""
    pass


# ==================== Sequencing Errors ====================


class SequencingError(VaultError):
    """Raised when the unstake/withdraw lifecycle is driven out of order."""
    pass


class WithdrawalNotUnstaked(SequencingError):
    """Raised when scheduling a withdrawal larger than the unstaked amount."""
    pass


class InsufficientScheduled(SequencingError):
    """Raised when cancelling more than is currently scheduled."""
    pass


class NoScheduledAmount(SequencingError):
    """Raised when executing with nothing (or not enough) scheduled."""
    pass


# ==================== Timing Errors ====================


class TimingError(VaultError):
    pass


class DelayNotElapsed(TimingError):
    """Raised by the delegation gateway while a request's delay is still running."""

    def __init__(
        self,
        message: str,
        ready_at: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.ready_at = ready_at
