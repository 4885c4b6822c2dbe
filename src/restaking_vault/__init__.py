"""
Restaking Vault.

Pooled-deposit accounting engine: users deposit a base asset for shares,
the pool delegates it through a delay-gated backend, and reward tokens
arriving at the pool are distributed to share holders in exact proportion
to the shares they held while each reward arrived.
"""

from .config import RoundingMode, VaultConfig, ZeroSupplyPolicy
from .contracts import ZERO_ADDRESS, ERC20Token, TokenRegistry
from .delegation import InMemoryDelegationGateway
from .events import EventLog, VaultEvent
from .exceptions import (
    AlreadyRegistered,
    DelayNotElapsed,
    InsufficientScheduled,
    InsufficientShares,
    InvalidAmount,
    InvalidToken,
    NoScheduledAmount,
    ReentrancyError,
    Unauthorized,
    UnknownToken,
    VaultError,
    WithdrawalNotUnstaked,
)
from .interfaces import DelegationGateway, DelegationTicket, ShareBook, TokenBank
from .vault import LiquidRestakingVault

__version__ = "0.1.0"

__all__ = [
    # Engine
    "LiquidRestakingVault",
    "VaultConfig",
    "ZeroSupplyPolicy",
    "RoundingMode",
    # Collaborators
    "ShareBook",
    "TokenBank",
    "DelegationGateway",
    "DelegationTicket",
    "ERC20Token",
    "TokenRegistry",
    "InMemoryDelegationGateway",
    "ZERO_ADDRESS",
    # Events
    "EventLog",
    "VaultEvent",
    # Errors
    "VaultError",
    "InvalidToken",
    "InvalidAmount",
    "AlreadyRegistered",
    "UnknownToken",
    "Unauthorized",
    "InsufficientShares",
    "WithdrawalNotUnstaked",
    "InsufficientScheduled",
    "NoScheduledAmount",
    "DelayNotElapsed",
    "ReentrancyError",
]
