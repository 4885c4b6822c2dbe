"""
Multi-token reward accounting.

- ledger: per-token accrual index and arrival history
- checkpoints: per-account, per-token entitlement snapshots
- interceptor: settles both parties before any earning balance changes
- claims: pays out entitlements
"""

from .checkpoints import Checkpoint, CheckpointStore
from .claims import ClaimProcessor
from .interceptor import BalanceChangeInterceptor
from .ledger import RewardArrival, RewardLedger, RewardTokenRecord

__all__ = [
    "BalanceChangeInterceptor",
    "Checkpoint",
    "CheckpointStore",
    "ClaimProcessor",
    "RewardArrival",
    "RewardLedger",
    "RewardTokenRecord",
]
