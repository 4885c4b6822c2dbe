"""
Checkpoint Store.

One checkpoint per (account, reward token). A checkpoint freezes the index
and earning share balance at the last moment the account's entitlement was
settled, plus whatever was settled but not yet paid:

    entitlement = pending_amount
                + round(share_balance * (index - index_at_snapshot) / precision)

Checkpoints are created lazily and overwritten, never deleted; a zero-balance
checkpoint simply earns nothing further.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from .. import events as ev
from ..config import RoundingMode
from ..contracts.erc20 import normalize_address
from ..events import EventLog
from ..fixed_point import mul_div_mode
from ..journal import UndoJournal
from .ledger import RewardLedger

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    index_at_snapshot: int = 0
    timestamp: float = 0.0
    share_balance: int = 0
    history_cursor: int = 0  # informational only
    pending_amount: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index_at_snapshot": self.index_at_snapshot,
            "timestamp": self.timestamp,
            "share_balance": self.share_balance,
            "history_cursor": self.history_cursor,
            "pending_amount": self.pending_amount,
        }


class CheckpointStore:
    """Per-account, per-token entitlement snapshots."""

    def __init__(
        self,
        ledger: RewardLedger,
        events: EventLog,
        earning_balance_of: Callable[[str], int],
        rounding: RoundingMode = RoundingMode.UP,
        clock: Callable[[], float] = time.time,
        journal: UndoJournal | None = None,
    ) -> None:
        self._ledger = ledger
        self._journal = journal if journal is not None else UndoJournal()
        self._events = events
        self._earning_balance_of = earning_balance_of
        self._clock = clock
        self.rounding = rounding
        self.checkpoints: dict[tuple[str, str], Checkpoint] = {}

    def get(self, account: str, token: str) -> Checkpoint | None:
        return self.checkpoints.get((normalize_address(account), normalize_address(token)))

    def snapshot_account(
        self,
        account: str,
        token: str,
        share_balance: int,
        pending_amount: int,
    ) -> Checkpoint:
        """
        Overwrite the checkpoint for (account, token) at the token's current index.

        This is the only mutator of checkpoint state.
        """
        key = (normalize_address(account), normalize_address(token))
        created = key not in self.checkpoints
        checkpoint = Checkpoint(
            index_at_snapshot=self._ledger.index(token),
            timestamp=self._clock(),
            share_balance=share_balance,
            history_cursor=self._ledger.history_length(token),
            pending_amount=pending_amount,
        )
        self._journal.set_item(self.checkpoints, key, checkpoint)

        if created:
            self._events.emit(
                ev.CHECKPOINT_CREATED,
                account=key[0],
                token=key[1],
                share_balance=share_balance,
            )
        logger.debug(
            "Checkpoint written",
            extra={
                "event": "rewards.checkpoint",
                "account": key[0][:10],
                "token": key[1][:10],
                "share_balance": share_balance,
                "pending": pending_amount,
                "index": checkpoint.index_at_snapshot,
            },
        )
        return checkpoint

    def accrued(self, checkpoint: Checkpoint, index: int) -> int:
        return mul_div_mode(
            checkpoint.share_balance,
            index - checkpoint.index_at_snapshot,
            self._ledger.precision,
            self.rounding,
        )

    def compute_entitlement(self, account: str, token: str, index: int | None = None) -> int:
        """
        Current entitlement of ``account`` in ``token``. Read-only.

        Reflects the latest rewards only if the ledger was refreshed first,
        unless an explicit (e.g. previewed) ``index`` is passed.
        """
        checkpoint = self.get(account, token)
        if checkpoint is None:
            # No balance change since the token was registered at index 0.
            checkpoint = Checkpoint(share_balance=self._earning_balance_of(account))
        if index is None:
            index = self._ledger.index(token)
        return checkpoint.pending_amount + self.accrued(checkpoint, index)

    def for_account(self, account: str) -> dict[str, dict[str, Any]]:
        account = normalize_address(account)
        return {
            token: checkpoint.to_dict()
            for (holder, token), checkpoint in self.checkpoints.items()
            if holder == account
        }
