"""
Observable vault events.

Events are for external indexing only; nothing in the engine reads them back
to make a decision. The log is transactional so that an aborted operation
leaves no events behind.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .journal import UndoJournal

REWARD_TOKEN_REGISTERED = "RewardTokenRegistered"
REWARD_INDEX_UPDATED = "RewardIndexUpdated"
CHECKPOINT_CREATED = "CheckpointCreated"
REWARDS_CLAIMED = "RewardsClaimed"
DEPOSIT = "Deposit"
WITHDRAW = "Withdraw"
UNSTAKE_SCHEDULED = "UnstakeScheduled"
UNSTAKE_CANCELLED = "UnstakeCancelled"
UNSTAKE_EXECUTED = "UnstakeExecuted"
WITHDRAW_SCHEDULED = "WithdrawScheduled"
WITHDRAW_CANCELLED = "WithdrawCancelled"


@dataclass
class VaultEvent:
    """A single emitted event."""

    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class EventLog:
    """Append-only event stream; appends are journaled so rollback drops them."""

    def __init__(
        self, clock: Callable[[], float] = time.time, journal: UndoJournal | None = None
    ) -> None:
        self._clock = clock
        self._journal = journal if journal is not None else UndoJournal()
        self.events: list[VaultEvent] = []

    def emit(self, event_type: str, **data: Any) -> VaultEvent:
        event = VaultEvent(event_type=event_type, data=data, timestamp=self._clock())
        self._journal.append(self.events, event)
        return event

    def of_type(self, event_type: str) -> list[VaultEvent]:
        return [event for event in self.events if event.event_type == event_type]

    def since(self, position: int) -> list[VaultEvent]:
        return self.events[position:]

    def __len__(self) -> int:
        return len(self.events)
