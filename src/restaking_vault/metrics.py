"""
Vault instrumentation.

Prometheus metrics fed from committed vault events. Helpers are only called
after an operation has fully committed, so rolled-back work is never counted.
"""

from __future__ import annotations

from typing import Iterable

from prometheus_client import Counter, Gauge

from . import events as ev
from .events import VaultEvent

rewards_indexed_counter = Counter(
    "lrt_rewards_indexed_total",
    "Reward token amounts observed arriving at the vault",
    ["vault", "token"],
)

rewards_claimed_counter = Counter(
    "lrt_rewards_claimed_total",
    "Reward token amounts paid out to share holders",
    ["vault", "token"],
)

lifecycle_counter = Counter(
    "lrt_lifecycle_events_total",
    "Deposit, unstake and withdraw lifecycle events",
    ["vault", "action"],
)

reward_index_gauge = Gauge(
    "lrt_reward_index",
    "Current accrual index per reward token",
    ["vault", "token"],
)

_LIFECYCLE_ACTIONS = {
    ev.DEPOSIT: "deposit",
    ev.WITHDRAW: "withdraw",
    ev.UNSTAKE_SCHEDULED: "unstake_scheduled",
    ev.UNSTAKE_CANCELLED: "unstake_cancelled",
    ev.UNSTAKE_EXECUTED: "unstake_executed",
    ev.WITHDRAW_SCHEDULED: "withdraw_scheduled",
    ev.WITHDRAW_CANCELLED: "withdraw_cancelled",
}


def record_event(vault: str, event: VaultEvent) -> None:
    """Update counters for a single committed event."""
    data = event.data
    if event.event_type == ev.REWARD_INDEX_UPDATED:
        if data.get("amount", 0) > 0:
            rewards_indexed_counter.labels(vault=vault, token=data["token"]).inc(data["amount"])
        reward_index_gauge.labels(vault=vault, token=data["token"]).set(data["index"])
    elif event.event_type == ev.REWARDS_CLAIMED:
        if data.get("amount", 0) > 0:
            rewards_claimed_counter.labels(vault=vault, token=data["token"]).inc(data["amount"])
    elif event.event_type in _LIFECYCLE_ACTIONS:
        lifecycle_counter.labels(vault=vault, action=_LIFECYCLE_ACTIONS[event.event_type]).inc()


def record_events(vault: str, committed: Iterable[VaultEvent]) -> None:
    for event in committed:
        record_event(vault, event)
