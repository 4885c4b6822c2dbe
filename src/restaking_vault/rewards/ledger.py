"""
Reward Ledger.

Keeps one accrual index per registered reward token. The index is the
cumulative reward paid per earning share since registration, scaled by
``precision``:

    index += floor(delta * precision / earning_supply)

Reward arrivals are never pushed to the ledger. They are discovered lazily
on ``refresh``: whatever the vault holds of a token beyond what was already
recorded (net of payouts) is a new arrival. Flooring the increment means the
index can never promise more than was collected; the remainder stays in the
vault as dust.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .. import events as ev
from ..config import ZeroSupplyPolicy
from ..contracts.erc20 import ZERO_ADDRESS, normalize_address
from ..events import EventLog
from ..exceptions import AlreadyRegistered, InvalidToken, UnknownToken
from ..interfaces import TokenBank
from ..journal import UndoJournal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewardArrival:
    """One observed reward payment into the vault."""

    timestamp: float
    amount: int


@dataclass
class RewardTokenRecord:
    """
    Accrual state for one reward token.

    ``recorded_total`` is the running sum of ``history`` amounts and
    ``total_paid`` the sum of claim payouts, so the vault is expected to hold
    exactly ``recorded_total - total_paid`` of the token after a refresh.
    ``undistributed`` only grows under the deferred zero-supply policy.
    """

    token: str
    index: int = 0
    last_update_time: float = 0.0
    is_registered: bool = True
    history: list[RewardArrival] = field(default_factory=list)
    recorded_total: int = 0
    total_paid: int = 0
    undistributed: int = 0

    @property
    def expected_balance(self) -> int:
        return self.recorded_total - self.total_paid

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "index": self.index,
            "last_update_time": self.last_update_time,
            "is_registered": self.is_registered,
            "history": [
                {"timestamp": arrival.timestamp, "amount": arrival.amount}
                for arrival in self.history
            ],
            "recorded_total": self.recorded_total,
            "total_paid": self.total_paid,
            "undistributed": self.undistributed,
        }


class RewardLedger:
    """Arena of ``RewardTokenRecord`` keyed by token address."""

    def __init__(
        self,
        tokens: TokenBank,
        holder: str,
        base_asset: str,
        earning_supply: Callable[[], int],
        events: EventLog,
        precision: int,
        zero_supply_policy: ZeroSupplyPolicy = ZeroSupplyPolicy.FORFEIT,
        clock: Callable[[], float] = time.time,
        journal: UndoJournal | None = None,
    ) -> None:
        self._tokens = tokens
        self._journal = journal if journal is not None else UndoJournal()
        self._holder = normalize_address(holder)
        self._base_asset = normalize_address(base_asset)
        self._earning_supply = earning_supply
        self._events = events
        self._clock = clock
        self.precision = precision
        self.zero_supply_policy = zero_supply_policy
        self.records: dict[str, RewardTokenRecord] = {}

    # ==================== Registration ====================

    def register(self, token: str) -> RewardTokenRecord:
        """
        Register a reward token.

        Raises:
            InvalidToken: If token is null or the vault's base asset
            AlreadyRegistered: If token is already registered
        """
        if not token or normalize_address(token) == ZERO_ADDRESS:
            raise InvalidToken("Reward token cannot be the null address", {"token": token})
        token = normalize_address(token)
        if token == self._base_asset:
            raise InvalidToken("Reward token cannot be the base asset", {"token": token})
        if self.is_registered(token):
            raise AlreadyRegistered(f"Reward token {token} already registered", {"token": token})

        record = RewardTokenRecord(token=token, last_update_time=self._clock())
        self._journal.set_item(self.records, token, record)
        self._events.emit(ev.REWARD_TOKEN_REGISTERED, token=token)

        logger.info(
            "Reward token registered",
            extra={"event": "rewards.token_registered", "token": token[:10]},
        )
        return record

    def is_registered(self, token: str) -> bool:
        record = self.records.get(normalize_address(token))
        return record is not None and record.is_registered

    def require_registered(self, token: str) -> RewardTokenRecord:
        record = self.records.get(normalize_address(token))
        if record is None or not record.is_registered:
            raise UnknownToken(f"Reward token {token} is not registered", {"token": token})
        return record

    def tokens(self) -> list[str]:
        return [token for token, record in self.records.items() if record.is_registered]

    # ==================== Index maintenance ====================

    def refresh(self, token: str) -> int:
        """
        Detect new reward arrivals for ``token`` and fold them into its index.

        Returns:
            The newly observed amount (0 if nothing arrived)
        """
        record = self.require_registered(token)
        now = self._clock()

        observed = self._tokens.balance_of(record.token, self._holder)
        delta = observed - record.expected_balance
        supply = self._earning_supply()

        journal = self._journal
        if delta > 0:
            journal.append(record.history, RewardArrival(timestamp=now, amount=delta))
            journal.set_attr(record, "recorded_total", record.recorded_total + delta)

        increment = 0
        distributable = max(delta, 0)
        if supply > 0:
            distributable += record.undistributed
            if record.undistributed:
                journal.set_attr(record, "undistributed", 0)
            increment = distributable * self.precision // supply
            if increment:
                journal.set_attr(record, "index", record.index + increment)
        elif delta > 0 and self.zero_supply_policy is ZeroSupplyPolicy.DEFER:
            journal.set_attr(record, "undistributed", record.undistributed + delta)

        journal.set_attr(record, "last_update_time", now)

        if delta > 0 or increment > 0:
            self._events.emit(
                ev.REWARD_INDEX_UPDATED,
                token=record.token,
                amount=max(delta, 0),
                index=record.index,
                supply=supply,
            )
            logger.info(
                "Reward index updated",
                extra={
                    "event": "rewards.index_updated",
                    "token": record.token[:10],
                    "amount": max(delta, 0),
                    "increment": increment,
                    "index": record.index,
                    "supply": supply,
                },
            )
            if supply == 0 and delta > 0:
                logger.warning(
                    "Reward arrived with no earning supply",
                    extra={
                        "event": "rewards.zero_supply_arrival",
                        "token": record.token[:10],
                        "amount": delta,
                        "policy": self.zero_supply_policy.value,
                    },
                )
        return max(delta, 0)

    def refresh_all(self) -> None:
        for token in self.tokens():
            self.refresh(token)

    def index(self, token: str) -> int:
        return self.require_registered(token).index

    def preview_index(self, token: str) -> int:
        """The index ``refresh`` would produce right now, without mutating anything."""
        record = self.require_registered(token)
        observed = self._tokens.balance_of(record.token, self._holder)
        delta = max(observed - record.expected_balance, 0)
        supply = self._earning_supply()
        if supply <= 0:
            return record.index
        return record.index + (delta + record.undistributed) * self.precision // supply

    def history_length(self, token: str) -> int:
        return len(self.require_registered(token).history)

    # ==================== Payouts ====================

    def distributable(self, token: str) -> int:
        """Amount of ``token`` recorded as arrived and not yet paid out."""
        return self.require_registered(token).expected_balance

    def record_payout(self, token: str, amount: int) -> None:
        record = self.require_registered(token)
        if amount > record.expected_balance:
            raise ValueError(
                f"Payout {amount} exceeds distributable {record.expected_balance} for {token}"
            )
        self._journal.set_attr(record, "total_paid", record.total_paid + amount)

    # ==================== Queries ====================

    def get_record(self, token: str) -> dict[str, Any]:
        return self.require_registered(token).to_dict()

    def to_dict(self) -> dict[str, Any]:
        return {token: record.to_dict() for token, record in self.records.items()}
