"""
In-memory delegation backend.

Custodies a delegator's base asset, keeps it delegated to one operator and
enforces two delays:

    delegated --schedule_unstake--> (unstake delay) --execute_unstake--> deposited
    deposited --schedule_withdraw--> (withdraw delay) --execute_withdraw--> released
    deposited --cancel_withdraw--> delegated

Delays are checked synchronously against the injected clock; nothing waits
or polls. Executing a request before its delay has elapsed raises
``DelayNotElapsed``. Delays default to ``LRT_UNSTAKE_DELAY_SECONDS`` and
``LRT_WITHDRAW_DELAY_SECONDS``.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from . import config as vault_config
from .config import VaultConfig
from .contracts.erc20 import normalize_address
from .exceptions import (
    DelayNotElapsed,
    InsufficientBalance,
    InsufficientScheduled,
    NoScheduledAmount,
    Unauthorized,
)
from .fixed_point import require_positive
from .interfaces import DelegationTicket, TokenBank
from .journal import UndoJournal

logger = logging.getLogger(__name__)

UNSTAKE = "unstake"
WITHDRAW = "withdraw"


@dataclass
class _Request:
    request_id: int
    kind: str
    delegator: str
    amount: int
    ready_at: float


class InMemoryDelegationGateway:
    """
    Reference ``DelegationGateway`` backed by a ``TokenBank``.

    Writes go through an ``UndoJournal`` so a caller can wrap any sequence of
    gateway calls in ``begin``/``commit``/``rollback``.
    """

    def __init__(
        self,
        tokens: TokenBank,
        asset: str,
        operator: str = "",
        unstake_delay: float | None = None,
        withdraw_delay: float | None = None,
        clock: Callable[[], float] = time.time,
        address: str = "",
    ) -> None:
        self._tokens = tokens
        self._clock = clock
        self._journal = UndoJournal()
        self.asset = normalize_address(asset)
        self.operator = normalize_address(operator)
        self.unstake_delay = (
            unstake_delay if unstake_delay is not None else vault_config.UNSTAKE_DELAY_SECONDS
        )
        self.withdraw_delay = (
            withdraw_delay if withdraw_delay is not None else vault_config.WITHDRAW_DELAY_SECONDS
        )
        if not address:
            digest = hashlib.sha3_256(f"delegation:{asset}:{time.time()}".encode()).digest()
            address = f"0x{digest[-20:].hex()}"
        self.address = normalize_address(address)

        self.delegated: dict[str, int] = {}
        self.deposited: dict[str, int] = {}
        self.requests: dict[int, _Request] = {}
        # Open request totals per (delegator, kind)
        self.pending: dict[tuple[str, str], int] = {}
        self.next_request_id = 1

    @classmethod
    def from_config(
        cls,
        tokens: TokenBank,
        asset: str,
        config: VaultConfig,
        **kwargs: Any,
    ) -> "InMemoryDelegationGateway":
        """Build a gateway whose delays come from ``config``."""
        return cls(
            tokens,
            asset,
            unstake_delay=config.unstake_delay,
            withdraw_delay=config.withdraw_delay,
            **kwargs,
        )

    # ==================== Delegation ====================

    def deposit_and_delegate(self, delegator: str, amount: int) -> None:
        require_positive(amount)
        delegator = normalize_address(delegator)
        self._tokens.transfer(self.asset, delegator, self.address, amount)
        self._add(self.delegated, delegator, amount)

        logger.info(
            "Assets delegated",
            extra={
                "event": "delegation.delegated",
                "delegator": delegator[:10],
                "operator": self.operator[:10],
                "amount": amount,
            },
        )

    # ==================== Unstake ====================

    def schedule_unstake(self, delegator: str, amount: int) -> DelegationTicket:
        require_positive(amount)
        delegator = normalize_address(delegator)
        available = self.delegated.get(delegator, 0) - self._pending(delegator, UNSTAKE)
        if amount > available:
            raise InsufficientBalance(
                f"Cannot unstake {amount}, only {available} delegated",
                {"delegator": delegator, "available": available},
            )
        return self._open_request(UNSTAKE, delegator, amount, self.unstake_delay)

    def cancel_unstake(self, delegator: str, request_id: int, amount: int) -> None:
        self._reduce_request(UNSTAKE, delegator, request_id, amount)

    def execute_unstake(self, delegator: str, request_ids: list[int]) -> int:
        """
        Execute the given unstake requests, all or nothing.

        Raises:
            DelayNotElapsed: If any request's delay is still running
        """
        delegator = normalize_address(delegator)
        requests = [self._get_request(UNSTAKE, delegator, rid) for rid in request_ids]
        for request in requests:
            self._require_ready(request)

        total = 0
        for request in requests:
            self._add(self.delegated, delegator, -request.amount)
            self._add(self.deposited, delegator, request.amount)
            self._add(self.pending, (delegator, UNSTAKE), -request.amount)
            total += request.amount
            self._journal.delete_item(self.requests, request.request_id)

        logger.info(
            "Unstake executed",
            extra={
                "event": "delegation.unstake_executed",
                "delegator": delegator[:10],
                "requests": len(requests),
                "amount": total,
            },
        )
        return total

    # ==================== Withdraw ====================

    def schedule_withdraw(self, delegator: str, amount: int) -> DelegationTicket:
        require_positive(amount)
        delegator = normalize_address(delegator)
        available = self.deposited.get(delegator, 0) - self._pending(delegator, WITHDRAW)
        if amount > available:
            raise InsufficientBalance(
                f"Cannot withdraw {amount}, only {available} undelegated",
                {"delegator": delegator, "available": available},
            )
        return self._open_request(WITHDRAW, delegator, amount, self.withdraw_delay)

    def cancel_withdraw(self, delegator: str, request_id: int, amount: int) -> None:
        """Cancel part of a withdraw request and re-delegate that amount."""
        self._reduce_request(WITHDRAW, delegator, request_id, amount)
        delegator = normalize_address(delegator)
        self._add(self.deposited, delegator, -amount)
        self._add(self.delegated, delegator, amount)

        logger.info(
            "Assets re-delegated",
            extra={
                "event": "delegation.redelegated",
                "delegator": delegator[:10],
                "operator": self.operator[:10],
                "amount": amount,
            },
        )

    def execute_withdraw(self, delegator: str, request_id: int, amount: int) -> int:
        """
        Release ``amount`` of a matured withdraw request back to the delegator.

        Raises:
            DelayNotElapsed: If the request's delay is still running
        """
        require_positive(amount)
        delegator = normalize_address(delegator)
        request = self._get_request(WITHDRAW, delegator, request_id)
        self._require_ready(request)
        if amount > request.amount:
            raise InsufficientScheduled(
                f"Request {request_id} holds {request.amount}, cannot release {amount}",
                {"request_id": request_id, "scheduled": request.amount},
            )

        self._shrink_request(request, amount)
        self._add(self.deposited, delegator, -amount)
        self._tokens.transfer(self.asset, self.address, delegator, amount)

        logger.info(
            "Withdraw executed",
            extra={
                "event": "delegation.withdraw_executed",
                "delegator": delegator[:10],
                "request_id": request_id,
                "amount": amount,
            },
        )
        return amount

    # ==================== Helpers ====================

    def _add(self, balances: dict[Any, int], key: Any, amount: int) -> None:
        self._journal.set_item(balances, key, balances.get(key, 0) + amount)

    def _open_request(
        self, kind: str, delegator: str, amount: int, delay: float
    ) -> DelegationTicket:
        request = _Request(
            request_id=self.next_request_id,
            kind=kind,
            delegator=delegator,
            amount=amount,
            ready_at=self._clock() + delay,
        )
        self._journal.set_item(self.requests, request.request_id, request)
        self._journal.set_attr(self, "next_request_id", self.next_request_id + 1)
        self._add(self.pending, (delegator, kind), amount)

        logger.info(
            "Delegation request scheduled",
            extra={
                "event": f"delegation.{kind}_scheduled",
                "delegator": delegator[:10],
                "request_id": request.request_id,
                "amount": amount,
                "ready_at": request.ready_at,
            },
        )
        return DelegationTicket(request.request_id, amount, request.ready_at)

    def _shrink_request(self, request: _Request, amount: int) -> None:
        self._journal.set_attr(request, "amount", request.amount - amount)
        self._add(self.pending, (request.delegator, request.kind), -amount)
        if request.amount == 0:
            self._journal.delete_item(self.requests, request.request_id)

    def _reduce_request(self, kind: str, delegator: str, request_id: int, amount: int) -> None:
        require_positive(amount)
        request = self._get_request(kind, normalize_address(delegator), request_id)
        if amount > request.amount:
            raise InsufficientScheduled(
                f"Request {request_id} holds {request.amount}, cannot cancel {amount}",
                {"request_id": request_id, "scheduled": request.amount},
            )
        self._shrink_request(request, amount)

        logger.info(
            "Delegation request cancelled",
            extra={
                "event": f"delegation.{kind}_cancelled",
                "delegator": request.delegator[:10],
                "request_id": request_id,
                "amount": amount,
            },
        )

    def _get_request(self, kind: str, delegator: str, request_id: int) -> _Request:
        request = self.requests.get(request_id)
        if request is None or request.kind != kind:
            raise NoScheduledAmount(
                f"No {kind} request {request_id}", {"request_id": request_id}
            )
        if request.delegator != delegator:
            raise Unauthorized(
                f"Request {request_id} belongs to another delegator",
                {"request_id": request_id},
            )
        return request

    def _require_ready(self, request: _Request) -> None:
        now = self._clock()
        if now < request.ready_at:
            raise DelayNotElapsed(
                f"{request.kind.capitalize()} request {request.request_id} "
                f"matures in {request.ready_at - now:.0f}s",
                ready_at=request.ready_at,
                details={"request_id": request.request_id},
            )

    def _pending(self, delegator: str, kind: str) -> int:
        return self.pending.get((delegator, kind), 0)

    def get_delegator_state(self, delegator: str) -> dict[str, Any]:
        delegator = normalize_address(delegator)
        return {
            "delegated": self.delegated.get(delegator, 0),
            "deposited": self.deposited.get(delegator, 0),
            "pending_unstake": self._pending(delegator, UNSTAKE),
            "pending_withdraw": self._pending(delegator, WITHDRAW),
        }

    # ==================== Transactional ====================

    def begin(self) -> None:
        self._journal.begin()

    def commit(self) -> None:
        self._journal.commit()

    def rollback(self) -> None:
        self._journal.rollback()
