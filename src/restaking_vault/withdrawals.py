"""
Unstake/Withdraw State Machine.

Per account:

    Idle -> ScheduledUnstake -> Unstaked -> ScheduledWithdraw -> Withdrawn (-> Idle)

Quantities are tracked in base-asset units. Alongside each quantity the
machine tracks the shares backing it: those shares are frozen, meaning they
remain in the share book but neither earn rewards nor can be transferred.
Freezing and unfreezing go through the balance-change interceptor as
transfers to and from the null holder.

Every method finishes its internal bookkeeping before calling the delegation
gateway. Cancelling a scheduled withdrawal hands the assets back to the
gateway for re-delegation, so the shares backing them resume earning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from . import events as ev
from .contracts.erc20 import ZERO_ADDRESS, normalize_address
from .events import EventLog
from .exceptions import InsufficientScheduled, NoScheduledAmount, WithdrawalNotUnstaked
from .fixed_point import mul_div, require_positive
from .interfaces import DelegationGateway
from .journal import UndoJournal
from .rewards.interceptor import BalanceChangeInterceptor

logger = logging.getLogger(__name__)


@dataclass
class OpenTicket:
    """Remaining part of a gateway request owned by one account."""

    request_id: int
    amount: int
    ready_at: float


@dataclass
class Bucket:
    """An asset quantity and the frozen shares backing it."""

    assets: int = 0
    shares: int = 0

    def shares_for(self, assets: int) -> int:
        if assets == self.assets:
            return self.shares
        return mul_div(self.shares, assets, self.assets)

    def take(self, assets: int, journal: UndoJournal) -> int:
        """Remove ``assets`` and return the proportional share count."""
        shares = self.shares_for(assets)
        journal.set_attr(self, "assets", self.assets - assets)
        journal.set_attr(self, "shares", self.shares - shares)
        return shares

    def put(self, assets: int, shares: int, journal: UndoJournal) -> None:
        journal.set_attr(self, "assets", self.assets + assets)
        journal.set_attr(self, "shares", self.shares + shares)


@dataclass
class UnstakeState:
    scheduled_unstake: Bucket = field(default_factory=Bucket)
    unstaked: Bucket = field(default_factory=Bucket)
    tickets: list[OpenTicket] = field(default_factory=list)


@dataclass
class WithdrawState:
    scheduled_withdraw: Bucket = field(default_factory=Bucket)
    tickets: list[OpenTicket] = field(default_factory=list)


@dataclass(frozen=True)
class WithdrawalPlan:
    """What the vault must burn and which gateway requests release the assets."""

    account: str
    assets: int
    shares: int
    releases: tuple[tuple[int, int], ...]  # (request_id, amount)


class WithdrawalStateMachine:
    def __init__(
        self,
        gateway: DelegationGateway,
        delegator: str,
        interceptor: BalanceChangeInterceptor,
        assets_to_shares: Callable[[int], int],
        events: EventLog,
        journal: UndoJournal | None = None,
    ) -> None:
        self._gateway = gateway
        self._journal = journal if journal is not None else UndoJournal()
        self._delegator = normalize_address(delegator)
        self._interceptor = interceptor
        self._assets_to_shares = assets_to_shares
        self._events = events
        self.unstake_states: dict[str, UnstakeState] = {}
        self.withdraw_states: dict[str, WithdrawState] = {}
        self.total_frozen = 0

    # ==================== Views ====================

    def _unstake_state(self, account: str) -> UnstakeState:
        state = self.unstake_states.get(account)
        if state is None:
            state = UnstakeState()
            self._journal.set_item(self.unstake_states, account, state)
        return state

    def _withdraw_state(self, account: str) -> WithdrawState:
        state = self.withdraw_states.get(account)
        if state is None:
            state = WithdrawState()
            self._journal.set_item(self.withdraw_states, account, state)
        return state

    def frozen_shares(self, account: str) -> int:
        account = normalize_address(account)
        unstake = self.unstake_states.get(account)
        withdraw = self.withdraw_states.get(account)
        total = 0
        if unstake:
            total += unstake.scheduled_unstake.shares + unstake.unstaked.shares
        if withdraw:
            total += withdraw.scheduled_withdraw.shares
        return total

    def get_state(self, account: str) -> dict[str, Any]:
        account = normalize_address(account)
        unstake = self.unstake_states.get(account, UnstakeState())
        withdraw = self.withdraw_states.get(account, WithdrawState())
        return {
            "scheduled_unstake": unstake.scheduled_unstake.assets,
            "unstaked": unstake.unstaked.assets,
            "scheduled_withdraw": withdraw.scheduled_withdraw.assets,
            "frozen_shares": self.frozen_shares(account),
            "unstake_requests": [t.request_id for t in unstake.tickets],
            "withdraw_requests": [t.request_id for t in withdraw.tickets],
        }

    # ==================== Unstake ====================

    def schedule_unstake(self, account: str, assets: int) -> OpenTicket:
        """
        Freeze the shares backing ``assets`` and ask the gateway to unstake them.

        Raises:
            InsufficientShares: If the account's earning shares cannot cover it
        """
        require_positive(assets)
        account = normalize_address(account)
        shares = self._assets_to_shares(assets)

        self._interceptor.on_balance_change(account, ZERO_ADDRESS, shares)
        state = self._unstake_state(account)
        state.scheduled_unstake.put(assets, shares, self._journal)
        self._journal.set_attr(self, "total_frozen", self.total_frozen + shares)

        ticket = self._gateway.schedule_unstake(self._delegator, assets)
        open_ticket = OpenTicket(ticket.request_id, ticket.amount, ticket.ready_at)
        self._journal.append(state.tickets, open_ticket)

        self._events.emit(
            ev.UNSTAKE_SCHEDULED,
            account=account,
            assets=assets,
            shares=shares,
            request_id=ticket.request_id,
            ready_at=ticket.ready_at,
        )
        logger.info(
            "Unstake scheduled",
            extra={
                "event": "withdrawals.unstake_scheduled",
                "account": account[:10],
                "assets": assets,
                "shares": shares,
                "request_id": ticket.request_id,
            },
        )
        return open_ticket

    def cancel_unstake(self, account: str, assets: int) -> int:
        """
        Cancel part of a scheduled unstake and resume accrual on its shares.

        Returns:
            Shares returned to the earning balance
        """
        require_positive(assets)
        account = normalize_address(account)
        state = self._unstake_state(account)
        if assets > state.scheduled_unstake.assets:
            raise InsufficientScheduled(
                f"Cannot cancel {assets}, only {state.scheduled_unstake.assets} scheduled for unstake",
                {"account": account, "scheduled": state.scheduled_unstake.assets},
            )

        shares = state.scheduled_unstake.shares_for(assets)
        # Interceptor reads the still-frozen balance, then credits the shares back.
        self._interceptor.on_balance_change(ZERO_ADDRESS, account, shares)
        state.scheduled_unstake.take(assets, self._journal)
        self._journal.set_attr(self, "total_frozen", self.total_frozen - shares)

        cancelled = self._release_tickets(state.tickets, assets, newest_first=True)
        for request_id, amount in cancelled:
            self._gateway.cancel_unstake(self._delegator, request_id, amount)

        self._events.emit(ev.UNSTAKE_CANCELLED, account=account, assets=assets, shares=shares)
        logger.info(
            "Unstake cancelled",
            extra={
                "event": "withdrawals.unstake_cancelled",
                "account": account[:10],
                "assets": assets,
                "shares": shares,
            },
        )
        return shares

    def execute_unstake(self, account: str) -> int:
        """
        Move the account's whole scheduled unstake into ``unstaked``.

        Raises:
            NoScheduledAmount: If nothing is scheduled
            DelayNotElapsed: From the gateway while any request is maturing
        """
        account = normalize_address(account)
        state = self._unstake_state(account)
        assets = state.scheduled_unstake.assets
        if assets == 0:
            raise NoScheduledAmount("No unstake scheduled", {"account": account})

        shares = state.scheduled_unstake.shares
        state.scheduled_unstake.take(assets, self._journal)
        state.unstaked.put(assets, shares, self._journal)
        request_ids = [ticket.request_id for ticket in state.tickets]
        self._journal.replace_list(state.tickets, [])

        self._gateway.execute_unstake(self._delegator, request_ids)

        self._events.emit(ev.UNSTAKE_EXECUTED, account=account, assets=assets)
        logger.info(
            "Unstake executed",
            extra={
                "event": "withdrawals.unstake_executed",
                "account": account[:10],
                "assets": assets,
            },
        )
        return assets

    # ==================== Withdraw ====================

    def schedule_withdraw(self, account: str, assets: int) -> OpenTicket:
        """
        Raises:
            WithdrawalNotUnstaked: If ``assets`` exceeds the unstaked amount
        """
        require_positive(assets)
        account = normalize_address(account)
        unstake = self._unstake_state(account)
        if assets > unstake.unstaked.assets:
            raise WithdrawalNotUnstaked(
                f"Cannot schedule withdrawal of {assets}, only {unstake.unstaked.assets} unstaked",
                {"account": account, "unstaked": unstake.unstaked.assets},
            )

        withdraw = self._withdraw_state(account)
        shares = unstake.unstaked.take(assets, self._journal)
        withdraw.scheduled_withdraw.put(assets, shares, self._journal)

        ticket = self._gateway.schedule_withdraw(self._delegator, assets)
        open_ticket = OpenTicket(ticket.request_id, ticket.amount, ticket.ready_at)
        self._journal.append(withdraw.tickets, open_ticket)

        self._events.emit(
            ev.WITHDRAW_SCHEDULED,
            account=account,
            assets=assets,
            request_id=ticket.request_id,
            ready_at=ticket.ready_at,
        )
        logger.info(
            "Withdraw scheduled",
            extra={
                "event": "withdrawals.withdraw_scheduled",
                "account": account[:10],
                "assets": assets,
                "request_id": ticket.request_id,
            },
        )
        return open_ticket

    def cancel_withdraw(self, account: str, assets: int) -> int:
        """
        Cancel part of a scheduled withdrawal.

        The gateway re-delegates the cancelled assets, so the shares backing
        them are unfrozen and earn again from the current index.

        Returns:
            Shares returned to the earning balance
        """
        require_positive(assets)
        account = normalize_address(account)
        withdraw = self._withdraw_state(account)
        if assets > withdraw.scheduled_withdraw.assets:
            raise InsufficientScheduled(
                f"Cannot cancel {assets}, only {withdraw.scheduled_withdraw.assets} scheduled for withdrawal",
                {"account": account, "scheduled": withdraw.scheduled_withdraw.assets},
            )

        shares = withdraw.scheduled_withdraw.shares_for(assets)
        # Interceptor reads the still-frozen balance, then credits the shares back.
        self._interceptor.on_balance_change(ZERO_ADDRESS, account, shares)
        withdraw.scheduled_withdraw.take(assets, self._journal)
        self._journal.set_attr(self, "total_frozen", self.total_frozen - shares)

        cancelled = self._release_tickets(withdraw.tickets, assets, newest_first=True)
        for request_id, amount in cancelled:
            self._gateway.cancel_withdraw(self._delegator, request_id, amount)

        self._events.emit(ev.WITHDRAW_CANCELLED, account=account, assets=assets, shares=shares)
        logger.info(
            "Withdraw cancelled",
            extra={
                "event": "withdrawals.withdraw_cancelled",
                "account": account[:10],
                "assets": assets,
                "shares": shares,
            },
        )
        return shares

    def withdraw(self, account: str, assets: int) -> WithdrawalPlan:
        """
        Consume ``assets`` of the scheduled withdrawal.

        The caller burns ``plan.shares`` and executes ``plan.releases`` on the
        gateway; a ``DelayNotElapsed`` there aborts the whole operation.

        Raises:
            NoScheduledAmount: If nothing is scheduled for withdrawal
            InsufficientScheduled: If ``assets`` exceeds the scheduled amount
        """
        require_positive(assets)
        account = normalize_address(account)
        withdraw = self._withdraw_state(account)
        scheduled = withdraw.scheduled_withdraw.assets
        if scheduled == 0:
            raise NoScheduledAmount("No withdrawal scheduled", {"account": account})
        if assets > scheduled:
            raise InsufficientScheduled(
                f"Cannot withdraw {assets}, only {scheduled} scheduled",
                {"account": account, "scheduled": scheduled},
            )

        shares = withdraw.scheduled_withdraw.take(assets, self._journal)
        self._journal.set_attr(self, "total_frozen", self.total_frozen - shares)
        releases = self._release_tickets(withdraw.tickets, assets, newest_first=False)
        return WithdrawalPlan(account=account, assets=assets, shares=shares, releases=tuple(releases))

    # ==================== Helpers ====================

    def _release_tickets(
        self,
        tickets: list[OpenTicket], assets: int, newest_first: bool
    ) -> list[tuple[int, int]]:
        """Take ``assets`` out of ``tickets``; returns (request_id, amount) parts."""
        parts: list[tuple[int, int]] = []
        order = list(reversed(tickets)) if newest_first else list(tickets)
        remaining = assets
        for ticket in order:
            if remaining == 0:
                break
            part = min(ticket.amount, remaining)
            self._journal.set_attr(ticket, "amount", ticket.amount - part)
            remaining -= part
            parts.append((ticket.request_id, part))
        self._journal.replace_list(tickets, [ticket for ticket in tickets if ticket.amount > 0])
        return parts
