"""
Balance-Change Interceptor.

Runs before every change to an account's earning share balance (mint, burn,
transfer, freeze on unstake, unfreeze on cancel). It refreshes every reward
index once and then settles both sides against that same index:

- the sender keeps everything accrued so far and continues at
  ``balance - amount``;
- the receiver keeps its own prior accrual and starts earning on
  ``balance + amount`` from the current index, with no retroactive credit.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from ..contracts.erc20 import ZERO_ADDRESS, normalize_address
from ..exceptions import InsufficientShares
from .checkpoints import CheckpointStore
from .ledger import RewardLedger

logger = logging.getLogger(__name__)


class BalanceChangeInterceptor:
    def __init__(
        self,
        ledger: RewardLedger,
        checkpoints: CheckpointStore,
        earning_balance_of: Callable[[str], int],
    ) -> None:
        self._ledger = ledger
        self._checkpoints = checkpoints
        self._earning_balance_of = earning_balance_of
        self._paused = False

    def __call__(self, from_addr: str, to_addr: str, amount: int) -> None:
        if self._paused:
            return
        self.on_balance_change(from_addr, to_addr, amount)

    def on_balance_change(self, from_addr: str, to_addr: str, amount: int) -> None:
        """
        Settle ``from_addr`` and ``to_addr`` ahead of moving ``amount`` earning shares.

        Must be invoked before the underlying balance mutation. Either side may
        be the null address (mint or burn).

        Raises:
            InsufficientShares: If the sender's earning balance is below ``amount``
        """
        from_norm = normalize_address(from_addr)
        to_norm = normalize_address(to_addr)

        # Balances are read before any index refresh or mutation.
        from_balance = 0 if from_norm == ZERO_ADDRESS else self._earning_balance_of(from_norm)
        to_balance = 0 if to_norm == ZERO_ADDRESS else self._earning_balance_of(to_norm)

        if from_norm != ZERO_ADDRESS and from_balance < amount:
            raise InsufficientShares(
                f"Earning balance {from_balance} cannot cover {amount} shares",
                {"account": from_norm, "balance": from_balance, "amount": amount},
            )

        self._ledger.refresh_all()

        for token in self._ledger.tokens():
            if from_norm != ZERO_ADDRESS:
                entitlement = self._checkpoints.compute_entitlement(from_norm, token)
                self._checkpoints.snapshot_account(
                    from_norm, token, from_balance - amount, entitlement
                )
            if to_norm != ZERO_ADDRESS and to_norm != from_norm:
                entitlement = self._checkpoints.compute_entitlement(to_norm, token)
                self._checkpoints.snapshot_account(
                    to_norm, token, to_balance + amount, entitlement
                )
            elif to_norm != ZERO_ADDRESS:
                # Self-transfer: net balance is unchanged.
                entitlement = self._checkpoints.compute_entitlement(to_norm, token)
                self._checkpoints.snapshot_account(to_norm, token, to_balance, entitlement)

        logger.debug(
            "Balance change intercepted",
            extra={
                "event": "rewards.balance_change",
                "from": from_norm[:10],
                "to": to_norm[:10],
                "amount": amount,
            },
        )

    @contextmanager
    def paused(self) -> Iterator[None]:
        """
        Let share updates through without settling anyone.

        Only for burning shares that are already frozen: they earn nothing,
        so no earning balance changes and no checkpoint needs rewriting.
        """
        self._paused = True
        try:
            yield
        finally:
            self._paused = False
