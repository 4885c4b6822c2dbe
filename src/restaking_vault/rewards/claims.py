"""
Claim Processor.

Pays an account its entitlement in each requested reward token. Internal
state for a token (checkpoint reset, payout recorded) is final before that
token's transfer is issued.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from .. import events as ev
from ..contracts.erc20 import normalize_address
from ..events import EventLog
from ..exceptions import Unauthorized
from ..interfaces import TokenBank
from .checkpoints import CheckpointStore
from .ledger import RewardLedger

logger = logging.getLogger(__name__)


class ClaimProcessor:
    def __init__(
        self,
        ledger: RewardLedger,
        checkpoints: CheckpointStore,
        tokens: TokenBank,
        holder: str,
        earning_balance_of: Callable[[str], int],
        events: EventLog,
    ) -> None:
        self._ledger = ledger
        self._checkpoints = checkpoints
        self._tokens = tokens
        self._holder = normalize_address(holder)
        self._earning_balance_of = earning_balance_of
        self._events = events

    def claim(self, caller: str, account: str, reward_tokens: Sequence[str]) -> list[int]:
        """
        Pay ``account`` everything it is owed in each of ``reward_tokens``.

        Duplicate tokens are processed independently; the second occurrence
        normally pays 0. A zero payout is a valid result.

        Returns:
            Amount paid per requested token, in request order

        Raises:
            Unauthorized: If caller is not the account itself
            UnknownToken: If any token is not registered
        """
        caller_norm = normalize_address(caller)
        account_norm = normalize_address(account)
        if caller_norm != account_norm:
            raise Unauthorized(
                "Rewards can only be claimed by the account holder",
                {"caller": caller_norm, "account": account_norm},
            )

        for token in reward_tokens:
            self._ledger.require_registered(token)

        return [self._claim_one(account_norm, normalize_address(token)) for token in reward_tokens]

    def _claim_one(self, account: str, token: str) -> int:
        self._ledger.refresh(token)
        entitlement = self._checkpoints.compute_entitlement(account, token)
        if entitlement <= 0:
            return 0

        # Ceiling rounding can promise a unit or two more than was collected;
        # the excess stays pending instead of being paid.
        payout = min(entitlement, self._ledger.distributable(token))
        self._checkpoints.snapshot_account(
            account,
            token,
            self._earning_balance_of(account),
            entitlement - payout,
        )
        if payout <= 0:
            return 0

        self._ledger.record_payout(token, payout)
        self._events.emit(ev.REWARDS_CLAIMED, account=account, token=token, amount=payout)

        self._tokens.transfer(token, self._holder, account, payout)

        logger.info(
            "Rewards claimed",
            extra={
                "event": "rewards.claimed",
                "account": account[:10],
                "token": token[:10],
                "amount": payout,
                "carried": entitlement - payout,
            },
        )
        return payout
