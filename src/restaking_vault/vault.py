"""
Liquid Restaking Vault.

Users deposit a base asset, receive shares, and the vault delegates the
asset through a ``DelegationGateway``. Reward tokens paid to the vault are
distributed to share holders pro rata to their earning shares over time.

Every state-changing method is atomic. The vault and its components write
through one undo journal and every transactional collaborator keeps its own;
an operation opens a unit of work on all of them and rolls each back if
anything raises, at the cost of the writes it made. A second state-changing
call made while one is running (for instance from inside a collaborator
callback) is rejected with ``ReentrancyError``; read-only queries remain
available and observe only completed internal updates.
"""

from __future__ import annotations

import hashlib
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Sequence

from . import events as ev
from . import metrics
from .config import VaultConfig
from .contracts.erc20 import normalize_address
from .events import EventLog
from .exceptions import InvalidAmount, ReentrancyError, Unauthorized
from .fixed_point import mul_div, require_positive
from .interfaces import DelegationGateway, ShareBook, TokenBank, Transactional
from .journal import UndoJournal
from .rewards import BalanceChangeInterceptor, CheckpointStore, ClaimProcessor, RewardLedger
from .withdrawals import OpenTicket, WithdrawalStateMachine

logger = logging.getLogger(__name__)


class LiquidRestakingVault:
    """
    Pooled-deposit vault with multi-token reward accounting.

    Args:
        asset: Base asset token address
        shares: Share token; the vault must be its minter
        tokens: Token bank holding the base asset and reward tokens
        gateway: Delegation backend
        address: Vault address (the share token owner)
        owner: Account allowed to register reward tokens (empty = anyone)
        config: Reward engine settings
        clock: Time source shared with the components
    """

    def __init__(
        self,
        asset: str,
        shares: ShareBook,
        tokens: TokenBank,
        gateway: DelegationGateway,
        address: str = "",
        owner: str = "",
        config: VaultConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not address:
            digest = hashlib.sha3_256(f"vault:{asset}:{time.time()}".encode()).digest()
            address = f"0x{digest[-20:].hex()}"
        self.address = normalize_address(address)
        self.asset = normalize_address(asset)
        self.owner = normalize_address(owner)
        self.config = config or VaultConfig()
        self.shares = shares
        self.tokens = tokens
        self.gateway = gateway

        self.total_assets = 0
        self._locked = False
        self._journal = UndoJournal()

        self.events = EventLog(clock, journal=self._journal)
        self._ledger = RewardLedger(
            tokens=tokens,
            holder=self.address,
            base_asset=self.asset,
            earning_supply=self.earning_supply,
            events=self.events,
            precision=self.config.reward_precision,
            zero_supply_policy=self.config.zero_supply_policy,
            clock=clock,
            journal=self._journal,
        )
        self._checkpoints = CheckpointStore(
            self._ledger,
            self.events,
            earning_balance_of=self.earning_balance_of,
            rounding=self.config.entitlement_rounding,
            clock=clock,
            journal=self._journal,
        )
        self._interceptor = BalanceChangeInterceptor(
            self._ledger, self._checkpoints, self.earning_balance_of
        )
        self._claims = ClaimProcessor(
            self._ledger,
            self._checkpoints,
            tokens,
            self.address,
            self.earning_balance_of,
            self.events,
        )
        self._withdrawals = WithdrawalStateMachine(
            gateway,
            self.address,
            self._interceptor,
            assets_to_shares=lambda assets: self.convert_to_shares(assets, round_up=True),
            events=self.events,
            journal=self._journal,
        )

        shares.add_balance_hook(self._interceptor)

    # ==================== Atomicity ====================

    def _participants(self) -> list[Transactional]:
        candidates: list[Any] = [self._journal, self.shares, self.tokens, self.gateway]
        seen: set[int] = set()
        participants = []
        for candidate in candidates:
            if id(candidate) in seen or not isinstance(candidate, Transactional):
                continue
            seen.add(id(candidate))
            participants.append(candidate)
        return participants

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        if self._locked:
            raise ReentrancyError(
                f"Vault is locked, cannot run {operation}", {"operation": operation}
            )

        participants = self._participants()
        for participant in participants:
            participant.begin()
        start = len(self.events)
        self._locked = True
        try:
            yield
        except Exception as exc:
            for participant in reversed(participants):
                participant.rollback()
            logger.warning(
                "Vault operation rolled back: %s",
                type(exc).__name__,
                extra={
                    "event": "vault.rolled_back",
                    "operation": operation,
                    "error_type": type(exc).__name__,
                },
            )
            raise
        finally:
            self._locked = False

        for participant in participants:
            participant.commit()
        metrics.record_events(self.address, self.events.since(start))

    # ==================== Share views ====================

    def earning_balance_of(self, account: str) -> int:
        """Shares of ``account`` that accrue rewards (balance minus frozen)."""
        return self.shares.balance_of(account) - self._withdrawals.frozen_shares(account)

    def earning_supply(self) -> int:
        return self.shares.get_total_supply() - self._withdrawals.total_frozen

    def convert_to_shares(self, assets: int, round_up: bool = False) -> int:
        return mul_div(assets, self.shares.get_total_supply() + 1, self.total_assets + 1, round_up)

    def convert_to_assets(self, shares: int, round_up: bool = False) -> int:
        return mul_div(shares, self.total_assets + 1, self.shares.get_total_supply() + 1, round_up)

    def preview_deposit(self, assets: int) -> int:
        return self.convert_to_shares(assets)

    def preview_withdraw(self, assets: int) -> int:
        return self.convert_to_shares(assets, round_up=True)

    def preview_redeem(self, shares: int) -> int:
        return self.convert_to_assets(shares)

    # ==================== Deposits & share transfers ====================

    def deposit(self, caller: str, assets: int, receiver: str | None = None) -> int:
        """
        Deposit base asset and mint shares to ``receiver``.

        The caller must have approved the vault for ``assets`` on the base asset.

        Returns:
            Shares minted
        """
        with self._atomic("deposit"):
            require_positive(assets, "assets")
            caller_norm = normalize_address(caller)
            receiver_norm = normalize_address(receiver or caller)

            minted = self.preview_deposit(assets)
            if minted == 0:
                raise InvalidAmount("Deposit too small to mint shares", {"assets": assets})

            self.shares.mint(self.address, receiver_norm, minted)
            self._journal.set_attr(self, "total_assets", self.total_assets + assets)
            self.events.emit(
                ev.DEPOSIT, caller=caller_norm, receiver=receiver_norm, assets=assets, shares=minted
            )

            self.tokens.transfer_from(self.asset, self.address, caller_norm, self.address, assets)
            self.gateway.deposit_and_delegate(self.address, assets)

        logger.info(
            "Deposit",
            extra={
                "event": "vault.deposit",
                "receiver": receiver_norm[:10],
                "assets": assets,
                "shares": minted,
            },
        )
        return minted

    def transfer(self, caller: str, to: str, amount: int) -> bool:
        """Transfer earning shares; rewards accrued so far stay with the sender."""
        with self._atomic("transfer"):
            self.shares.transfer(caller, to, amount)
        return True

    def transfer_from(self, spender: str, from_addr: str, to: str, amount: int) -> bool:
        with self._atomic("transfer_from"):
            self.shares.transfer_from(spender, from_addr, to, amount)
        return True

    # ==================== Rewards ====================

    def register_reward_token(self, caller: str, token: str) -> None:
        with self._atomic("register_reward_token"):
            if self.owner and normalize_address(caller) != self.owner:
                raise Unauthorized("Only the vault owner can register reward tokens", {"caller": caller})
            self._ledger.register(token)

    def claim(
        self, caller: str, account: str, reward_tokens: Sequence[str] | None = None
    ) -> list[int]:
        """
        Claim rewards for ``account`` (which must be the caller).

        Args:
            reward_tokens: Tokens to claim; all registered tokens when omitted

        Returns:
            Amount paid per token, in request order
        """
        if reward_tokens is None:
            reward_tokens = self._ledger.tokens()
        with self._atomic("claim"):
            paid = self._claims.claim(caller, account, list(reward_tokens))

        logger.info(
            "Claim processed",
            extra={
                "event": "vault.claim",
                "account": normalize_address(account)[:10],
                "tokens": len(paid),
                "total_paid": sum(paid),
            },
        )
        return paid

    # ==================== Unstake / withdraw lifecycle ====================

    def schedule_unstake(self, caller: str, assets: int) -> OpenTicket:
        with self._atomic("schedule_unstake"):
            return self._withdrawals.schedule_unstake(caller, assets)

    def cancel_unstake(self, caller: str, assets: int) -> int:
        with self._atomic("cancel_unstake"):
            return self._withdrawals.cancel_unstake(caller, assets)

    def execute_unstake(self, caller: str) -> int:
        with self._atomic("execute_unstake"):
            return self._withdrawals.execute_unstake(caller)

    def schedule_withdraw(self, caller: str, assets: int) -> OpenTicket:
        with self._atomic("schedule_withdraw"):
            return self._withdrawals.schedule_withdraw(caller, assets)

    def cancel_withdraw(self, caller: str, assets: int) -> int:
        """Cancel part of a scheduled withdrawal; its shares earn again. Returns the shares unfrozen."""
        with self._atomic("cancel_withdraw"):
            return self._withdrawals.cancel_withdraw(caller, assets)

    def withdraw(self, caller: str, assets: int, recipient: str, owner: str | None = None) -> int:
        """
        Complete a scheduled withdrawal: burn the backing shares and send
        ``assets`` of the base asset to ``recipient``.

        Returns:
            Shares burned
        """
        owner_norm = normalize_address(owner or caller)
        with self._atomic("withdraw"):
            burned = self._withdraw(caller, owner_norm, assets, recipient)
        self._log_withdraw(owner_norm, assets, burned)
        return burned

    def redeem(self, caller: str, shares: int, recipient: str, owner: str | None = None) -> int:
        """
        Share-denominated ``withdraw``: burns exactly ``shares``.

        The assets are ``preview_redeem(shares)``. If the scheduled withdrawal
        would burn a different share count for them, nothing happens.

        Returns:
            Assets sent

        Raises:
            InvalidAmount: If ``shares`` do not back a whole asset amount of the schedule
        """
        owner_norm = normalize_address(owner or caller)
        with self._atomic("redeem"):
            require_positive(shares, "shares")
            assets = self.preview_redeem(shares)
            if assets == 0:
                raise InvalidAmount("Redeem too small to release assets", {"shares": shares})
            burned = self._withdraw(caller, owner_norm, assets, recipient)
            if burned != shares:
                raise InvalidAmount(
                    f"Redeeming {shares} shares would burn {burned}",
                    {"shares": shares, "burned": burned, "assets": assets},
                )
        self._log_withdraw(owner_norm, assets, shares)
        return assets

    def _withdraw(self, caller: str, owner_norm: str, assets: int, recipient: str) -> int:
        if normalize_address(caller) != owner_norm:
            raise Unauthorized(
                "Withdrawals can only be executed by the share owner",
                {"caller": caller, "owner": owner_norm},
            )
        require_positive(assets, "assets")

        # Index everything that arrived while the shares were still counted.
        self._ledger.refresh_all()
        plan = self._withdrawals.withdraw(owner_norm, assets)
        with self._interceptor.paused():
            self.shares.burn(owner_norm, plan.shares)
        self._journal.set_attr(self, "total_assets", self.total_assets - assets)
        self.events.emit(
            ev.WITHDRAW,
            owner=owner_norm,
            recipient=normalize_address(recipient),
            assets=assets,
            shares=plan.shares,
        )

        for request_id, amount in plan.releases:
            self.gateway.execute_withdraw(self.address, request_id, amount)
        self.tokens.transfer(self.asset, self.address, recipient, assets)
        return plan.shares

    @staticmethod
    def _log_withdraw(owner_norm: str, assets: int, shares: int) -> None:
        logger.info(
            "Withdraw",
            extra={
                "event": "vault.withdraw",
                "owner": owner_norm[:10],
                "assets": assets,
                "shares": shares,
            },
        )

    # ==================== Queries ====================

    def claimable(self, account: str, token: str) -> int:
        """What ``claim`` would pay ``account`` in ``token`` right now."""
        index = self._ledger.preview_index(token)
        entitlement = self._checkpoints.compute_entitlement(account, token, index=index)
        return min(entitlement, self.tokens.balance_of(token, self.address))

    def reward_tokens(self) -> list[str]:
        return self._ledger.tokens()

    def get_reward_data(self, token: str) -> dict[str, Any]:
        return self._ledger.get_record(token)

    def get_checkpoint(self, account: str, token: str) -> dict[str, Any] | None:
        checkpoint = self._checkpoints.get(account, token)
        return checkpoint.to_dict() if checkpoint else None

    def get_withdrawal_state(self, account: str) -> dict[str, Any]:
        return self._withdrawals.get_state(account)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "asset": self.asset,
            "share_token": self.shares.address,
            "total_assets": self.total_assets,
            "total_supply": self.shares.get_total_supply(),
            "earning_supply": self.earning_supply(),
            "reward_tokens": self._ledger.to_dict(),
        }
