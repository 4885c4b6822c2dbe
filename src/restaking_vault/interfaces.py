"""
Collaborator Protocol Interfaces.

The vault engine never inherits from a concrete share token or delegation
backend. It is handed objects satisfying these protocols:

    vault = LiquidRestakingVault(
        asset=...,              # base asset identifier
        shares=share_book,      # ShareBook
        tokens=token_bank,      # TokenBank
        gateway=gateway,        # DelegationGateway
    )

The in-memory implementations in ``restaking_vault.contracts`` and
``restaking_vault.delegation`` satisfy all of them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

# Callback invoked by a share book before any balance mutation:
# (from_address, to_address, amount). Null sentinel marks mint/burn.
BalanceHook = Callable[[str, str, int], None]


@runtime_checkable
class Transactional(Protocol):
    """
    Anything that can open, commit and roll back a unit of work.

    Rolling back must only cost as much as the writes made since ``begin``.
    Units of work may nest.
    """

    def begin(self) -> None:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


@runtime_checkable
class ShareBook(Protocol):
    """
    Share-token bookkeeping primitives consumed by the vault.

    Implementations must call every registered hook before committing a
    balance change, and must not mutate anything if a hook raises.
    """

    address: str

    def balance_of(self, account: str) -> int:
        ...

    def get_total_supply(self) -> int:
        ...

    def mint(self, minter: str, to: str, amount: int) -> bool:
        ...

    def burn(self, holder: str, amount: int) -> bool:
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer_from(self, spender: str, from_addr: str, to_addr: str, amount: int) -> bool:
        ...

    def add_balance_hook(self, hook: BalanceHook) -> None:
        ...


@runtime_checkable
class TokenBank(Protocol):
    """Balances and transfers across many fungible tokens."""

    def balance_of(self, token: str, account: str) -> int:
        ...

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer_from(
        self, token: str, spender: str, from_addr: str, to_addr: str, amount: int
    ) -> bool:
        ...


@dataclass(frozen=True)
class DelegationTicket:
    """Handle for a delay-gated request held by the delegation backend."""

    request_id: int
    amount: int
    ready_at: float


@runtime_checkable
class DelegationGateway(Protocol):
    """
    External backend that custodies delegated assets and enforces delays.

    ``execute_unstake``/``execute_withdraw`` raise ``DelayNotElapsed`` while a
    request's timer is running; the vault propagates that error unchanged.
    """

    address: str

    def deposit_and_delegate(self, delegator: str, amount: int) -> None:
        ...

    def schedule_unstake(self, delegator: str, amount: int) -> DelegationTicket:
        ...

    def cancel_unstake(self, delegator: str, request_id: int, amount: int) -> None:
        ...

    def execute_unstake(self, delegator: str, request_ids: list[int]) -> int:
        ...

    def schedule_withdraw(self, delegator: str, amount: int) -> DelegationTicket:
        ...

    def cancel_withdraw(self, delegator: str, request_id: int, amount: int) -> None:
        ...

    def execute_withdraw(self, delegator: str, request_id: int, amount: int) -> int:
        ...
