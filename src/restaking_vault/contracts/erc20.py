"""
In-memory ERC20 token.

Used for three roles around the vault:
- the vault's share token (a ``ShareBook``: mint/burn/transfer with
  balance-update hooks that run before any balance changes)
- the base asset users deposit
- reward tokens paid into the vault

Balances are plain ints; the null address marks mints and burns in events
and hook calls.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict

from ..exceptions import InsufficientBalance, InvalidAmount, Unauthorized, ValidationError
from ..interfaces import BalanceHook
from ..journal import UndoJournal

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40
UINT256_MAX = 2**256 - 1


def normalize_address(address: str) -> str:
    """Normalize address to lowercase."""
    return address.lower()


@dataclass
class TokenEvent:
    """Represents an ERC20 event."""

    event_type: str  # "Transfer" or "Approval"
    from_address: str
    to_address: str
    value: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC20Token:
    """
    ERC20 token with owner-gated minting and pre-update hooks.

    Hooks registered with ``add_balance_hook`` are called as
    ``hook(from_addr, to_addr, amount)`` after the operation has been
    validated and before balances change. A hook that raises aborts the
    operation with nothing mutated.
    """

    name: str
    symbol: str
    decimals: int = 18
    total_supply: int = 0
    address: str = ""
    owner: str = ""

    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[str, dict[str, int]] = field(default_factory=dict)
    events: list[TokenEvent] = field(default_factory=list)

    _hooks: list[BalanceHook] = field(default_factory=list, repr=False)
    _journal: UndoJournal = field(default_factory=UndoJournal, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.address:
            addr_input = f"{self.name}{self.symbol}{time.time()}".encode()
            addr_hash = hashlib.sha3_256(addr_input).digest()
            self.address = f"0x{addr_hash[-20:].hex()}"
        self.address = normalize_address(self.address)
        self.owner = normalize_address(self.owner)

    # ==================== View Functions ====================

    def balance_of(self, account: str) -> int:
        return self.balances.get(normalize_address(account), 0)

    def get_total_supply(self) -> int:
        return self.total_supply

    def allowance(self, owner: str, spender: str) -> int:
        owner_norm = normalize_address(owner)
        spender_norm = normalize_address(spender)
        return self.allowances.get(owner_norm, {}).get(spender_norm, 0)

    # ==================== Hooks ====================

    def add_balance_hook(self, hook: BalanceHook) -> None:
        """Register a callback run before every balance update."""
        self._hooks.append(hook)

    def _before_update(self, from_addr: str, to_addr: str, amount: int) -> None:
        for hook in self._hooks:
            hook(from_addr, to_addr, amount)

    # ==================== State-Changing Functions ====================

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Transfer tokens from sender to recipient.

        Raises:
            InsufficientBalance: If sender's balance is too small
        """
        sender_norm = normalize_address(sender)
        recipient_norm = normalize_address(recipient)

        self._validate_address(recipient_norm, "recipient")
        self._validate_amount(amount)

        sender_balance = self.balances.get(sender_norm, 0)
        if sender_balance < amount:
            raise InsufficientBalance(
                f"{self.symbol}: transfer amount exceeds balance ({amount} > {sender_balance})",
                {"token": self.address, "account": sender_norm},
            )

        self._before_update(sender_norm, recipient_norm, amount)
        self._move(sender_norm, recipient_norm, amount)

        logger.debug(
            "ERC20 transfer",
            extra={
                "event": "erc20.transfer",
                "token": self.symbol,
                "from": sender_norm[:10],
                "to": recipient_norm[:10],
                "amount": amount,
            },
        )
        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        owner_norm = normalize_address(owner)
        spender_norm = normalize_address(spender)

        self._validate_address(spender_norm, "spender")
        self._validate_amount(amount)

        self._set_allowance(owner_norm, spender_norm, amount)
        self._journal.append(self.events, TokenEvent("Approval", owner_norm, spender_norm, amount))
        return True

    def transfer_from(self, spender: str, from_addr: str, to_addr: str, amount: int) -> bool:
        """
        Transfer tokens using an allowance.

        Raises:
            InsufficientBalance: If allowance or balance is too small
        """
        spender_norm = normalize_address(spender)
        from_norm = normalize_address(from_addr)
        to_norm = normalize_address(to_addr)

        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        current_allowance = self.allowance(from_norm, spender_norm)
        if current_allowance < amount:
            raise InsufficientBalance(
                f"{self.symbol}: insufficient allowance ({current_allowance} < {amount})",
                {"token": self.address, "owner": from_norm, "spender": spender_norm},
            )

        from_balance = self.balances.get(from_norm, 0)
        if from_balance < amount:
            raise InsufficientBalance(
                f"{self.symbol}: transfer amount exceeds balance ({amount} > {from_balance})",
                {"token": self.address, "account": from_norm},
            )

        self._before_update(from_norm, to_norm, amount)

        if current_allowance != UINT256_MAX:
            self._set_allowance(from_norm, spender_norm, current_allowance - amount)
        self._move(from_norm, to_norm, amount)
        return True

    def mint(self, minter: str, to: str, amount: int) -> bool:
        """Mint new tokens (owner only)."""
        self._require_owner(minter)

        to_norm = normalize_address(to)
        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        self._before_update(ZERO_ADDRESS, to_norm, amount)

        self._journal.set_attr(self, "total_supply", self.total_supply + amount)
        self._journal.set_item(self.balances, to_norm, self.balances.get(to_norm, 0) + amount)
        self._journal.append(self.events, TokenEvent("Transfer", ZERO_ADDRESS, to_norm, amount))

        logger.info(
            "ERC20 mint",
            extra={
                "event": "erc20.mint",
                "token": self.symbol,
                "to": to_norm[:10],
                "amount": amount,
                "new_supply": self.total_supply,
            },
        )
        return True

    def burn(self, holder: str, amount: int) -> bool:
        """Burn tokens from holder's balance."""
        holder_norm = normalize_address(holder)
        self._validate_amount(amount)

        balance = self.balances.get(holder_norm, 0)
        if balance < amount:
            raise InsufficientBalance(
                f"{self.symbol}: burn amount exceeds balance ({amount} > {balance})",
                {"token": self.address, "account": holder_norm},
            )

        self._before_update(holder_norm, ZERO_ADDRESS, amount)

        self._journal.set_item(self.balances, holder_norm, balance - amount)
        self._journal.set_attr(self, "total_supply", self.total_supply - amount)
        self._journal.append(self.events, TokenEvent("Transfer", holder_norm, ZERO_ADDRESS, amount))

        logger.info(
            "ERC20 burn",
            extra={
                "event": "erc20.burn",
                "token": self.symbol,
                "from": holder_norm[:10],
                "amount": amount,
                "new_supply": self.total_supply,
            },
        )
        return True

    # ==================== Helpers ====================

    def _move(self, from_norm: str, to_norm: str, amount: int) -> None:
        self._journal.set_item(self.balances, from_norm, self.balances.get(from_norm, 0) - amount)
        self._journal.set_item(self.balances, to_norm, self.balances.get(to_norm, 0) + amount)
        self._journal.append(self.events, TokenEvent("Transfer", from_norm, to_norm, amount))

    def _set_allowance(self, owner_norm: str, spender_norm: str, amount: int) -> None:
        spenders = self.allowances.get(owner_norm)
        if spenders is None:
            spenders = {}
            self._journal.set_item(self.allowances, owner_norm, spenders)
        self._journal.set_item(spenders, spender_norm, amount)

    def _validate_address(self, address: str, field: str) -> None:
        if address == ZERO_ADDRESS or not address:
            raise ValidationError(f"{self.symbol}: {field} is zero address")

    def _validate_amount(self, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount(f"{self.symbol}: amount cannot be negative")
        if amount > UINT256_MAX:
            raise InvalidAmount(f"{self.symbol}: amount exceeds uint256")

    def _require_owner(self, caller: str) -> None:
        if normalize_address(caller) != self.owner:
            raise Unauthorized(f"{self.symbol}: caller is not owner", {"caller": caller})

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, Any]:
        """Serialize token state to dictionary."""
        return {
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "address": self.address,
            "owner": self.owner,
            "balances": dict(self.balances),
            "allowances": {k: dict(v) for k, v in self.allowances.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ERC20Token":
        """Deserialize token state from dictionary."""
        token = cls(
            name=data["name"],
            symbol=data["symbol"],
            decimals=data.get("decimals", 18),
            total_supply=data.get("total_supply", 0),
            address=data.get("address", ""),
            owner=data.get("owner", ""),
        )
        token.balances = dict(data.get("balances", {}))
        token.allowances = {k: dict(v) for k, v in data.get("allowances", {}).items()}
        return token

    # ==================== Transactional ====================

    def begin(self) -> None:
        self._journal.begin()

    def commit(self) -> None:
        self._journal.commit()

    def rollback(self) -> None:
        """Undo every balance, allowance and event written since ``begin``."""
        self._journal.rollback()
