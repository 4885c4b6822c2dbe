"""
Token registry.

Deploys ``ERC20Token`` instances and exposes them through the ``TokenBank``
interface so the vault can read and move any token by address.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..exceptions import UnknownToken, ValidationError
from ..journal import UndoJournal
from .erc20 import ERC20Token, normalize_address

logger = logging.getLogger(__name__)


class TokenRegistry:
    """Factory and multi-token ledger for in-memory ERC20 tokens."""

    def __init__(self) -> None:
        self.tokens: dict[str, ERC20Token] = {}
        self._journal = UndoJournal()
        # Tokens that joined each open unit of work, innermost last
        self._open: list[list[ERC20Token]] = []

    def create_token(
        self,
        creator: str,
        name: str,
        symbol: str,
        decimals: int = 18,
        initial_supply: int = 0,
        mint_to: str | None = None,
        address: str = "",
    ) -> ERC20Token:
        """
        Create and register a new token.

        Args:
            creator: Address creating the token (becomes owner)
            name: Token name
            symbol: Token symbol (ticker)
            decimals: Decimal places (default 18)
            initial_supply: Initial supply to mint
            mint_to: Address to mint initial supply to (defaults to creator)
            address: Fixed token address (generated when empty)

        Returns:
            Deployed ERC20Token instance
        """
        if not name:
            raise ValidationError("TokenRegistry: name cannot be empty")
        if not symbol:
            raise ValidationError("TokenRegistry: symbol cannot be empty")
        if decimals < 0 or decimals > 18:
            raise ValidationError("TokenRegistry: invalid decimals")
        if initial_supply < 0:
            raise ValidationError("TokenRegistry: invalid initial supply")

        token = ERC20Token(name=name, symbol=symbol, decimals=decimals, owner=creator, address=address)
        if token.address in self.tokens:
            raise ValidationError(f"TokenRegistry: token {token.address} already exists")

        if initial_supply > 0:
            token.mint(creator, mint_to or creator, initial_supply)

        self.register(token)
        return token

    def register(self, token: ERC20Token) -> ERC20Token:
        self._journal.set_item(self.tokens, token.address, token)
        logger.info(
            "Token registered",
            extra={
                "event": "token_registry.registered",
                "address": token.address[:10],
                "symbol": token.symbol,
            },
        )
        return token

    def get_token(self, address: str) -> ERC20Token:
        token = self.tokens.get(normalize_address(address))
        if token is None:
            raise UnknownToken(f"Token {address} not found", {"token": address})
        return token

    def list_tokens(self) -> list[Dict[str, Any]]:
        return [
            {
                "address": address,
                "name": token.name,
                "symbol": token.symbol,
                "decimals": token.decimals,
                "total_supply": token.total_supply,
            }
            for address, token in self.tokens.items()
        ]

    # ==================== TokenBank ====================

    def balance_of(self, token: str, account: str) -> int:
        return self.get_token(token).balance_of(account)

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> bool:
        return self.get_token(token).transfer(sender, recipient, amount)

    def transfer_from(
        self, token: str, spender: str, from_addr: str, to_addr: str, amount: int
    ) -> bool:
        return self.get_token(token).transfer_from(spender, from_addr, to_addr, amount)

    # ==================== Transactional ====================

    def begin(self) -> None:
        tokens = list(self.tokens.values())
        for token in tokens:
            token.begin()
        self._journal.begin()
        self._open.append(tokens)

    def commit(self) -> None:
        tokens = self._open.pop()
        self._journal.commit()
        for token in tokens:
            token.commit()

    def rollback(self) -> None:
        """Undo writes to every token and drop tokens created since ``begin``."""
        tokens = self._open.pop()
        self._journal.rollback()
        for token in reversed(tokens):
            token.rollback()
