"""
In-memory token contracts.

- ERC20: fungible token with pre-update balance hooks (share token, base
  asset, reward tokens)
- TokenRegistry: token factory and multi-token ``TokenBank``
"""

from .erc20 import ZERO_ADDRESS, ERC20Token, TokenEvent, normalize_address
from .registry import TokenRegistry

__all__ = [
    "ERC20Token",
    "TokenEvent",
    "TokenRegistry",
    "ZERO_ADDRESS",
    "normalize_address",
]
