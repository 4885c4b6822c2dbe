"""
Restaking Vault Configuration

Every setting can be supplied through an environment variable. Module-level
constants hold the process-wide defaults; ``VaultConfig`` bundles them so a
vault can also be configured explicitly (tests, embedded use).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


class ZeroSupplyPolicy(Enum):
    """What happens to a reward that arrives while no shares are earning."""

    FORFEIT = "forfeit"  # recorded in history, never indexed
    DEFER = "defer"      # parked, folded into the index once supply exists


class RoundingMode(Enum):
    UP = "up"
    DOWN = "down"


def _get_int(env_var: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{env_var} must be >= {minimum}, got {value}")
    return value


def _get_float(env_var: str, default: float) -> float:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationError(f"{env_var} cannot be negative, got {value}")
    return value


def _get_enum(env_var: str, enum_cls: type[Enum], default: Enum) -> Enum:
    raw = os.getenv(env_var, "").strip().lower()
    if not raw:
        return default
    try:
        return enum_cls(raw)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        logger.error(
            "Invalid value for %s: %s",
            env_var,
            raw,
            extra={"event": "config.invalid_value", "env_var": env_var},
        )
        raise ConfigurationError(f"{env_var} must be one of: {allowed}") from exc


REWARD_PRECISION = _get_int("LRT_REWARD_PRECISION", 10**18, minimum=1)
ZERO_SUPPLY_POLICY = _get_enum("LRT_ZERO_SUPPLY_POLICY", ZeroSupplyPolicy, ZeroSupplyPolicy.FORFEIT)
ENTITLEMENT_ROUNDING = _get_enum("LRT_ENTITLEMENT_ROUNDING", RoundingMode, RoundingMode.UP)
UNSTAKE_DELAY_SECONDS = _get_float("LRT_UNSTAKE_DELAY_SECONDS", 0.0)
WITHDRAW_DELAY_SECONDS = _get_float("LRT_WITHDRAW_DELAY_SECONDS", 0.0)
LOG_LEVEL = os.getenv("LRT_LOG_LEVEL", "INFO").strip().upper() or "INFO"
ENVIRONMENT = os.getenv("LRT_ENVIRONMENT", "development").strip() or "development"
LOG_FILE = os.getenv("LRT_LOG_FILE", "").strip() or None


@dataclass(frozen=True)
class VaultConfig:
    """Settings consumed by the reward engine and the reference gateway."""

    reward_precision: int = REWARD_PRECISION
    zero_supply_policy: ZeroSupplyPolicy = ZERO_SUPPLY_POLICY
    entitlement_rounding: RoundingMode = ENTITLEMENT_ROUNDING
    unstake_delay: float = UNSTAKE_DELAY_SECONDS
    withdraw_delay: float = WITHDRAW_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.reward_precision <= 0:
            raise ConfigurationError("reward_precision must be positive")
        if self.unstake_delay < 0 or self.withdraw_delay < 0:
            raise ConfigurationError("delays cannot be negative")

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Re-read the environment (module constants are fixed at import)."""
        return cls(
            reward_precision=_get_int("LRT_REWARD_PRECISION", 10**18, minimum=1),
            zero_supply_policy=_get_enum(
                "LRT_ZERO_SUPPLY_POLICY", ZeroSupplyPolicy, ZeroSupplyPolicy.FORFEIT
            ),
            entitlement_rounding=_get_enum(
                "LRT_ENTITLEMENT_ROUNDING", RoundingMode, RoundingMode.UP
            ),
            unstake_delay=_get_float("LRT_UNSTAKE_DELAY_SECONDS", 0.0),
            withdraw_delay=_get_float("LRT_WITHDRAW_DELAY_SECONDS", 0.0),
        )
