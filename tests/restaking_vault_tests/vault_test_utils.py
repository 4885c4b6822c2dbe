"""
Shared helpers for vault tests: fixed addresses, a controllable clock and
a vault wired to in-memory collaborators.
"""
from __future__ import annotations

from restaking_vault import (
    ERC20Token,
    InMemoryDelegationGateway,
    LiquidRestakingVault,
    TokenRegistry,
    VaultConfig,
)

OWNER = "0x" + "0a" * 20
VAULT = "0x" + "0b" * 20
GATEWAY = "0x" + "0c" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c0" * 20

UNSTAKE_DELAY = 100.0
WITHDRAW_DELAY = 200.0


class FakeClock:
    """Deterministic time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class VaultHarness:
    """A vault wired to in-memory collaborators, plus shortcuts for tests."""

    def __init__(
        self,
        config: VaultConfig | None = None,
        clock: FakeClock | None = None,
        gateway_cls: type[InMemoryDelegationGateway] = InMemoryDelegationGateway,
        vault_address: str = VAULT,
    ) -> None:
        self.clock = clock or FakeClock()
        self.vault_address = vault_address
        self.registry = TokenRegistry()
        self.asset = self.registry.create_token(OWNER, "Tangle", "TNT", address="0x" + "11" * 20)
        self.reward_x = self.registry.create_token(OWNER, "Reward X", "RWX", address="0x" + "22" * 20)
        self.reward_y = self.registry.create_token(OWNER, "Reward Y", "RWY", address="0x" + "33" * 20)
        self.share_token = ERC20Token(
            name="Liquid Restaked TNT", symbol="lrtTNT", owner=vault_address, address="0x" + "44" * 20
        )
        self.gateway = gateway_cls(
            self.registry,
            self.asset.address,
            operator="0x" + "0e" * 20,
            unstake_delay=UNSTAKE_DELAY,
            withdraw_delay=WITHDRAW_DELAY,
            clock=self.clock,
            address=GATEWAY,
        )
        self.vault = LiquidRestakingVault(
            asset=self.asset.address,
            shares=self.share_token,
            tokens=self.registry,
            gateway=self.gateway,
            address=vault_address,
            owner=OWNER,
            config=config or VaultConfig(reward_precision=10**18),
            clock=self.clock,
        )

    def register(self, *tokens: ERC20Token) -> None:
        for token in tokens:
            self.vault.register_reward_token(OWNER, token.address)

    def deposit(self, user: str, assets: int) -> int:
        self.asset.mint(OWNER, user, assets)
        self.asset.approve(user, self.vault_address, assets)
        return self.vault.deposit(user, assets)

    def pay_reward(self, token: ERC20Token, amount: int) -> None:
        token.mint(OWNER, self.vault_address, amount)

    def claim(self, user: str, token: ERC20Token) -> int:
        return self.vault.claim(user, user, [token.address])[0]

    def unstake_and_schedule_withdraw(self, user: str, assets: int) -> None:
        self.vault.schedule_unstake(user, assets)
        self.clock.advance(UNSTAKE_DELAY)
        self.vault.execute_unstake(user)
        self.vault.schedule_withdraw(user, assets)


