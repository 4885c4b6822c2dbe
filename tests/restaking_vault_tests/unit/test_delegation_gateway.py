"""
Tests for the in-memory delegation gateway.
"""
import pytest

from restaking_vault import (
    DelayNotElapsed,
    DelegationGateway,
    InMemoryDelegationGateway,
    InsufficientScheduled,
    NoScheduledAmount,
    TokenRegistry,
    Unauthorized,
    VaultConfig,
)
from restaking_vault.exceptions import InsufficientBalance

from vault_test_utils import ALICE, BOB, GATEWAY, OWNER, FakeClock

UNSTAKE = 10.0
WITHDRAW = 20.0


@pytest.fixture
def setup():
    clock = FakeClock()
    registry = TokenRegistry()
    asset = registry.create_token(OWNER, "Tangle", "TNT", initial_supply=1_000, mint_to=ALICE)
    asset.mint(OWNER, BOB, 1_000)
    gateway = InMemoryDelegationGateway(
        registry,
        asset.address,
        operator="0x" + "0e" * 20,
        unstake_delay=UNSTAKE,
        withdraw_delay=WITHDRAW,
        clock=clock,
        address=GATEWAY,
    )
    gateway.deposit_and_delegate(ALICE, 500)
    return gateway, asset, clock


def test_satisfies_protocol(setup):
    gateway, _, _ = setup
    assert isinstance(gateway, DelegationGateway)


class TestUnstake:
    def test_delegate_custodies_asset(self, setup):
        gateway, asset, _ = setup
        assert asset.balance_of(GATEWAY) == 500
        assert gateway.get_delegator_state(ALICE)["delegated"] == 500

    def test_schedule_beyond_delegated(self, setup):
        gateway, _, _ = setup
        gateway.schedule_unstake(ALICE, 300)
        with pytest.raises(InsufficientBalance):
            gateway.schedule_unstake(ALICE, 201)

    def test_execute_respects_delay(self, setup):
        gateway, _, clock = setup
        ticket = gateway.schedule_unstake(ALICE, 200)
        assert ticket.ready_at == clock.now + UNSTAKE

        with pytest.raises(DelayNotElapsed) as exc_info:
            gateway.execute_unstake(ALICE, [ticket.request_id])
        assert exc_info.value.ready_at == ticket.ready_at

        clock.advance(UNSTAKE)
        assert gateway.execute_unstake(ALICE, [ticket.request_id]) == 200
        state = gateway.get_delegator_state(ALICE)
        assert state["delegated"] == 300
        assert state["deposited"] == 200
        assert state["pending_unstake"] == 0

    def test_execute_is_all_or_nothing(self, setup):
        gateway, _, clock = setup
        first = gateway.schedule_unstake(ALICE, 100)
        clock.advance(UNSTAKE)
        second = gateway.schedule_unstake(ALICE, 100)

        with pytest.raises(DelayNotElapsed):
            gateway.execute_unstake(ALICE, [first.request_id, second.request_id])
        assert first.request_id in gateway.requests
        assert gateway.get_delegator_state(ALICE)["deposited"] == 0

    def test_cancel_reduces_request(self, setup):
        gateway, _, _ = setup
        ticket = gateway.schedule_unstake(ALICE, 100)

        gateway.cancel_unstake(ALICE, ticket.request_id, 40)
        assert gateway.requests[ticket.request_id].amount == 60
        with pytest.raises(InsufficientScheduled):
            gateway.cancel_unstake(ALICE, ticket.request_id, 61)

        gateway.cancel_unstake(ALICE, ticket.request_id, 60)
        assert ticket.request_id not in gateway.requests

    def test_request_ownership(self, setup):
        gateway, _, _ = setup
        ticket = gateway.schedule_unstake(ALICE, 100)
        with pytest.raises(Unauthorized):
            gateway.cancel_unstake(BOB, ticket.request_id, 10)
        with pytest.raises(NoScheduledAmount):
            gateway.cancel_withdraw(ALICE, ticket.request_id, 10)
        with pytest.raises(NoScheduledAmount):
            gateway.execute_unstake(ALICE, [999])


class TestWithdraw:
    @pytest.fixture
    def unstaked(self, setup):
        gateway, asset, clock = setup
        ticket = gateway.schedule_unstake(ALICE, 200)
        clock.advance(UNSTAKE)
        gateway.execute_unstake(ALICE, [ticket.request_id])
        return gateway, asset, clock

    def test_schedule_beyond_deposited(self, unstaked):
        gateway, _, _ = unstaked
        with pytest.raises(InsufficientBalance):
            gateway.schedule_withdraw(ALICE, 201)

    def test_partial_release(self, unstaked):
        gateway, asset, clock = unstaked
        ticket = gateway.schedule_withdraw(ALICE, 150)

        with pytest.raises(DelayNotElapsed):
            gateway.execute_withdraw(ALICE, ticket.request_id, 50)

        clock.advance(WITHDRAW)
        before = asset.balance_of(ALICE)
        assert gateway.execute_withdraw(ALICE, ticket.request_id, 50) == 50
        assert asset.balance_of(ALICE) == before + 50
        assert gateway.requests[ticket.request_id].amount == 100

        with pytest.raises(InsufficientScheduled):
            gateway.execute_withdraw(ALICE, ticket.request_id, 101)

        gateway.execute_withdraw(ALICE, ticket.request_id, 100)
        assert ticket.request_id not in gateway.requests
        assert gateway.get_delegator_state(ALICE)["deposited"] == 50

    def test_cancel_redelegates_assets(self, unstaked):
        gateway, asset, _ = unstaked
        ticket = gateway.schedule_withdraw(ALICE, 150)
        gateway.cancel_withdraw(ALICE, ticket.request_id, 150)

        state = gateway.get_delegator_state(ALICE)
        assert state["deposited"] == 50
        assert state["delegated"] == 450
        assert state["pending_withdraw"] == 0
        assert asset.balance_of(GATEWAY) == 500

    def test_partial_cancel_leaves_rest_withdrawable(self, unstaked):
        gateway, _, clock = unstaked
        ticket = gateway.schedule_withdraw(ALICE, 150)
        gateway.cancel_withdraw(ALICE, ticket.request_id, 100)

        assert gateway.requests[ticket.request_id].amount == 50
        assert gateway.get_delegator_state(ALICE)["delegated"] == 400
        # The remaining undelegated balance can be scheduled again
        gateway.schedule_withdraw(ALICE, 50)
        with pytest.raises(InsufficientBalance):
            gateway.schedule_withdraw(ALICE, 1)

        clock.advance(WITHDRAW)
        assert gateway.execute_withdraw(ALICE, ticket.request_id, 50) == 50

    def test_redelegated_assets_can_unstake_again(self, unstaked):
        gateway, _, _ = unstaked
        ticket = gateway.schedule_withdraw(ALICE, 200)
        gateway.cancel_withdraw(ALICE, ticket.request_id, 200)

        gateway.schedule_unstake(ALICE, 500)
        assert gateway.get_delegator_state(ALICE)["pending_unstake"] == 500


class TestConfiguration:
    def test_from_config_uses_config_delays(self):
        clock = FakeClock()
        registry = TokenRegistry()
        asset = registry.create_token(OWNER, "Tangle", "TNT", initial_supply=100, mint_to=ALICE)
        gateway = InMemoryDelegationGateway.from_config(
            registry,
            asset.address,
            VaultConfig(unstake_delay=30.0, withdraw_delay=60.0),
            clock=clock,
            address=GATEWAY,
        )
        gateway.deposit_and_delegate(ALICE, 100)

        assert gateway.unstake_delay == 30.0
        assert gateway.withdraw_delay == 60.0
        assert gateway.address == GATEWAY
        ticket = gateway.schedule_unstake(ALICE, 100)
        assert ticket.ready_at == clock.now + 30.0

    def test_defaults_come_from_environment_settings(self, monkeypatch):
        monkeypatch.setattr("restaking_vault.config.UNSTAKE_DELAY_SECONDS", 45.0)
        monkeypatch.setattr("restaking_vault.config.WITHDRAW_DELAY_SECONDS", 90.0)
        registry = TokenRegistry()
        asset = registry.create_token(OWNER, "Tangle", "TNT")

        gateway = InMemoryDelegationGateway(registry, asset.address)
        assert gateway.unstake_delay == 45.0
        assert gateway.withdraw_delay == 90.0

    def test_explicit_delay_wins(self, monkeypatch):
        monkeypatch.setattr("restaking_vault.config.UNSTAKE_DELAY_SECONDS", 45.0)
        registry = TokenRegistry()
        asset = registry.create_token(OWNER, "Tangle", "TNT")

        gateway = InMemoryDelegationGateway(registry, asset.address, unstake_delay=0.0)
        assert gateway.unstake_delay == 0.0


class TestUnitOfWork:
    def test_rollback_undoes_requests(self, setup):
        gateway, _, _ = setup
        gateway.begin()
        ticket = gateway.schedule_unstake(ALICE, 100)
        gateway.rollback()

        assert ticket.request_id not in gateway.requests
        assert gateway.next_request_id == ticket.request_id
        assert gateway.get_delegator_state(ALICE)["pending_unstake"] == 0

    def test_rollback_undoes_token_moves(self, setup):
        gateway, asset, _ = setup
        bob_before = asset.balance_of(BOB)
        gateway.begin()
        asset.begin()
        gateway.deposit_and_delegate(BOB, 300)
        asset.rollback()
        gateway.rollback()

        assert asset.balance_of(BOB) == bob_before
        assert gateway.get_delegator_state(BOB)["delegated"] == 0

    def test_commit_keeps_writes(self, setup):
        gateway, _, _ = setup
        gateway.begin()
        ticket = gateway.schedule_unstake(ALICE, 100)
        gateway.commit()

        assert gateway.requests[ticket.request_id].amount == 100
        assert gateway.get_delegator_state(ALICE)["pending_unstake"] == 100
