"""
Tests for reward token registration and index maintenance.

Covers:
- Registration validation (null, base asset, duplicates, owner gate)
- Lazy arrival detection on refresh
- Index flooring and the claim payout cap
- Zero-supply arrivals under both policies
"""
import pytest

from restaking_vault import (
    ZERO_ADDRESS,
    AlreadyRegistered,
    EventLog,
    InvalidToken,
    Unauthorized,
    UnknownToken,
    VaultConfig,
    ZeroSupplyPolicy,
)
from restaking_vault import events as ev
from restaking_vault.config import RoundingMode
from restaking_vault.journal import UndoJournal
from restaking_vault.rewards import RewardLedger

from vault_test_utils import ALICE, BOB, CAROL, OWNER, VAULT, FakeClock, VaultHarness

P = 10**18


class TestRewardTokenRegistration:
    """Registering reward tokens on the vault."""

    def test_register_emits_event_and_lists_token(self, harness):
        """A registered token shows up in the token list with a fresh record."""
        vault = harness.vault
        assert vault.reward_tokens() == [harness.reward_x.address]

        registered = vault.events.of_type(ev.REWARD_TOKEN_REGISTERED)
        assert len(registered) == 1
        assert registered[0].data["token"] == harness.reward_x.address

        data = vault.get_reward_data(harness.reward_x.address)
        assert data["index"] == 0
        assert data["history"] == []
        assert data["is_registered"] is True

    def test_register_null_token_rejected(self, vault):
        with pytest.raises(InvalidToken):
            vault.register_reward_token(OWNER, ZERO_ADDRESS)
        with pytest.raises(InvalidToken):
            vault.register_reward_token(OWNER, "")

    def test_register_base_asset_rejected(self, harness):
        """The base asset can never be a reward token."""
        with pytest.raises(InvalidToken):
            harness.vault.register_reward_token(OWNER, harness.asset.address)

    def test_register_twice_rejected(self, harness):
        with pytest.raises(AlreadyRegistered):
            harness.vault.register_reward_token(OWNER, harness.reward_x.address)

    def test_register_is_case_insensitive(self, harness):
        """Addresses are normalized before the duplicate check."""
        token = harness.registry.create_token(OWNER, "Reward Z", "RWZ", address="0x" + "ab" * 20)
        harness.vault.register_reward_token(OWNER, token.address)
        with pytest.raises(AlreadyRegistered):
            harness.vault.register_reward_token(OWNER, "0x" + "AB" * 20)

    def test_only_owner_registers(self, harness):
        with pytest.raises(Unauthorized):
            harness.vault.register_reward_token(ALICE, harness.reward_y.address)
        assert harness.vault.reward_tokens() == [harness.reward_x.address]

    def test_failed_registration_leaves_no_event(self, harness):
        before = len(harness.vault.events)
        with pytest.raises(InvalidToken):
            harness.vault.register_reward_token(OWNER, harness.asset.address)
        assert len(harness.vault.events) == before

    def test_unknown_token_queries_raise(self, harness):
        with pytest.raises(UnknownToken):
            harness.vault.get_reward_data(harness.reward_y.address)
        with pytest.raises(UnknownToken):
            harness.vault.claimable(ALICE, harness.reward_y.address)


class TestLazyArrivalDetection:
    """Rewards are only noticed when an operation refreshes the index."""

    def test_arrival_not_recorded_until_refresh(self, harness):
        harness.deposit(ALICE, 100)
        harness.pay_reward(harness.reward_x, 10)

        data = harness.vault.get_reward_data(harness.reward_x.address)
        assert data["history"] == []
        assert data["index"] == 0

        # Refresh happens inside any balance change
        harness.deposit(BOB, 100)
        data = harness.vault.get_reward_data(harness.reward_x.address)
        assert [entry["amount"] for entry in data["history"]] == [10]
        assert data["recorded_total"] == 10
        assert data["index"] == 10 * P // 100

        updates = harness.vault.events.of_type(ev.REWARD_INDEX_UPDATED)
        assert updates[-1].data["amount"] == 10
        assert updates[-1].data["supply"] == 100

    def test_claimable_previews_without_mutating(self, harness):
        """claimable() includes unseen arrivals but records nothing."""
        harness.deposit(ALICE, 100)
        harness.pay_reward(harness.reward_x, 10)

        assert harness.vault.claimable(ALICE, harness.reward_x.address) == 10
        assert harness.vault.get_reward_data(harness.reward_x.address)["history"] == []

    def test_arrivals_after_claim_are_detected(self, harness):
        """Payouts are netted out, so a smaller later arrival still counts."""
        harness.deposit(ALICE, 100)
        harness.pay_reward(harness.reward_x, 10)
        assert harness.claim(ALICE, harness.reward_x) == 10

        harness.pay_reward(harness.reward_x, 4)
        assert harness.claim(ALICE, harness.reward_x) == 4

        data = harness.vault.get_reward_data(harness.reward_x.address)
        assert data["recorded_total"] == 14
        assert data["total_paid"] == 14

    def test_tokens_accrue_independently(self, harness):
        harness.register(harness.reward_y)
        harness.deposit(ALICE, 100)
        harness.pay_reward(harness.reward_x, 10)
        harness.pay_reward(harness.reward_y, 30)

        paid = harness.vault.claim(ALICE, ALICE)
        assert paid == [10, 30]


class TestIndexRounding:
    """Index increments floor; entitlements round per configuration."""

    def test_ceiling_overshoot_capped_by_distributable(self, harness):
        """
        With 100/200 shares and a reward of 10, ceiling rounding owes 4 + 7.
        The second claimant is paid what is left and carries the rest.
        """
        harness.deposit(ALICE, 100)
        harness.deposit(BOB, 200)
        harness.pay_reward(harness.reward_x, 10)

        assert harness.claim(ALICE, harness.reward_x) == 4
        assert harness.claim(BOB, harness.reward_x) == 6

        checkpoint = harness.vault.get_checkpoint(BOB, harness.reward_x.address)
        assert checkpoint["pending_amount"] == 1
        assert harness.reward_x.balance_of(VAULT) == 0

    def test_carried_amount_paid_from_next_arrival(self, harness):
        harness.deposit(ALICE, 100)
        harness.deposit(BOB, 200)
        harness.pay_reward(harness.reward_x, 10)
        harness.claim(ALICE, harness.reward_x)
        harness.claim(BOB, harness.reward_x)

        harness.pay_reward(harness.reward_x, 30)
        # 1 carried + 200 * 30 / 300
        assert harness.claim(BOB, harness.reward_x) == 21

    def test_round_down_leaves_dust(self, clock):
        harness = VaultHarness(
            config=VaultConfig(reward_precision=P, entitlement_rounding=RoundingMode.DOWN),
            clock=clock,
        )
        harness.register(harness.reward_x)
        harness.deposit(ALICE, 100)
        harness.deposit(BOB, 200)
        harness.pay_reward(harness.reward_x, 10)

        assert harness.claim(ALICE, harness.reward_x) == 3
        assert harness.claim(BOB, harness.reward_x) == 6
        assert harness.reward_x.balance_of(VAULT) == 1

    def test_index_increment_is_floored(self, harness):
        harness.deposit(ALICE, 3)
        harness.pay_reward(harness.reward_x, 1)
        harness.deposit(BOB, 1)

        assert harness.vault.get_reward_data(harness.reward_x.address)["index"] == P // 3


class TestZeroSupplyArrivals:
    """Rewards arriving while nothing is earning."""

    def test_forfeit_records_but_never_indexes(self, harness):
        harness.pay_reward(harness.reward_x, 10)
        harness.deposit(ALICE, 100)

        data = harness.vault.get_reward_data(harness.reward_x.address)
        assert [entry["amount"] for entry in data["history"]] == [10]
        assert data["index"] == 0
        assert data["undistributed"] == 0
        assert harness.vault.claimable(ALICE, harness.reward_x.address) == 0

        harness.pay_reward(harness.reward_x, 10)
        assert harness.claim(ALICE, harness.reward_x) == 10
        assert harness.reward_x.balance_of(VAULT) == 10

    def test_defer_hands_reward_to_next_holders(self, clock):
        harness = VaultHarness(
            config=VaultConfig(reward_precision=P, zero_supply_policy=ZeroSupplyPolicy.DEFER),
            clock=clock,
        )
        harness.register(harness.reward_x)
        harness.pay_reward(harness.reward_x, 10)
        harness.deposit(ALICE, 100)

        data = harness.vault.get_reward_data(harness.reward_x.address)
        assert data["undistributed"] == 10
        assert data["index"] == 0
        assert harness.vault.claimable(ALICE, harness.reward_x.address) == 10

        assert harness.claim(ALICE, harness.reward_x) == 10
        assert harness.vault.get_reward_data(harness.reward_x.address)["undistributed"] == 0


class TestRewardLedgerDirect:
    """The ledger on its own, with a controllable earning supply."""

    @pytest.fixture
    def journal(self):
        return UndoJournal()

    @pytest.fixture
    def setup(self, harness, clock, journal):
        supply = {"value": 100}
        ledger = RewardLedger(
            tokens=harness.registry,
            holder=CAROL,
            base_asset=harness.asset.address,
            earning_supply=lambda: supply["value"],
            events=EventLog(clock, journal=journal),
            precision=P,
            journal=journal,
        )
        ledger.register(harness.reward_y.address)
        return ledger, supply, harness

    def test_refresh_returns_new_amount_once(self, setup):
        ledger, _, harness = setup
        harness.reward_y.mint(OWNER, CAROL, 50)

        assert ledger.refresh(harness.reward_y.address) == 50
        assert ledger.refresh(harness.reward_y.address) == 0
        assert ledger.index(harness.reward_y.address) == 50 * P // 100
        assert ledger.history_length(harness.reward_y.address) == 1

    def test_preview_matches_refresh(self, setup):
        ledger, supply, harness = setup
        supply["value"] = 7
        harness.reward_y.mint(OWNER, CAROL, 22)

        preview = ledger.preview_index(harness.reward_y.address)
        ledger.refresh(harness.reward_y.address)
        assert ledger.index(harness.reward_y.address) == preview

    def test_payout_cannot_exceed_distributable(self, setup):
        ledger, _, harness = setup
        harness.reward_y.mint(OWNER, CAROL, 5)
        ledger.refresh(harness.reward_y.address)

        ledger.record_payout(harness.reward_y.address, 3)
        assert ledger.distributable(harness.reward_y.address) == 2
        with pytest.raises(ValueError):
            ledger.record_payout(harness.reward_y.address, 3)

    def test_rollback_undoes_refresh(self, setup, journal):
        ledger, _, harness = setup
        harness.reward_y.mint(OWNER, CAROL, 5)
        journal.begin()
        ledger.refresh(harness.reward_y.address)
        assert ledger.index(harness.reward_y.address) == 5 * P // 100

        journal.rollback()
        assert ledger.index(harness.reward_y.address) == 0
        assert ledger.history_length(harness.reward_y.address) == 0
        assert ledger.get_record(harness.reward_y.address)["recorded_total"] == 0

        # The arrival is still there to be indexed
        assert ledger.refresh(harness.reward_y.address) == 5

    def test_rollback_drops_registration(self, setup, journal):
        ledger, _, harness = setup
        journal.begin()
        ledger.register(harness.reward_x.address)
        journal.rollback()

        assert ledger.tokens() == [harness.reward_y.address]

    def test_unknown_token_refresh(self, setup):
        ledger, _, harness = setup
        with pytest.raises(UnknownToken):
            ledger.refresh(harness.reward_x.address)


def test_fake_clock_drives_timestamps():
    clock = FakeClock(start=5.0)
    harness = VaultHarness(clock=clock)
    clock.advance(10)
    harness.register(harness.reward_x)
    assert harness.vault.get_reward_data(harness.reward_x.address)["last_update_time"] == 15.0
