"""Unit tests for the locking controller.

These tests verify:
- Bucket administration and its input domain
- Share minting/burning and exact global aggregates
- Moving positions to longer buckets
- Reward routing between buckets and the unwinding ledger
- Capability checks, reentrancy rejection and rollback
"""

import pytest

from lockledger.engine.errors import (
    BucketMustBeLongerDuration,
    InsufficientBalance,
    InvalidBucket,
    InvalidMultiplier,
    InvalidPercentage,
    InvalidUnwindingEpochs,
    NoRewardWeight,
    ReentrantCall,
    TransferFailed,
    Unauthorized,
)
from lockledger.engine.fixed_point import WAD, to_wad
from lockledger.engine.locking import Metric
from lockledger.engine.tokens import ShareToken


def assert_weight_consistent(controller):
    expected = sum(controller.buckets[d].reward_weight for d in controller.enabled)
    assert controller.global_reward_weight == expected
    assert controller.global_receipt_token == sum(b.total_receipt_tokens for b in controller.buckets.values())


class TestBucketAdmin:
    """Tests for governor-only bucket management."""

    def test_buckets_enabled_from_config(self, protocol):
        """Configured buckets are enabled in order."""
        assert protocol.controller.enabled_buckets() == [1, 4, 10, 20]
        assert protocol.controller.bucket_data(10).multiplier == to_wad("1.2")

    def test_duplicate_rejected(self, protocol):
        """A duration can only be enabled once."""
        token = ShareToken("dup", protocol.authorizer, 10)
        with pytest.raises(InvalidBucket):
            protocol.controller.enable_bucket(10, token, WAD, sender=protocol.roles.governor)

    @pytest.mark.parametrize("duration", [0, 101])
    def test_duration_out_of_range(self, protocol, duration):
        """Durations outside [1, 100] are rejected."""
        with pytest.raises(InvalidUnwindingEpochs):
            protocol.enable_bucket(duration, WAD)

    @pytest.mark.parametrize("multiplier", [to_wad("0.99"), to_wad("2.01")])
    def test_multiplier_out_of_range(self, protocol, multiplier):
        """Multipliers outside [1.0, 2.0] are rejected."""
        with pytest.raises(InvalidMultiplier):
            protocol.enable_bucket(30, multiplier)

    def test_boundaries_accepted(self, protocol):
        """Duration 100 with multiplier 2.0 is valid."""
        protocol.enable_bucket(100, 2 * WAD)
        assert 100 in protocol.controller.enabled_buckets()

    def test_non_governor_rejected(self, protocol):
        """Only the governor can enable buckets."""
        token = ShareToken("x", protocol.authorizer, 30)
        with pytest.raises(Unauthorized):
            protocol.controller.enable_bucket(30, token, WAD, sender=protocol.roles.entry_point)

    def test_set_multiplier_updates_global_weight(self, protocol):
        """Changing a multiplier replaces that bucket's contribution."""
        protocol.lock("alice", 1000, 10)
        protocol.lock("bob", 1000, 4)
        assert protocol.controller.global_reward_weight == 1200 + 1100
        protocol.set_bucket_multiplier(10, to_wad("1.5"))
        assert protocol.controller.global_reward_weight == 1500 + 1100
        assert_weight_consistent(protocol.controller)

    def test_set_multiplier_unknown_bucket(self, protocol):
        """Unknown durations are rejected."""
        with pytest.raises(InvalidBucket):
            protocol.set_bucket_multiplier(7, WAD)

    def test_set_max_loss_percentage(self, protocol):
        """Max loss percentage must lie in (0, 1]."""
        protocol.set_max_loss_percentage(WAD // 2)
        assert protocol.controller.max_loss_percentage == WAD // 2
        with pytest.raises(InvalidPercentage):
            protocol.set_max_loss_percentage(0)
        with pytest.raises(InvalidPercentage):
            protocol.set_max_loss_percentage(WAD + 1)


class TestCreatePosition:
    """Tests for locking principal into buckets."""

    def test_first_deposit_mints_one_to_one(self, protocol):
        """An empty bucket mints shares equal to the amount."""
        shares = protocol.lock("alice", 1000, 10)
        assert shares == 1000
        assert protocol.controller.shares("alice", 10) == 1000
        assert protocol.controller.global_receipt_token == 1000
        assert protocol.controller.global_reward_weight == 1200

    def test_later_deposit_mints_pro_rata(self, protocol):
        """After rewards the share price is above one."""
        protocol.lock("alice", 1000, 10)
        protocol.deposit_rewards(100)
        shares = protocol.lock("bob", 1100, 10)
        assert shares == 1000
        assert protocol.controller.exchange_rate(10) == to_wad("1.1")

    def test_unknown_bucket(self, protocol):
        """Locking into a disabled duration fails and mints nothing."""
        with pytest.raises(InvalidBucket):
            protocol.lock("alice", 1000, 7)
        assert protocol.receipt_token.total_supply == 0

    def test_transfer_failure(self, protocol):
        """Missing allowance surfaces as TransferFailed."""
        entry = protocol.roles.entry_point
        protocol.receipt_token.mint(protocol.roles.receipt_minter, entry, 1000)
        with pytest.raises(TransferFailed):
            protocol.controller.create_position(1000, 10, "alice", sender=entry)
        assert protocol.controller.global_receipt_token == 0

    def test_requires_entry_point(self, protocol):
        """Arbitrary callers cannot create positions."""
        with pytest.raises(Unauthorized):
            protocol.controller.create_position(1, 10, "alice", sender="mallory")


class TestStartUnwinding:
    """Tests for leaving a bucket."""

    def test_moves_principal_to_ledger(self, protocol):
        """Burns shares and hands principal and boosted weight to the ledger."""
        shares = protocol.lock("alice", 1000, 10)
        protocol.clock.advance(10)
        start = protocol.start_unwinding("alice", shares, 10)

        assert protocol.controller.shares("alice", 10) == 0
        assert protocol.controller.global_receipt_token == 0
        assert protocol.controller.global_reward_weight == 0
        assert protocol.unwinding.total_receipt_tokens == 1000
        assert protocol.unwinding.position("alice", start).from_reward_weight == 1200
        assert protocol.receipt_token.balance_of(protocol.unwinding.address) == 1000

    def test_partial_unwind(self, protocol):
        """Unwinding part of a position leaves the rest locked."""
        protocol.lock("alice", 1000, 4)
        protocol.lock("bob", 3000, 4)
        start = protocol.start_unwinding("alice", 400, 4)
        assert protocol.controller.balance_of("alice") == 600
        assert protocol.unwinding.balance_of("alice", start) == 400
        assert_weight_consistent(protocol.controller)

    def test_more_shares_than_held(self, protocol):
        """Burning shares the user lacks fails."""
        protocol.lock("alice", 1000, 10)
        with pytest.raises(InsufficientBalance):
            protocol.start_unwinding("alice", 1001, 10)
        assert protocol.controller.shares("alice", 10) == 1000

    def test_two_unwinds_same_timestamp(self, protocol):
        """Only one position per (user, timestamp)."""
        from lockledger.engine.errors import UserAlreadyUnwinding

        protocol.lock("alice", 1000, 10)
        protocol.start_unwinding("alice", 100, 10)
        with pytest.raises(UserAlreadyUnwinding):
            protocol.start_unwinding("alice", 100, 10)
        assert protocol.controller.shares("alice", 10) == 900


class TestIncreaseUnwindingEpochs:
    """Tests for moving a locked position to a longer bucket."""

    def test_moves_between_buckets(self, protocol):
        """Principal and weight move atomically."""
        shares = protocol.lock("alice", 1000, 4)
        assert protocol.controller.global_reward_weight == 1100
        new_shares = protocol.increase_unwinding_epochs("alice", shares, 4, 10)
        assert new_shares == 1000
        assert protocol.controller.shares("alice", 4) == 0
        assert protocol.controller.balance_of("alice") == 1000
        assert protocol.controller.global_receipt_token == 1000
        assert protocol.controller.global_reward_weight == 1200
        assert_weight_consistent(protocol.controller)

    @pytest.mark.parametrize("new_duration", [4, 1])
    def test_must_be_longer(self, protocol, new_duration):
        """Equal or shorter targets are rejected."""
        shares = protocol.lock("alice", 1000, 4)
        with pytest.raises(BucketMustBeLongerDuration):
            protocol.increase_unwinding_epochs("alice", shares, 4, new_duration)

    def test_unknown_target(self, protocol):
        """Target bucket must exist."""
        shares = protocol.lock("alice", 1000, 4)
        with pytest.raises(InvalidBucket):
            protocol.increase_unwinding_epochs("alice", shares, 4, 7)


class TestDepositRewards:
    """Tests for reward routing."""

    def test_split_between_ledger_and_buckets(self, protocol):
        """Rewards split by unwinding weight vs locked weight."""
        protocol.lock("alice", 1000, 10)
        bob_shares = protocol.lock("bob", 1000, 10)
        protocol.clock.advance(10)
        start = protocol.start_unwinding("bob", bob_shares, 10)

        protocol.deposit_rewards(240)
        assert protocol.controller.balance_of("alice") == 1120
        assert protocol.unwinding.balance_of("bob", start) == 1120
        assert_weight_consistent(protocol.controller)

    def test_split_across_buckets_by_weight(self, protocol):
        """Locked rewards follow bucket reward weight, dust to the last bucket."""
        protocol.lock("alice", 1000, 1)   # weight 1000
        protocol.lock("bob", 1000, 20)    # weight 1500
        protocol.deposit_rewards(1001)
        a = protocol.controller.bucket_data(1).total_receipt_tokens
        b = protocol.controller.bucket_data(20).total_receipt_tokens
        assert a == 1000 + 1001 * 1000 // 2500
        assert a + b == 3001
        assert_weight_consistent(protocol.controller)

    def test_no_weight_rejected(self, protocol):
        """Nothing can receive rewards when nobody is locked or unwinding."""
        with pytest.raises(NoRewardWeight):
            protocol.deposit_rewards(100)
        assert protocol.receipt_token.total_supply == 0

    def test_zero_amount_is_noop(self, protocol):
        """Depositing nothing changes nothing."""
        protocol.lock("alice", 1000, 10)
        protocol.deposit_rewards(0)
        assert protocol.controller.global_receipt_token == 1000

    def test_requires_finance_manager(self, protocol):
        """The entry point cannot deposit rewards."""
        protocol.lock("alice", 1000, 10)
        with pytest.raises(Unauthorized):
            protocol.controller.deposit_rewards(1, sender=protocol.roles.entry_point)


class TestViews:
    """Tests for read views."""

    def test_metric_aggregation(self, protocol):
        """balance_of and reward_weight sum across buckets."""
        protocol.lock("alice", 1000, 4)
        protocol.lock("alice", 2000, 20)
        assert protocol.controller.balance_of("alice") == 3000
        assert protocol.controller.reward_weight("alice") == 1100 + 3000
        assert protocol.controller.reward_weight_for_duration("alice", 20) == 3000
        assert protocol.controller._sum_buckets("alice", Metric.PRINCIPAL) == 3000

    def test_reward_multiplier(self, protocol):
        """Weighted average multiplier over locked principal."""
        assert protocol.controller.reward_multiplier() == WAD
        protocol.lock("alice", 1000, 1)
        protocol.lock("bob", 1000, 20)
        assert protocol.controller.reward_multiplier() == to_wad("1.25")

    def test_exchange_rate_empty_bucket(self, protocol):
        """An empty bucket prices shares at one."""
        assert protocol.controller.exchange_rate(4) == WAD

    def test_total_balance(self, protocol):
        """Locked plus unwinding principal."""
        shares = protocol.lock("alice", 1000, 10)
        protocol.lock("bob", 500, 4)
        protocol.start_unwinding("alice", shares // 2, 10)
        assert protocol.controller.total_balance() == 1500


class TestReentrancy:
    """Tests for the single permitted reentrant path."""

    def test_ledger_reentry_only_into_create_position(self, protocol, monkeypatch):
        """A ledger callback into any other entry point is rejected and rolled back."""
        shares = protocol.lock("alice", 1000, 10)
        protocol.clock.advance(10)
        start = protocol.start_unwinding("alice", shares, 10)
        protocol.clock.advance_epochs(11)

        def reenter(user, start_timestamp, *, sender):
            protocol.controller.deposit_rewards(1, sender=protocol.unwinding.address)

        monkeypatch.setattr(protocol.unwinding, "withdraw", reenter)
        with pytest.raises(ReentrantCall):
            protocol.withdraw("alice", start)

    def test_outsider_reentry_into_create_position_rejected(self, protocol, monkeypatch):
        """Only the ledger may re-enter create_position."""
        shares = protocol.lock("alice", 1000, 10)
        protocol.clock.advance(10)
        start = protocol.start_unwinding("alice", shares, 10)
        protocol.clock.advance_epochs(11)

        def reenter(user, start_timestamp, *, sender):
            protocol.controller.create_position(0, 10, "alice", sender=protocol.roles.entry_point)

        monkeypatch.setattr(protocol.unwinding, "withdraw", reenter)
        with pytest.raises(ReentrantCall):
            protocol.withdraw("alice", start)


class TestTransact:
    """Tests for grouping several calls into one all-or-nothing unit."""

    def test_failure_undoes_earlier_calls(self, protocol):
        """A failing call rolls back every call made inside the block."""
        with pytest.raises(InvalidBucket):
            with protocol.transact():
                protocol.lock("alice", 1000, 10)
                protocol.lock("alice", 1000, 7)
        assert protocol.controller.balance_of("alice") == 0
        assert protocol.controller.global_receipt_token == 0
        assert protocol.receipt_token.total_supply == 0

    def test_state_components(self, protocol):
        """Snapshots cover the controller, ledger and every token."""
        components = protocol.controller.state_components()
        assert components[:3] == [protocol.controller, protocol.unwinding, protocol.receipt_token]
        assert set(map(id, components[3:])) == set(map(id, protocol.share_tokens.values()))
