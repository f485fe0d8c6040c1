"""Unit tests for losses, the slash index and catastrophic pause.

These tests verify:
- Pro-rata loss split between buckets and the unwinding ledger
- Slash index scaling of unwinding reward weight
- Catastrophic losses zero every pool and pause
- Pausing when a pool with outstanding claims is wiped
"""

import pytest

from lockledger.engine.errors import ControllerPaused, PoolWiped, Unauthorized
from lockledger.engine.fixed_point import WAD


@pytest.fixture
def split_protocol(protocol):
    """alice locked 1000 in bucket 10; bob locked 1000 in bucket 10 and unwound it."""
    protocol.lock("alice", 1000, 10)
    bob_shares = protocol.lock("bob", 1000, 10)
    protocol.clock.advance(10)
    protocol.bob_start = protocol.start_unwinding("bob", bob_shares, 10)
    return protocol


class TestLosses:
    """Tests for ordinary losses."""

    def test_half_loss(self, split_protocol):
        """Losing half the balance halves both sides and the slash index."""
        p = split_protocol
        p.apply_losses(1000)

        assert p.unwinding.slash_index == WAD // 2
        assert p.unwinding.total_receipt_tokens == 500
        assert p.unwinding.total_reward_weight() == 600
        assert p.controller.global_receipt_token == 500
        assert p.controller.global_reward_weight == 600
        assert p.controller.balance_of("alice") == 500
        assert p.unwinding.balance_of("bob", p.bob_start) == 500
        assert not p.controller.paused

    def test_loss_rounded_against_users(self, protocol):
        """Bucket losses round up, capped by what remains."""
        protocol.lock("alice", 1000, 4)
        protocol.lock("bob", 3000, 20)
        protocol.apply_losses(401)
        a = protocol.controller.bucket_data(4).total_receipt_tokens
        b = protocol.controller.bucket_data(20).total_receipt_tokens
        assert a == 1000 - 101
        assert a + b == 4000 - 401
        assert protocol.receipt_token.balance_of(protocol.controller.address) == a + b

    def test_entry_after_slash_uses_real_weight(self, split_protocol):
        """A position opened after a slash carries its full current weight."""
        p = split_protocol
        p.apply_losses(1000)
        shares = p.lock("carol", 1000, 10)
        p.clock.advance(10)
        start = p.start_unwinding("carol", shares, 10)
        assert p.unwinding.reward_weight("carol", start) == 1200
        assert p.unwinding.total_reward_weight() == 600 + 1200

    def test_rewards_after_loss(self, split_protocol):
        """Rewards split by post-slash weight."""
        p = split_protocol
        p.apply_losses(1000)
        p.deposit_rewards(120)
        assert p.controller.balance_of("alice") == 560
        assert p.unwinding.balance_of("bob", p.bob_start) == 560

    def test_empty_protocol_ignores_loss(self, protocol):
        """Nothing to slash, nothing happens."""
        protocol.apply_losses(100)
        assert not protocol.controller.paused

    def test_requires_finance_manager(self, split_protocol):
        """Only the finance manager reports losses."""
        with pytest.raises(Unauthorized):
            split_protocol.controller.apply_losses(1, sender=split_protocol.roles.governor)


class TestPause:
    """Tests for the paths that pause the controller."""

    def test_catastrophic_loss(self, split_protocol):
        """A loss at the max loss threshold wipes everything and pauses."""
        p = split_protocol
        p.apply_losses(1999)

        assert p.controller.paused
        assert p.controller.global_receipt_token == 0
        assert p.controller.global_reward_weight == 0
        assert p.unwinding.total_receipt_tokens == 0
        assert p.unwinding.slash_index == 0
        assert p.unwinding.total_reward_weight() == 0
        assert p.receipt_token.total_supply == 0

    def test_paused_rejects_entry_points(self, split_protocol):
        """Every mutating entry point fails while paused."""
        p = split_protocol
        p.apply_losses(1999)
        with pytest.raises(ControllerPaused):
            p.lock("carol", 10, 10)
        with pytest.raises(ControllerPaused):
            p.withdraw("bob", p.bob_start)
        with pytest.raises(ControllerPaused):
            p.apply_losses(1)
        with pytest.raises(ControllerPaused):
            p.set_max_loss_percentage(WAD)
        assert p.receipt_token.total_supply == 0

    def test_just_below_threshold(self, split_protocol):
        """One below the threshold is an ordinary loss."""
        p = split_protocol
        p.apply_losses(1998)
        assert not p.controller.paused
        assert p.controller.total_balance() == 2

    def test_lower_threshold(self, split_protocol):
        """max_loss_percentage moves the catastrophic boundary."""
        p = split_protocol
        p.set_max_loss_percentage(WAD // 2)
        p.apply_losses(1000)
        assert p.controller.paused
        assert p.controller.total_balance() == 0

    def test_unwinding_pool_wiped(self, protocol):
        """Rounding that empties the ledger pauses."""
        protocol.lock("alice", 1_000_000, 10)
        bob_shares = protocol.lock("bob", 1, 4)
        protocol.clock.advance(10)
        protocol.start_unwinding("bob", bob_shares, 4)

        protocol.apply_losses(10)
        assert protocol.unwinding.total_receipt_tokens == 0
        assert protocol.controller.global_receipt_token == 1_000_000 - 9
        assert protocol.controller.paused

    def test_bucket_wiped(self, protocol):
        """A bucket emptied while shares remain pauses."""
        protocol.lock("alice", 1_000_000, 10)
        protocol.lock("bob", 1, 4)
        protocol.apply_losses(10)
        assert protocol.controller.bucket_data(4).total_receipt_tokens == 0
        assert protocol.controller.shares("bob", 4) == 1
        assert protocol.controller.paused

    def test_governor_pause_and_unpause(self, split_protocol):
        """Governor can pause and resume."""
        p = split_protocol
        p.controller.pause(sender=p.roles.governor)
        with pytest.raises(ControllerPaused):
            p.deposit_rewards(10)
        p.controller.unpause(sender=p.roles.governor)
        p.deposit_rewards(10)
        assert p.controller.total_balance() == 2010

    def test_pause_requires_governor(self, protocol):
        """Only the governor pauses."""
        with pytest.raises(Unauthorized):
            protocol.controller.pause(sender=protocol.roles.entry_point)

    def test_wiped_bucket_rejects_new_principal(self, protocol):
        """After unpausing, a bucket left with shares but no principal refuses deposits."""
        protocol.lock("alice", 1000, 10)
        protocol.apply_losses(1000)
        protocol.controller.unpause(sender=protocol.roles.governor)
        with pytest.raises(PoolWiped):
            protocol.lock("bob", 10, 10)
        assert protocol.receipt_token.total_supply == 0
        assert protocol.controller.shares("alice", 10) == 1000

    def test_wiped_ledger_rejects_new_positions(self, split_protocol):
        """After unpausing, a ledger with a zero slash index refuses new positions."""
        p = split_protocol
        p.apply_losses(1999)
        p.controller.unpause(sender=p.roles.governor)
        with pytest.raises(PoolWiped):
            p.start_unwinding("alice", 1000, 10)
        assert p.controller.shares("alice", 10) == 1000
