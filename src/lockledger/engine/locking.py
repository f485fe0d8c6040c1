"""Locking Controller - buckets of locked principal and routing of rewards and losses.

Key Concepts:
- One bucket per enabled lock duration (epochs), each with its own share
  token and reward multiplier.
- bucket reward weight = total_receipt_tokens * multiplier
- global_reward_weight is kept incrementally, always as a delta between a
  bucket's recomputed before/after totals so it equals the sum of bucket
  weights exactly.
- Rewards and losses are split between the locked buckets and the
  unwinding ledger: rewards by reward weight, losses by principal.
"""

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

from .access import Authorizer, Role
from .epochs import Clock
from .errors import (
    BucketMustBeLongerDuration,
    ControllerPaused,
    InvalidBucket,
    InvalidMultiplier,
    InvalidPercentage,
    InvalidUnwindingEpochs,
    NoRewardWeight,
    PoolWiped,
    ReentrantCall,
    TransferFailed,
    Unauthorized,
)
from .events import log_event
from .fixed_point import WAD, mul_div_down, mul_div_up, mul_wad_down, to_wad
from .state import restore_snapshot, take_snapshot
from .tokens import ReceiptToken, ShareToken
from .unwinding import UnwindingLedger

logger = logging.getLogger(__name__)

MIN_UNWINDING_EPOCHS = 1
MAX_UNWINDING_EPOCHS = 100
MIN_MULTIPLIER = WAD
MAX_MULTIPLIER = 2 * WAD
DEFAULT_MAX_LOSS_PERCENTAGE = to_wad("0.999999")


class Metric(Enum):
    """What a per-user bucket aggregation sums."""
    PRINCIPAL = "principal"
    REWARD_WEIGHT = "reward_weight"


@dataclass
class BucketData:
    """Pooled principal of every position locked for one duration."""
    share_token: ShareToken
    total_receipt_tokens: int
    multiplier: int

    @property
    def reward_weight(self) -> int:
        return mul_wad_down(self.total_receipt_tokens, self.multiplier)


def transaction(allow_ledger_reentry: bool = False):
    """
    Make a controller entry point atomic and non-reentrant.

    The outermost call snapshots controller, ledger and token state and
    restores it if anything raises. Reentry is rejected, except for the
    unwinding ledger calling back in where `allow_ledger_reentry` is set
    (cancel-and-relock).
    """
    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, *args, sender: str, **kwargs):
            if self._entered:
                if not (allow_ledger_reentry and sender == self.unwinding.address):
                    raise ReentrantCall(f"{method.__name__} from {sender}")
                return method(self, *args, sender=sender, **kwargs)

            snapshot = take_snapshot(self.state_components(), shared=(self.clock, self.authorizer))
            self._entered = True
            try:
                return method(self, *args, sender=sender, **kwargs)
            except BaseException:
                restore_snapshot(snapshot)
                raise
            finally:
                self._entered = False
        return wrapper
    return decorator


class LockingController:
    """Owns the buckets and the global principal / reward weight aggregates."""

    def __init__(
        self,
        clock: Clock,
        authorizer: Authorizer,
        receipt_token: ReceiptToken,
        unwinding: UnwindingLedger,
        address: str = "locking-controller",
        max_loss_percentage: int = DEFAULT_MAX_LOSS_PERCENTAGE,
    ):
        self.clock = clock
        self.authorizer = authorizer
        self.receipt_token = receipt_token
        self.unwinding = unwinding
        self.address = address
        self.max_loss_percentage = max_loss_percentage

        self.buckets: Dict[int, BucketData] = {}
        self.enabled: List[int] = []
        self.global_receipt_token = 0
        self.global_reward_weight = 0
        self.paused = False
        self._entered = False

    def state_components(self) -> list:
        share_tokens = [bucket.share_token for bucket in self.buckets.values()]
        return [self, self.unwinding, self.receipt_token, *share_tokens]

    def _require_active(self) -> None:
        if self.paused:
            raise ControllerPaused()

    def _bucket(self, duration: int) -> BucketData:
        bucket = self.buckets.get(duration)
        if bucket is None:
            raise InvalidBucket(f"no bucket for {duration} epochs")
        return bucket

    # ------------------------------------------------------------------
    # Governor
    # ------------------------------------------------------------------

    @transaction()
    def enable_bucket(self, duration: int, share_token: ShareToken, multiplier: int, *, sender: str) -> None:
        self._require_active()
        self.authorizer.check(Role.GOVERNOR, sender)
        if duration in self.buckets:
            raise InvalidBucket(f"bucket {duration} already enabled")
        if not MIN_UNWINDING_EPOCHS <= duration <= MAX_UNWINDING_EPOCHS:
            raise InvalidUnwindingEpochs(f"duration {duration} outside [{MIN_UNWINDING_EPOCHS}, {MAX_UNWINDING_EPOCHS}]")
        if not MIN_MULTIPLIER <= multiplier <= MAX_MULTIPLIER:
            raise InvalidMultiplier(f"multiplier {multiplier} outside [1.0, 2.0]")

        self.buckets[duration] = BucketData(share_token=share_token, total_receipt_tokens=0, multiplier=multiplier)
        self.enabled.append(duration)
        log_event(logger, "bucket_enabled", duration=duration, share_token=share_token.name, multiplier=multiplier)

    @transaction()
    def set_bucket_multiplier(self, duration: int, multiplier: int, *, sender: str) -> None:
        self._require_active()
        self.authorizer.check(Role.GOVERNOR, sender)
        bucket = self._bucket(duration)
        if not MIN_MULTIPLIER <= multiplier <= MAX_MULTIPLIER:
            raise InvalidMultiplier(f"multiplier {multiplier} outside [1.0, 2.0]")

        before = bucket.reward_weight
        bucket.multiplier = multiplier
        self.global_reward_weight = self.global_reward_weight - before + bucket.reward_weight
        log_event(logger, "bucket_multiplier_updated", duration=duration, multiplier=multiplier)

    @transaction()
    def set_max_loss_percentage(self, percentage: int, *, sender: str) -> None:
        self._require_active()
        self.authorizer.check(Role.GOVERNOR, sender)
        if not 0 < percentage <= WAD:
            raise InvalidPercentage(f"max loss percentage {percentage} outside (0, 1]")
        self.max_loss_percentage = percentage
        log_event(logger, "max_loss_percentage_updated", max_loss_percentage=percentage)

    @transaction()
    def pause(self, *, sender: str) -> None:
        self.authorizer.check(Role.GOVERNOR, sender)
        self._pause("governor")

    @transaction()
    def unpause(self, *, sender: str) -> None:
        self.authorizer.check(Role.GOVERNOR, sender)
        self.paused = False
        log_event(logger, "unpaused")

    def _pause(self, reason: str) -> None:
        self.paused = True
        log_event(logger, "paused", reason=reason)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    @transaction(allow_ledger_reentry=True)
    def create_position(self, amount: int, duration: int, recipient: str, *, sender: str) -> int:
        """
        Lock `amount` receipt tokens from `sender` into the `duration` bucket.

        Callable by the entry point and by the unwinding ledger relocking a
        cancelled position. Returns the bucket shares minted to `recipient`.
        """
        self._require_active()
        if sender != self.unwinding.address and not self.authorizer.has(Role.ENTRY_POINT, sender):
            raise Unauthorized(f"{sender} lacks {Role.ENTRY_POINT.value}")
        bucket = self._bucket(duration)

        if not self.receipt_token.transfer_from(self.address, sender, self.address, amount):
            raise TransferFailed(f"pull {amount} from {sender}")

        new_shares = self._mint_bucket_shares(bucket, amount, recipient)
        self.global_receipt_token += amount

        log_event(
            logger, "position_created",
            recipient=recipient, duration=duration, amount=amount, shares=new_shares, sender=sender,
        )
        return new_shares

    @transaction()
    def start_unwinding(self, shares: int, duration: int, recipient: str, *, sender: str) -> int:
        """
        Burn `recipient`'s bucket shares and hand their principal to the
        unwinding ledger at the bucket's boosted reward weight.

        Returns the principal moved to the ledger.
        """
        self._require_active()
        self.authorizer.check(Role.ENTRY_POINT, sender)
        bucket = self._bucket(duration)

        user_receipt_tokens = self._burn_bucket_shares(bucket, shares, recipient)
        self.global_receipt_token -= user_receipt_tokens

        reward_weight = mul_wad_down(user_receipt_tokens, bucket.multiplier)
        if not self.receipt_token.transfer(self.address, self.unwinding.address, user_receipt_tokens):
            raise TransferFailed(f"move {user_receipt_tokens} to unwinding ledger")
        self.unwinding.start_unwinding(recipient, user_receipt_tokens, duration, reward_weight, sender=self.address)

        log_event(
            logger, "unwinding_requested",
            recipient=recipient, duration=duration, shares=shares, receipt_tokens=user_receipt_tokens,
            reward_weight=reward_weight,
        )
        return user_receipt_tokens

    @transaction()
    def increase_unwinding_epochs(
        self, shares: int, old_duration: int, new_duration: int, recipient: str, *, sender: str
    ) -> int:
        """Move a locked position into a strictly longer bucket. Returns the new shares."""
        self._require_active()
        self.authorizer.check(Role.ENTRY_POINT, sender)
        if new_duration <= old_duration:
            raise BucketMustBeLongerDuration(f"{new_duration} <= {old_duration}")
        old_bucket = self._bucket(old_duration)
        new_bucket = self._bucket(new_duration)

        receipt_tokens = self._burn_bucket_shares(old_bucket, shares, recipient)
        new_shares = self._mint_bucket_shares(new_bucket, receipt_tokens, recipient)

        log_event(
            logger, "unwinding_epochs_increased",
            recipient=recipient, old_duration=old_duration, new_duration=new_duration,
            shares=shares, new_shares=new_shares, receipt_tokens=receipt_tokens,
        )
        return new_shares

    @transaction()
    def cancel_unwinding(self, user: str, start_timestamp: int, new_duration: int, *, sender: str) -> int:
        self._require_active()
        self.authorizer.check(Role.ENTRY_POINT, sender)
        return self.unwinding.cancel_unwinding(user, start_timestamp, new_duration, sender=self.address)

    @transaction()
    def withdraw(self, user: str, start_timestamp: int, *, sender: str) -> int:
        self._require_active()
        self.authorizer.check(Role.ENTRY_POINT, sender)
        return self.unwinding.withdraw(user, start_timestamp, sender=self.address)

    # ------------------------------------------------------------------
    # Finance
    # ------------------------------------------------------------------

    @transaction()
    def deposit_rewards(self, amount: int, *, sender: str) -> None:
        """
        Pull `amount` receipt tokens from `sender` and distribute them.

        The unwinding ledger gets amount * unwinding_weight / total_weight;
        the remainder grows each bucket's principal in proportion to its
        reward weight, which compounds locked positions.
        """
        self._require_active()
        self.authorizer.check(Role.FINANCE_MANAGER, sender)
        if amount == 0:
            return

        unwinding_reward_weight = self.unwinding.total_reward_weight()
        total_reward_weight = self.global_reward_weight + unwinding_reward_weight
        if total_reward_weight == 0:
            raise NoRewardWeight(f"cannot distribute {amount}")

        if not self.receipt_token.transfer_from(self.address, sender, self.address, amount):
            raise TransferFailed(f"pull {amount} rewards from {sender}")

        unwinding_rewards = mul_div_down(amount, unwinding_reward_weight, total_reward_weight)
        if unwinding_rewards > 0:
            if not self.receipt_token.transfer(self.address, self.unwinding.address, unwinding_rewards):
                raise TransferFailed(f"move {unwinding_rewards} rewards to unwinding ledger")
            self.unwinding.deposit_rewards(unwinding_rewards, sender=self.address)

        locked_rewards = amount - unwinding_rewards
        if locked_rewards > 0:
            self._distribute_locked_rewards(locked_rewards)

        log_event(
            logger, "rewards_deposited",
            amount=amount, unwinding_rewards=unwinding_rewards, locked_rewards=locked_rewards,
        )

    def _distribute_locked_rewards(self, amount: int) -> None:
        weights = {duration: self.buckets[duration].reward_weight for duration in self.enabled}
        total_weight = sum(weights.values())
        recipients = [duration for duration in self.enabled if weights[duration] > 0]

        distributed = 0
        new_global_weight = self.global_reward_weight
        for i, duration in enumerate(recipients):
            bucket = self.buckets[duration]
            if i == len(recipients) - 1:
                # rounding dust lands in the last bucket
                allocation = amount - distributed
            else:
                allocation = mul_div_down(amount, weights[duration], total_weight)
            distributed += allocation
            bucket.total_receipt_tokens += allocation
            new_global_weight += bucket.reward_weight - weights[duration]

        self.global_receipt_token += amount
        self.global_reward_weight = new_global_weight

    @transaction()
    def apply_losses(self, amount: int, *, sender: str) -> None:
        """
        Burn `amount` of principal, split pro-rata between the unwinding
        ledger and the buckets.

        A loss at or above max_loss_percentage of total_balance zeroes every
        pool and pauses the controller instead of leaving near-zero share
        prices behind. Wiping any pool that still has claimants also pauses.
        """
        self._require_active()
        self.authorizer.check(Role.FINANCE_MANAGER, sender)
        if amount == 0:
            return

        unwinding_receipt_tokens = self.unwinding.total_receipt_tokens
        total_balance = self.global_receipt_token + unwinding_receipt_tokens
        if total_balance == 0:
            log_event(logger, "losses_ignored", amount=amount, reason="empty")
            return

        maximum_allowed_loss = mul_wad_down(total_balance, self.max_loss_percentage)
        if amount >= maximum_allowed_loss:
            self._apply_catastrophic_loss(amount, total_balance)
            return

        # Rounded up: losses go against the users.
        unwinding_loss = min(mul_div_up(amount, unwinding_receipt_tokens, total_balance), unwinding_receipt_tokens)
        if unwinding_loss > 0:
            self.unwinding.apply_losses(unwinding_loss, sender=self.address)

        locked_loss = amount - unwinding_loss
        wiped = self._apply_locked_losses(locked_loss)

        log_event(
            logger, "losses_applied",
            amount=amount, unwinding_loss=unwinding_loss, locked_loss=locked_loss,
            slash_index=self.unwinding.slash_index,
        )
        if unwinding_loss > 0 and self.unwinding.total_receipt_tokens == 0:
            self._pause("unwinding pool wiped")
        elif wiped:
            self._pause(f"buckets wiped: {wiped}")

    def _apply_locked_losses(self, amount: int) -> List[int]:
        """Deduct `amount` across buckets pro-rata to principal; return the
        durations of buckets left empty while shares remain outstanding."""
        if amount == 0:
            return []

        global_receipt_token = self.global_receipt_token
        remaining = amount
        new_global_weight = self.global_reward_weight
        for duration in self.enabled:
            bucket = self.buckets[duration]
            if bucket.total_receipt_tokens == 0:
                continue
            loss = mul_div_up(amount, bucket.total_receipt_tokens, global_receipt_token)
            loss = min(loss, bucket.total_receipt_tokens, remaining)
            before = bucket.reward_weight
            bucket.total_receipt_tokens -= loss
            new_global_weight += bucket.reward_weight - before
            remaining -= loss

        deducted = amount - remaining
        self.receipt_token.burn(self.address, deducted)
        self.global_receipt_token -= deducted
        self.global_reward_weight = new_global_weight

        return [
            duration for duration in self.enabled
            if self.buckets[duration].total_receipt_tokens == 0
            and self.buckets[duration].share_token.total_supply > 0
        ]

    def _apply_catastrophic_loss(self, amount: int, total_balance: int) -> None:
        unwinding_receipt_tokens = self.unwinding.total_receipt_tokens
        if unwinding_receipt_tokens > 0:
            self.unwinding.apply_losses(unwinding_receipt_tokens, sender=self.address)

        self.receipt_token.burn(self.address, self.global_receipt_token)
        for bucket in self.buckets.values():
            bucket.total_receipt_tokens = 0
        self.global_receipt_token = 0
        self.global_reward_weight = 0

        log_event(
            logger, "catastrophic_loss",
            amount=amount, total_balance=total_balance, max_loss_percentage=self.max_loss_percentage,
        )
        self._pause("catastrophic loss")

    # ------------------------------------------------------------------
    # Bucket share accounting
    # ------------------------------------------------------------------

    def _mint_bucket_shares(self, bucket: BucketData, amount: int, recipient: str) -> int:
        total_shares = bucket.share_token.total_supply
        if total_shares == 0:
            new_shares = amount
        elif bucket.total_receipt_tokens == 0:
            raise PoolWiped(f"bucket {bucket.share_token.duration}", details={"shares": total_shares})
        else:
            new_shares = mul_div_down(amount, total_shares, bucket.total_receipt_tokens)
        bucket.share_token.mint(self.address, recipient, new_shares)

        before = bucket.reward_weight
        bucket.total_receipt_tokens += amount
        self.global_reward_weight += bucket.reward_weight - before
        return new_shares

    def _burn_bucket_shares(self, bucket: BucketData, shares: int, owner: str) -> int:
        total_shares = bucket.share_token.total_supply
        bucket.share_token.burn_from(self.address, owner, shares)
        if total_shares == 0:
            return 0
        receipt_tokens = mul_div_down(shares, bucket.total_receipt_tokens, total_shares)

        before = bucket.reward_weight
        bucket.total_receipt_tokens -= receipt_tokens
        self.global_reward_weight += bucket.reward_weight - before
        return receipt_tokens

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def enabled_buckets(self) -> List[int]:
        return list(self.enabled)

    def bucket_data(self, duration: int) -> BucketData:
        return self._bucket(duration)

    def shares(self, user: str, duration: int) -> int:
        return self._bucket(duration).share_token.balance_of(user)

    def exchange_rate(self, duration: int) -> int:
        """Receipt tokens per bucket share, WAD."""
        bucket = self._bucket(duration)
        total_shares = bucket.share_token.total_supply
        if total_shares == 0:
            return WAD
        return mul_div_down(bucket.total_receipt_tokens, WAD, total_shares)

    def total_balance(self) -> int:
        return self.global_receipt_token + self.unwinding.total_receipt_tokens

    def reward_multiplier(self) -> int:
        """Principal-weighted average multiplier over locked buckets, WAD."""
        if self.global_receipt_token == 0:
            return WAD
        return mul_div_down(self.global_reward_weight, WAD, self.global_receipt_token)

    def balance_of(self, user: str) -> int:
        return self._sum_buckets(user, Metric.PRINCIPAL)

    def reward_weight(self, user: str) -> int:
        return self._sum_buckets(user, Metric.REWARD_WEIGHT)

    def balance_for_duration(self, user: str, duration: int) -> int:
        return self._user_bucket_value(user, duration, Metric.PRINCIPAL)

    def reward_weight_for_duration(self, user: str, duration: int) -> int:
        return self._user_bucket_value(user, duration, Metric.REWARD_WEIGHT)

    def unwinding_balance_of(self, user: str, start_timestamp: int) -> int:
        return self.unwinding.balance_of(user, start_timestamp)

    def _sum_buckets(self, user: str, metric: Metric) -> int:
        return sum(self._user_bucket_value(user, duration, metric) for duration in self.enabled)

    def _user_bucket_value(self, user: str, duration: int, metric: Metric) -> int:
        bucket = self._bucket(duration)
        total_shares = bucket.share_token.total_supply
        if total_shares == 0:
            return 0
        principal = mul_div_down(bucket.share_token.balance_of(user), bucket.total_receipt_tokens, total_shares)
        if metric is Metric.PRINCIPAL:
            return principal
        if metric is Metric.REWARD_WEIGHT:
            return mul_wad_down(principal, bucket.multiplier)
        raise ValueError(f"unknown metric {metric}")
