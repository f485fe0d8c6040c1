"""Unwinding Ledger - positions that left their bucket and decay toward withdrawal.

Key Concepts:
- A position's reward weight falls linearly from `from_reward_weight` to its
  floor (principal with the multiplier stripped) over exactly E epochs,
  starting at the epoch after the request.
- The aggregate reward weight is kept as one checkpoint per written epoch
  plus two sparse slope maps; reads roll the last checkpoint forward.
- Reward weights are stored in nominal units (divided by the slash index at
  entry). Losses only move the slash index, never the stored positions.
- Rewards accrue as ledger shares and do not compound into reward weight.
"""

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Tuple

from .access import Authorizer, Role
from .epochs import Clock
from .errors import (
    InvalidUnwindingEpochs,
    PoolWiped,
    TransferFailed,
    UserAlreadyUnwinding,
    UserNotUnwinding,
    UserUnwindingInProgress,
    UserUnwindingNotStarted,
)
from .events import log_event
from .fixed_point import WAD, div_wad_down, mul_div_down, mul_wad_down
from .tokens import ReceiptToken

if TYPE_CHECKING:
    from .locking import LockingController

logger = logging.getLogger(__name__)

PositionKey = Tuple[str, int]


@dataclass
class UnwindingPosition:
    """One unwinding request, keyed by (user, start timestamp).

    Weights are nominal (pre-slash). Decay is derived from these fields and
    an epoch index; nothing here changes as epochs pass.
    """
    shares: int
    from_epoch: int
    to_epoch: int
    from_reward_weight: int
    reward_weight_decrease: int  # per epoch
    entry_segment: int = 0  # reward segments of the request epoch closed before entry

    @property
    def target_reward_weight(self) -> int:
        return self.from_reward_weight - self.reward_weight_decrease * (self.to_epoch - self.from_epoch)

    def reward_weight_at(self, epoch_index: int) -> int:
        """Nominal weight during `epoch_index`: flat before `from_epoch`,
        one decrement per epoch from `from_epoch` on, flat again at the floor."""
        elapsed = epoch_index - self.from_epoch + 1
        elapsed = min(max(elapsed, 0), self.to_epoch - self.from_epoch)
        return self.from_reward_weight - self.reward_weight_decrease * elapsed


@dataclass
class GlobalPoint:
    """Aggregate over all unwinding positions as of the end of `epoch`."""
    epoch: int
    total_reward_weight: int = 0
    total_reward_weight_decrease: int = 0  # per-epoch slope currently applied
    reward_shares: int = 0  # reward shares deposited since the last membership change
    # (reward_shares, total_reward_weight) of earlier parts of `epoch`, closed
    # whenever a position entered or left
    reward_segments: Tuple[Tuple[int, int], ...] = ()


def roll_forward(
    point: GlobalPoint,
    target_epoch: int,
    increases: Mapping[int, int],
    decreases: Mapping[int, int],
) -> GlobalPoint:
    """
    Advance an aggregate checkpoint to `target_epoch`.

    Entering epoch e, the slope gains `decreases[e]` (positions starting to
    decay) and loses `increases[e]` (positions that reached their floor),
    then the total weight drops by the slope. Reward shares belong to the
    epoch they were deposited in, so a rolled point starts with none.

    Pure: `point` is never mutated.
    """
    if target_epoch <= point.epoch:
        return point

    weight = point.total_reward_weight
    slope = point.total_reward_weight_decrease
    for e in range(point.epoch + 1, target_epoch + 1):
        slope += decreases.get(e, 0) - increases.get(e, 0)
        weight -= slope

    return GlobalPoint(
        epoch=target_epoch,
        total_reward_weight=weight,
        total_reward_weight_decrease=slope,
        reward_shares=0,
    )


def _close_reward_segment(point: GlobalPoint) -> GlobalPoint:
    """Freeze the open reward shares against the current total weight,
    before a position enters or leaves the aggregate."""
    if point.reward_shares == 0:
        return point
    return replace(
        point,
        reward_shares=0,
        reward_segments=point.reward_segments + ((point.reward_shares, point.total_reward_weight),),
    )


class UnwindingLedger:
    """Owns every unwinding position and the ledger's pooled principal.

    Mutating calls come only from the locking controller
    (LOCKED_TOKEN_MANAGER). The ledger calls back into the controller's
    `create_position` when a position is cancelled and relocked.
    """

    def __init__(
        self,
        clock: Clock,
        authorizer: Authorizer,
        receipt_token: ReceiptToken,
        address: str = "unwinding-ledger",
    ):
        self.clock = clock
        self.authorizer = authorizer
        self.receipt_token = receipt_token
        self.address = address
        self.controller: Optional["LockingController"] = None

        self.total_shares = 0
        self.total_receipt_tokens = 0
        self.slash_index = WAD

        self.global_points: Dict[int, GlobalPoint] = {}
        self.last_point_epoch: Optional[int] = None
        self.reward_weight_increase: Dict[int, int] = {}
        self.reward_weight_decrease: Dict[int, int] = {}
        self.positions: Dict[PositionKey, UnwindingPosition] = {}

    def bind_controller(self, controller: "LockingController") -> None:
        self.controller = controller

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def global_point(self) -> GlobalPoint:
        """Aggregate point rolled forward to the current epoch."""
        current = self.clock.current_epoch()
        if self.last_point_epoch is None:
            return GlobalPoint(epoch=current)
        return roll_forward(
            self.global_points[self.last_point_epoch],
            current,
            self.reward_weight_increase,
            self.reward_weight_decrease,
        )

    def total_reward_weight(self) -> int:
        """Current aggregate reward weight, slash index applied."""
        return mul_wad_down(self.global_point().total_reward_weight, self.slash_index)

    def position(self, user: str, start_timestamp: int) -> Optional[UnwindingPosition]:
        return self.positions.get((user, start_timestamp))

    def reward_weight(self, user: str, start_timestamp: int) -> int:
        """Current reward weight of one position, slash index applied."""
        position = self.positions.get((user, start_timestamp))
        if position is None:
            return 0
        nominal = position.reward_weight_at(self.clock.current_epoch())
        return mul_wad_down(nominal, self.slash_index)

    def balance_of(self, user: str, start_timestamp: int) -> int:
        """Receipt tokens the position would pay out now."""
        position = self.positions.get((user, start_timestamp))
        if position is None:
            return 0
        return self._shares_to_receipt_tokens(self._accrued_shares(position))

    # ------------------------------------------------------------------
    # Mutations (controller only)
    # ------------------------------------------------------------------

    def start_unwinding(
        self,
        user: str,
        receipt_tokens: int,
        unwinding_epochs: int,
        reward_weight: int,
        *,
        sender: str,
    ) -> UnwindingPosition:
        """
        Open a position for `receipt_tokens` already transferred to the ledger.

        Args:
            user: Position owner
            receipt_tokens: Principal leaving the bucket
            unwinding_epochs: Number of decay epochs (the bucket duration)
            reward_weight: Current (slashed-terms) starting weight,
                principal times the bucket multiplier

        Returns:
            The stored position
        """
        self.authorizer.check(Role.LOCKED_TOKEN_MANAGER, sender)
        key = (user, self.clock.timestamp)
        if key in self.positions:
            raise UserAlreadyUnwinding(user, details={"start_timestamp": self.clock.timestamp})
        if unwinding_epochs < 1:
            raise InvalidUnwindingEpochs(f"unwinding epochs must be >= 1, got {unwinding_epochs}")
        if self.slash_index == 0:
            raise PoolWiped("unwinding ledger")

        if self.total_shares == 0 or self.total_receipt_tokens == 0:
            new_shares = receipt_tokens
        else:
            new_shares = mul_div_down(receipt_tokens, self.total_shares, self.total_receipt_tokens)

        # Both rounded down, so from >= target still holds.
        from_reward_weight = div_wad_down(reward_weight, self.slash_index)
        target_reward_weight = div_wad_down(receipt_tokens, self.slash_index)
        decrease = (from_reward_weight - target_reward_weight) // unwinding_epochs
        # Drop the rounding remainder so E decrements land exactly on target.
        from_reward_weight = target_reward_weight + decrease * unwinding_epochs

        # Rewards already deposited this epoch belong to the current holders.
        point = _close_reward_segment(self.global_point())

        from_epoch = self.clock.next_epoch()
        to_epoch = from_epoch + unwinding_epochs
        position = UnwindingPosition(
            shares=new_shares,
            from_epoch=from_epoch,
            to_epoch=to_epoch,
            from_reward_weight=from_reward_weight,
            reward_weight_decrease=decrease,
            entry_segment=len(point.reward_segments),
        )

        point = replace(point, total_reward_weight=point.total_reward_weight + from_reward_weight)
        self._store_point(point)
        self.reward_weight_decrease[from_epoch] = self.reward_weight_decrease.get(from_epoch, 0) + decrease
        self.reward_weight_increase[to_epoch] = self.reward_weight_increase.get(to_epoch, 0) + decrease

        self.positions[key] = position
        self.total_shares += new_shares
        self.total_receipt_tokens += receipt_tokens

        log_event(
            logger, "unwinding_started",
            user=user, start_timestamp=self.clock.timestamp, receipt_tokens=receipt_tokens,
            shares=new_shares, from_epoch=from_epoch, to_epoch=to_epoch,
            from_reward_weight=from_reward_weight, reward_weight_decrease=decrease,
        )
        return position

    def cancel_unwinding(self, user: str, start_timestamp: int, new_unwinding_epochs: int, *, sender: str) -> int:
        """
        Abort a decaying position and relock its balance in a bucket.

        Only valid while the position is decaying (from_epoch <= now <
        to_epoch), and only into a bucket at least as long as the epochs the
        position still had left. Returns the relocked receipt tokens.
        """
        self.authorizer.check(Role.LOCKED_TOKEN_MANAGER, sender)
        key = (user, start_timestamp)
        position = self.positions.get(key)
        if position is None:
            raise UserNotUnwinding(user, details={"start_timestamp": start_timestamp})

        current = self.clock.current_epoch()
        if current < position.from_epoch:
            raise UserUnwindingNotStarted(user, details={"from_epoch": position.from_epoch, "epoch": current})
        if current >= position.to_epoch:
            raise UserNotUnwinding(f"{user}: unwinding complete, withdraw instead")
        remaining_epochs = position.to_epoch - current
        if new_unwinding_epochs < remaining_epochs:
            raise InvalidUnwindingEpochs(
                f"relock for {new_unwinding_epochs} epochs, {remaining_epochs} remaining"
            )

        receipt_tokens = self._close_position(key, position)

        controller = self.controller
        if not self.receipt_token.approve(self.address, controller.address, receipt_tokens):
            raise TransferFailed("approve controller")
        log_event(
            logger, "unwinding_canceled",
            user=user, start_timestamp=start_timestamp, receipt_tokens=receipt_tokens,
            new_unwinding_epochs=new_unwinding_epochs,
        )
        controller.create_position(receipt_tokens, new_unwinding_epochs, user, sender=self.address)
        return receipt_tokens

    def withdraw(self, user: str, start_timestamp: int, *, sender: str) -> int:
        """Pay out a position whose unwinding is complete. Returns the amount paid."""
        self.authorizer.check(Role.LOCKED_TOKEN_MANAGER, sender)
        key = (user, start_timestamp)
        position = self.positions.get(key)
        if position is None:
            raise UserNotUnwinding(user, details={"start_timestamp": start_timestamp})
        current = self.clock.current_epoch()
        if current < position.to_epoch:
            raise UserUnwindingInProgress(user, details={"to_epoch": position.to_epoch, "epoch": current})

        receipt_tokens = self._close_position(key, position)
        if not self.receipt_token.transfer(self.address, user, receipt_tokens):
            raise TransferFailed(f"withdraw {receipt_tokens} to {user}")

        log_event(logger, "withdrawal", user=user, start_timestamp=start_timestamp, receipt_tokens=receipt_tokens)
        return receipt_tokens

    def deposit_rewards(self, amount: int, *, sender: str) -> None:
        """Account for `amount` receipt tokens already transferred in as rewards."""
        self.authorizer.check(Role.LOCKED_TOKEN_MANAGER, sender)
        if amount == 0:
            return
        if self.total_shares == 0 or self.total_receipt_tokens == 0:
            new_shares = amount
        else:
            new_shares = mul_div_down(amount, self.total_shares, self.total_receipt_tokens)

        point = self.global_point()
        self._store_point(replace(point, reward_shares=point.reward_shares + new_shares))
        self.total_shares += new_shares
        self.total_receipt_tokens += amount
        log_event(logger, "unwinding_rewards_deposited", amount=amount, shares=new_shares, epoch=point.epoch)

    def apply_losses(self, amount: int, *, sender: str) -> None:
        """Burn `amount` of pooled principal and discount every position's
        weight through the slash index."""
        self.authorizer.check(Role.LOCKED_TOKEN_MANAGER, sender)
        if amount == 0:
            return
        amount = min(amount, self.total_receipt_tokens)
        self.receipt_token.burn(self.address, amount)
        self.slash_index = mul_div_down(
            self.slash_index, self.total_receipt_tokens - amount, self.total_receipt_tokens
        )
        self.total_receipt_tokens -= amount
        log_event(
            logger, "unwinding_losses_applied",
            amount=amount, slash_index=self.slash_index, total_receipt_tokens=self.total_receipt_tokens,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accrued_shares(self, position: UnwindingPosition) -> int:
        """
        Replay epochs from the request epoch to now and return the ledger
        shares the position owns.

        Each epoch's rewards are split segment by segment, every segment by
        the weights present while it was open. In the request epoch only the
        segments opened after entry count.
        """
        current = self.clock.current_epoch()
        request_epoch = position.from_epoch - 1
        point = self.global_points[request_epoch]
        user_shares = position.shares
        for e in range(request_epoch, current + 1):
            stored = self.global_points.get(e)
            point = stored if stored is not None else roll_forward(
                point, e, self.reward_weight_increase, self.reward_weight_decrease
            )
            segments = point.reward_segments
            if e == request_epoch:
                segments = segments[position.entry_segment:]
            segments += ((point.reward_shares, point.total_reward_weight),)

            weight = position.reward_weight_at(e)
            for reward_shares, total_reward_weight in segments:
                if reward_shares == 0 or total_reward_weight == 0:
                    continue
                user_shares += mul_div_down(reward_shares, weight, total_reward_weight)
        return user_shares

    def _close_position(self, key: PositionKey, position: UnwindingPosition) -> int:
        """Remove a position from every aggregate; return its receipt tokens."""
        current = self.clock.current_epoch()
        point = _close_reward_segment(self.global_point())
        self._store_point(point)
        user_shares = self._accrued_shares(position)
        receipt_tokens = self._shares_to_receipt_tokens(user_shares)

        slope = point.total_reward_weight_decrease
        if position.from_epoch <= current < position.to_epoch:
            slope -= position.reward_weight_decrease
            self.reward_weight_increase[position.to_epoch] -= position.reward_weight_decrease
        self._store_point(replace(
            point,
            total_reward_weight=point.total_reward_weight - position.reward_weight_at(current),
            total_reward_weight_decrease=slope,
        ))

        del self.positions[key]
        self.total_shares -= user_shares
        self.total_receipt_tokens -= receipt_tokens
        return receipt_tokens

    def _shares_to_receipt_tokens(self, shares: int) -> int:
        if self.total_shares == 0:
            return 0
        return mul_div_down(shares, self.total_receipt_tokens, self.total_shares)

    def _store_point(self, point: GlobalPoint) -> None:
        self.global_points[point.epoch] = point
        self.last_point_epoch = point.epoch
