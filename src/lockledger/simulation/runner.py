"""Simulation runner - drive a protocol instance through random epochs.

Key Features:
- Seeded numpy generator: same config and seed, same history
- Random depositors lock, unwind, extend, cancel and withdraw
- Yield deposited every epoch, occasional losses
- Invariants checked after every epoch
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..config.schema import Config
from ..engine.errors import ProtocolError
from ..engine.fixed_point import from_wad
from ..engine.protocol import Protocol
from ..validation.invariants import ValidationWarning, check_invariants

logger = logging.getLogger(__name__)

ACTIONS = ("lock", "unwind", "increase", "cancel", "withdraw")


@dataclass
class ProtocolState:
    """Protocol aggregates at the end of an epoch."""
    epoch: int
    timestamp: int
    global_receipt_token: int
    global_reward_weight: int
    unwinding_receipt_tokens: int
    unwinding_reward_weight: int
    slash_index: int
    reward_multiplier: int
    open_positions: int
    paused: bool

    @property
    def total_balance(self) -> int:
        return self.global_receipt_token + self.unwinding_receipt_tokens

    @classmethod
    def capture(cls, protocol: Protocol) -> "ProtocolState":
        controller = protocol.controller
        unwinding = protocol.unwinding
        return cls(
            epoch=protocol.clock.current_epoch(),
            timestamp=protocol.clock.timestamp,
            global_receipt_token=controller.global_receipt_token,
            global_reward_weight=controller.global_reward_weight,
            unwinding_receipt_tokens=unwinding.total_receipt_tokens,
            unwinding_reward_weight=unwinding.total_reward_weight(),
            slash_index=unwinding.slash_index,
            reward_multiplier=controller.reward_multiplier(),
            open_positions=len(unwinding.positions),
            paused=controller.paused,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'epoch': self.epoch,
            'timestamp': self.timestamp,
            'global_receipt_token': self.global_receipt_token,
            'global_reward_weight': self.global_reward_weight,
            'unwinding_receipt_tokens': self.unwinding_receipt_tokens,
            'unwinding_reward_weight': self.unwinding_reward_weight,
            'total_balance': self.total_balance,
            'slash_index': from_wad(self.slash_index),
            'reward_multiplier': from_wad(self.reward_multiplier),
            'open_positions': self.open_positions,
            'paused': self.paused,
        }


@dataclass
class SimulationResult:
    """Complete simulation result."""
    config: Config
    seed: int
    states: List[ProtocolState]
    action_counts: Dict[str, int]
    rejected_actions: Dict[str, int]
    violations: List[ValidationWarning] = field(default_factory=list)
    paused_at_epoch: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not any(w.severity == "error" for w in self.violations)


class SimulationRunner:
    """Run one seeded scenario against a fresh protocol instance."""

    def __init__(self, config: Config):
        """
        Initialize simulation runner.

        Args:
            config: Protocol and simulation configuration
        """
        self.config = config
        self.sim = config.simulation
        self.unit = 10 ** self.sim.token_decimals
        self.durations = [bucket.duration for bucket in config.buckets]
        self.users = [f"user-{i}" for i in range(self.sim.users)]

    def run(self, random_seed: Optional[int] = None) -> SimulationResult:
        """
        Run the scenario.

        Args:
            random_seed: Overrides config.simulation.random_seed

        Returns:
            SimulationResult with one state per simulated epoch
        """
        seed = self.sim.random_seed if random_seed is None else random_seed
        rng = np.random.default_rng(seed)
        protocol = Protocol(self.config)

        self._unwinding: List[Tuple[str, int]] = []
        action_counts = {action: 0 for action in ACTIONS}
        rejected = {action: 0 for action in ACTIONS}
        states = [ProtocolState.capture(protocol)]
        violations: List[ValidationWarning] = []
        paused_at = None

        probabilities = np.array([
            self.sim.lock_probability,
            self.sim.unwind_probability,
            self.sim.increase_probability,
            self.sim.cancel_probability,
            self.sim.withdraw_probability,
        ])
        idle = max(0.0, 1.0 - probabilities.sum())
        choices = list(ACTIONS) + ["idle"]
        weights = np.append(probabilities, idle)
        weights = weights / weights.sum()
        step_seconds = max(1, protocol.clock.epoch_length // (self.sim.actions_per_epoch + 1))

        for _ in range(self.sim.epochs):
            protocol.clock.advance_epochs(1)

            for _ in range(self.sim.actions_per_epoch):
                protocol.clock.advance(int(rng.integers(1, step_seconds + 1)))
                action = str(rng.choice(choices, p=weights))
                if action == "idle":
                    continue
                action_counts[action] += 1
                try:
                    self._act(protocol, rng, action)
                except ProtocolError as exc:
                    rejected[action] += 1
                    logger.debug("rejected %s: %s", action, exc)

            for step in (self._deposit_yield, self._maybe_apply_loss):
                try:
                    step(protocol, rng)
                except ProtocolError as exc:
                    logger.warning(
                        "%s rejected at epoch %d: %s", step.__name__, protocol.clock.current_epoch(), exc
                    )

            states.append(ProtocolState.capture(protocol))
            violations.extend(check_invariants(protocol))

            if protocol.controller.paused:
                paused_at = protocol.clock.current_epoch()
                logger.warning("controller paused at epoch %d, stopping", paused_at)
                break

        return SimulationResult(
            config=self.config,
            seed=seed,
            states=states,
            action_counts=action_counts,
            rejected_actions=rejected,
            violations=violations,
            paused_at_epoch=paused_at,
        )

    def _act(self, protocol: Protocol, rng: np.random.Generator, action: str) -> None:
        user = self.users[int(rng.integers(len(self.users)))]
        controller = protocol.controller

        if action == "lock":
            amount = int(rng.uniform(self.sim.deposit_min, self.sim.deposit_max) * self.unit)
            duration = self.durations[int(rng.integers(len(self.durations)))]
            protocol.lock(user, amount, duration)

        elif action == "unwind":
            held = [d for d in self.durations if controller.shares(user, d) > 0]
            if not held:
                return
            duration = held[int(rng.integers(len(held)))]
            shares = controller.shares(user, duration)
            # partial exits half the time
            if rng.random() < 0.5:
                shares = max(1, int(shares * rng.uniform(0.1, 0.9)))
            start = protocol.start_unwinding(user, shares, duration)
            self._unwinding.append((user, start))

        elif action == "increase":
            held = [d for d in self.durations[:-1] if controller.shares(user, d) > 0]
            if not held:
                return
            old = held[int(rng.integers(len(held)))]
            longer = [d for d in self.durations if d > old]
            new = longer[int(rng.integers(len(longer)))]
            protocol.increase_unwinding_epochs(user, controller.shares(user, old), old, new)

        elif action in ("cancel", "withdraw"):
            if not self._unwinding:
                return
            index = int(rng.integers(len(self._unwinding)))
            owner, start = self._unwinding[index]
            if action == "withdraw":
                protocol.withdraw(owner, start)
            else:
                position = protocol.unwinding.position(owner, start)
                remaining = position.to_epoch - protocol.clock.current_epoch()
                eligible = [d for d in self.durations if d >= remaining]
                if not eligible:
                    return
                protocol.cancel_unwinding(owner, start, eligible[0])
            self._unwinding.pop(index)

    def _deposit_yield(self, protocol: Protocol, rng: np.random.Generator) -> None:
        total_balance = protocol.controller.total_balance()
        if total_balance == 0 or self.sim.reward_rate_per_epoch == 0:
            return
        rate = self.sim.reward_rate_per_epoch * rng.lognormal(mean=0.0, sigma=0.5)
        amount = int(total_balance * rate)
        if amount > 0:
            protocol.deposit_rewards(amount)

    def _maybe_apply_loss(self, protocol: Protocol, rng: np.random.Generator) -> None:
        if rng.random() >= self.sim.loss_probability:
            return
        total_balance = protocol.controller.total_balance()
        amount = int(total_balance * rng.uniform(0.0, self.sim.loss_fraction_max))
        if amount > 0:
            protocol.apply_losses(amount)
