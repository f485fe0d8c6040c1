"""Pydantic schema for configuration validation."""

import hashlib
import json
from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator, model_validator


class ProtocolParams(BaseModel):
    """Epoch discretization and loss containment."""
    epoch_length_seconds: int = Field(gt=0, default=604800, description="Epoch length (one week)")
    genesis_timestamp: int = Field(ge=0, default=0, description="Timestamp at which epoch 0 starts")
    start_timestamp: int = Field(ge=0, default=0, description="Clock value at construction")
    max_loss_percentage: float = Field(
        gt=0, le=1, default=0.999999,
        description="Share of total balance at or above which a loss is catastrophic"
    )

    @model_validator(mode='after')
    def validate_start(self):
        """The clock cannot start before genesis."""
        if self.start_timestamp < self.genesis_timestamp:
            raise ValueError("start_timestamp must not precede genesis_timestamp")
        return self


class BucketConfig(BaseModel):
    """One lock duration and its reward multiplier."""
    duration: int = Field(ge=1, le=100, description="Lock duration in epochs")
    multiplier: float = Field(ge=1.0, le=2.0, description="Reward weight multiplier")


class Roles(BaseModel):
    """Account names holding each capability."""
    entry_point: str = Field(default="gateway", description="Entry point / router")
    finance_manager: str = Field(default="yield-sharing", description="Deposits rewards, applies losses")
    governor: str = Field(default="governor", description="Bucket and loss parameters, pause")
    receipt_minter: str = Field(default="mint-controller", description="Mints receipt tokens")


class Simulation(BaseModel):
    """Random scenario parameters."""
    epochs: int = Field(gt=0, default=52, description="Number of epochs to simulate")
    users: int = Field(gt=0, default=8, description="Number of simulated depositors")
    actions_per_epoch: int = Field(gt=0, default=4, description="User actions per epoch")
    random_seed: int = Field(default=42, description="Random seed for reproducibility")
    monte_carlo_runs: int = Field(gt=0, default=10, description="Number of seeds per Monte Carlo run")
    token_decimals: int = Field(ge=0, le=18, default=18, description="Receipt token decimals")
    deposit_min: float = Field(gt=0, default=100.0, description="Smallest deposit, whole tokens")
    deposit_max: float = Field(gt=0, default=100_000.0, description="Largest deposit, whole tokens")
    lock_probability: float = Field(ge=0, le=1, default=0.45)
    unwind_probability: float = Field(ge=0, le=1, default=0.25)
    increase_probability: float = Field(ge=0, le=1, default=0.1)
    cancel_probability: float = Field(ge=0, le=1, default=0.1)
    withdraw_probability: float = Field(ge=0, le=1, default=0.1)
    reward_rate_per_epoch: float = Field(
        ge=0, le=1, default=0.001,
        description="Mean yield per epoch as a fraction of total balance"
    )
    loss_probability: float = Field(ge=0, le=1, default=0.02, description="Chance of a loss event per epoch")
    loss_fraction_max: float = Field(ge=0, le=1, default=0.05, description="Largest loss, fraction of total balance")

    @field_validator('deposit_max')
    @classmethod
    def validate_deposit_range(cls, v, info):
        """Ensure min <= max deposit."""
        if 'deposit_min' in info.data and v < info.data['deposit_min']:
            raise ValueError("deposit_max must be at least deposit_min")
        return v

    @model_validator(mode='after')
    def validate_action_probabilities(self):
        """Ensure user action probabilities sum to <= 1.0."""
        total = (
            self.lock_probability +
            self.unwind_probability +
            self.increase_probability +
            self.cancel_probability +
            self.withdraw_probability
        )
        if total > 1.0 + 1e-9:
            raise ValueError(f"Action probabilities should sum to <= 1.0, got {total:.3f}")
        return self


class Config(BaseModel):
    """Complete configuration for a protocol instance and its simulation."""
    protocol: ProtocolParams = Field(default_factory=ProtocolParams)
    roles: Roles = Field(default_factory=Roles)
    buckets: List[BucketConfig]
    simulation: Simulation = Field(default_factory=Simulation)

    @field_validator('buckets')
    @classmethod
    def validate_unique_durations(cls, v):
        """Bucket durations must be unique."""
        durations = [bucket.duration for bucket in v]
        if len(set(durations)) != len(durations):
            raise ValueError(f"Duplicate bucket durations: {sorted(durations)}")
        return v

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_dict = self.model_dump()
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create config from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump()
