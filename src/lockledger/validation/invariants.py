"""Invariant checks over a live protocol instance."""

from dataclasses import dataclass
from typing import List, Optional

from ..engine.fixed_point import WAD
from ..engine.protocol import Protocol


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # e.g., "reward_weight", "conservation", "bounds"
    message: str
    details: Optional[str] = None


class InvariantChecker:
    """Check controller and ledger aggregates against their parts."""

    def __init__(self, protocol: Protocol):
        """Initialize with the protocol to inspect."""
        self.protocol = protocol
        self.controller = protocol.controller
        self.unwinding = protocol.unwinding

    def check_all(self) -> List[ValidationWarning]:
        warnings = []
        warnings.extend(self.check_reward_weight())
        warnings.extend(self.check_principal())
        warnings.extend(self.check_token_balances())
        warnings.extend(self.check_bucket_claims())
        warnings.extend(self.check_unwinding_aggregate())
        warnings.extend(self.check_unwinding_claims())
        warnings.extend(self.check_bounds())
        return warnings

    def check_reward_weight(self) -> List[ValidationWarning]:
        """global_reward_weight must equal the sum of bucket weights exactly."""
        expected = sum(
            self.controller.buckets[duration].reward_weight for duration in self.controller.enabled
        )
        actual = self.controller.global_reward_weight
        if actual != expected:
            return [ValidationWarning(
                severity="error",
                category="reward_weight",
                message="Global reward weight drifted from bucket totals",
                details=f"global={actual}, sum of buckets={expected}, drift={actual - expected:+d}"
            )]
        return []

    def check_principal(self) -> List[ValidationWarning]:
        expected = sum(bucket.total_receipt_tokens for bucket in self.controller.buckets.values())
        actual = self.controller.global_receipt_token
        if actual != expected:
            return [ValidationWarning(
                severity="error",
                category="conservation",
                message="Global principal differs from bucket totals",
                details=f"global={actual}, sum of buckets={expected}"
            )]
        return []

    def check_token_balances(self) -> List[ValidationWarning]:
        """Receipt tokens held must match what each pool accounts for."""
        warnings = []
        token = self.protocol.receipt_token
        held = token.balance_of(self.controller.address)
        if held != self.controller.global_receipt_token:
            warnings.append(ValidationWarning(
                severity="error",
                category="conservation",
                message="Controller token balance differs from global principal",
                details=f"held={held}, accounted={self.controller.global_receipt_token}"
            ))
        held = token.balance_of(self.unwinding.address)
        if held != self.unwinding.total_receipt_tokens:
            warnings.append(ValidationWarning(
                severity="error",
                category="conservation",
                message="Unwinding ledger token balance differs from its pool",
                details=f"held={held}, accounted={self.unwinding.total_receipt_tokens}"
            ))
        return warnings

    def check_bucket_claims(self) -> List[ValidationWarning]:
        """Share-implied balances never exceed a bucket's principal and fall
        short of it by at most one unit per holder."""
        warnings = []
        for duration in self.controller.enabled:
            bucket = self.controller.buckets[duration]
            holders = [account for account, shares in bucket.share_token.balances.items() if shares > 0]
            claimed = sum(self.controller.balance_for_duration(account, duration) for account in holders)
            if claimed > bucket.total_receipt_tokens:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="conservation",
                    message=f"Bucket {duration} claims exceed its principal",
                    details=f"claimed={claimed}, principal={bucket.total_receipt_tokens}"
                ))
            elif bucket.share_token.total_supply > 0 and bucket.total_receipt_tokens - claimed > len(holders):
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="conservation",
                    message=f"Bucket {duration} has unclaimed principal beyond rounding",
                    details=f"claimed={claimed}, principal={bucket.total_receipt_tokens}"
                ))
        return warnings

    def check_unwinding_aggregate(self) -> List[ValidationWarning]:
        """The rolled-forward aggregate equals the sum of position weights."""
        point = self.unwinding.global_point()
        current = point.epoch
        weights = 0
        slope = 0
        for position in self.unwinding.positions.values():
            weights += position.reward_weight_at(current)
            if position.from_epoch <= current < position.to_epoch:
                slope += position.reward_weight_decrease

        warnings = []
        if point.total_reward_weight != weights:
            warnings.append(ValidationWarning(
                severity="error",
                category="reward_weight",
                message="Unwinding aggregate weight differs from its positions",
                details=f"aggregate={point.total_reward_weight}, positions={weights}"
            ))
        if point.total_reward_weight_decrease != slope:
            warnings.append(ValidationWarning(
                severity="error",
                category="reward_weight",
                message="Unwinding aggregate slope differs from its positions",
                details=f"aggregate={point.total_reward_weight_decrease}, positions={slope}"
            ))
        return warnings

    def check_unwinding_claims(self) -> List[ValidationWarning]:
        claimed = sum(
            self.unwinding.balance_of(user, start_timestamp)
            for user, start_timestamp in self.unwinding.positions
        )
        pool = self.unwinding.total_receipt_tokens
        if claimed > pool:
            return [ValidationWarning(
                severity="error",
                category="conservation",
                message="Unwinding positions claim more than the ledger holds",
                details=f"claimed={claimed}, pool={pool}"
            )]
        return []

    def check_bounds(self) -> List[ValidationWarning]:
        warnings = []
        if not 0 <= self.unwinding.slash_index <= WAD:
            warnings.append(ValidationWarning(
                severity="error",
                category="bounds",
                message="Slash index outside [0, 1]",
                details=f"slash_index={self.unwinding.slash_index}"
            ))
        if self.unwinding.global_point().total_reward_weight < 0:
            warnings.append(ValidationWarning(
                severity="error",
                category="bounds",
                message="Unwinding reward weight went negative",
            ))
        for duration in self.controller.enabled:
            if self.controller.buckets[duration].total_receipt_tokens < 0:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="bounds",
                    message=f"Bucket {duration} principal went negative",
                ))
        return warnings


def check_invariants(protocol: Protocol) -> List[ValidationWarning]:
    """Run every invariant check on `protocol`."""
    return InvariantChecker(protocol).check_all()


def errors_only(warnings: List[ValidationWarning]) -> List[ValidationWarning]:
    return [w for w in warnings if w.severity == "error"]
