"""Protocol wiring - one clock, authorizer, receipt token, ledger and controller.

`Protocol` also plays the external collaborators: the entry point (which
mints receipt tokens for a deposit and locks them), the finance manager
(which mints yield and deposits it, or reports losses) and the governor.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from ..config.loader import load_config
from ..config.schema import Config
from .access import Authorizer, Role
from .epochs import Clock
from .fixed_point import to_wad
from .locking import LockingController
from .state import restore_snapshot, take_snapshot
from .tokens import ReceiptToken, ShareToken
from .unwinding import UnwindingLedger


class Protocol:
    """A fully wired protocol instance built from configuration."""

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize protocol.

        Args:
            config: Protocol configuration (defaults to defaults.yaml)
        """
        self.config = config if config is not None else load_config()
        params = self.config.protocol
        self.roles = self.config.roles

        self.clock = Clock(
            timestamp=params.start_timestamp,
            epoch_length=params.epoch_length_seconds,
            genesis=params.genesis_timestamp,
        )
        self.authorizer = Authorizer()
        self.receipt_token = ReceiptToken("receipt", self.authorizer)
        self.unwinding = UnwindingLedger(self.clock, self.authorizer, self.receipt_token)
        self.controller = LockingController(
            self.clock,
            self.authorizer,
            self.receipt_token,
            self.unwinding,
            max_loss_percentage=to_wad(params.max_loss_percentage),
        )
        self.unwinding.bind_controller(self.controller)

        self.authorizer.grant(Role.LOCKED_TOKEN_MANAGER, self.controller.address)
        self.authorizer.grant(Role.ENTRY_POINT, self.roles.entry_point)
        self.authorizer.grant(Role.FINANCE_MANAGER, self.roles.finance_manager)
        self.authorizer.grant(Role.GOVERNOR, self.roles.governor)
        self.authorizer.grant(Role.RECEIPT_TOKEN_MINTER, self.roles.receipt_minter)

        self.share_tokens: Dict[int, ShareToken] = {}
        for bucket in self.config.buckets:
            self.enable_bucket(bucket.duration, to_wad(bucket.multiplier))

    @contextmanager
    def transact(self) -> Iterator["Protocol"]:
        """Run several calls all-or-nothing."""
        snapshot = take_snapshot(
            self.controller.state_components(), shared=(self.clock, self.authorizer)
        )
        try:
            yield self
        except BaseException:
            restore_snapshot(snapshot)
            raise

    # ------------------------------------------------------------------
    # Governor
    # ------------------------------------------------------------------

    def enable_bucket(self, duration: int, multiplier: int) -> ShareToken:
        share_token = ShareToken(f"locked-{duration}", self.authorizer, duration)
        self.controller.enable_bucket(duration, share_token, multiplier, sender=self.roles.governor)
        self.share_tokens[duration] = share_token
        return share_token

    def set_bucket_multiplier(self, duration: int, multiplier: int) -> None:
        self.controller.set_bucket_multiplier(duration, multiplier, sender=self.roles.governor)

    def set_max_loss_percentage(self, percentage: int) -> None:
        self.controller.set_max_loss_percentage(percentage, sender=self.roles.governor)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def lock(self, user: str, amount: int, duration: int) -> int:
        """Mint `amount` receipt tokens for `user` and lock them. Returns shares."""
        entry_point = self.roles.entry_point
        with self.transact():
            self.receipt_token.mint(self.roles.receipt_minter, entry_point, amount)
            self.receipt_token.approve(entry_point, self.controller.address, amount)
            return self.controller.create_position(amount, duration, user, sender=entry_point)

    def start_unwinding(self, user: str, shares: int, duration: int) -> int:
        """Start unwinding `shares` of `user`'s position. Returns the position's
        start timestamp, which keys it in the unwinding ledger."""
        self.controller.start_unwinding(shares, duration, user, sender=self.roles.entry_point)
        return self.clock.timestamp

    def increase_unwinding_epochs(self, user: str, shares: int, old_duration: int, new_duration: int) -> int:
        return self.controller.increase_unwinding_epochs(
            shares, old_duration, new_duration, user, sender=self.roles.entry_point
        )

    def cancel_unwinding(self, user: str, start_timestamp: int, new_duration: int) -> int:
        return self.controller.cancel_unwinding(user, start_timestamp, new_duration, sender=self.roles.entry_point)

    def withdraw(self, user: str, start_timestamp: int) -> int:
        return self.controller.withdraw(user, start_timestamp, sender=self.roles.entry_point)

    # ------------------------------------------------------------------
    # Finance
    # ------------------------------------------------------------------

    def deposit_rewards(self, amount: int) -> None:
        """Mint `amount` of yield to the finance manager and distribute it."""
        finance = self.roles.finance_manager
        with self.transact():
            self.receipt_token.mint(self.roles.receipt_minter, finance, amount)
            self.receipt_token.approve(finance, self.controller.address, amount)
            self.controller.deposit_rewards(amount, sender=finance)

    def apply_losses(self, amount: int) -> None:
        self.controller.apply_losses(amount, sender=self.roles.finance_manager)
