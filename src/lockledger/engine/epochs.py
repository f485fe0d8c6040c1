"""Epoch discretization and the shared clock."""

from dataclasses import dataclass

EPOCH_LENGTH = 7 * 24 * 60 * 60  # one week, in seconds


def epoch(timestamp: int, epoch_length: int = EPOCH_LENGTH, genesis: int = 0) -> int:
    """Map a timestamp to its epoch index."""
    return (timestamp - genesis) // epoch_length


def next_epoch(timestamp: int, epoch_length: int = EPOCH_LENGTH, genesis: int = 0) -> int:
    """Index of the first epoch starting strictly after `timestamp`'s epoch."""
    return epoch(timestamp, epoch_length, genesis) + 1


def epoch_to_timestamp(epoch_index: int, epoch_length: int = EPOCH_LENGTH, genesis: int = 0) -> int:
    """Timestamp at which `epoch_index` begins."""
    return genesis + epoch_index * epoch_length


@dataclass
class Clock:
    """Block-time clock shared by every component of one protocol instance.

    Time only moves forward. `warp` sets an absolute timestamp,
    `advance` and `advance_epochs` move relative to the current one.
    """
    timestamp: int = 0
    epoch_length: int = EPOCH_LENGTH
    genesis: int = 0

    def current_epoch(self) -> int:
        return epoch(self.timestamp, self.epoch_length, self.genesis)

    def next_epoch(self) -> int:
        return next_epoch(self.timestamp, self.epoch_length, self.genesis)

    def epoch_start(self, epoch_index: int) -> int:
        return epoch_to_timestamp(epoch_index, self.epoch_length, self.genesis)

    def warp(self, timestamp: int) -> None:
        if timestamp < self.timestamp:
            raise ValueError(f"Clock cannot move backwards: {timestamp} < {self.timestamp}")
        self.timestamp = timestamp

    def advance(self, seconds: int) -> None:
        self.warp(self.timestamp + seconds)

    def advance_epochs(self, epochs: int = 1) -> None:
        """Jump to the start of the epoch `epochs` after the current one."""
        self.warp(self.epoch_start(self.current_epoch() + epochs))
