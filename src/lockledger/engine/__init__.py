"""Locking and unwinding accounting engine."""

from .access import Authorizer, Role
from .epochs import EPOCH_LENGTH, Clock, epoch, epoch_to_timestamp, next_epoch
from .errors import ProtocolError
from .fixed_point import WAD, from_wad, to_wad
from .locking import BucketData, LockingController, Metric
from .protocol import Protocol
from .tokens import ReceiptToken, ShareToken
from .unwinding import GlobalPoint, UnwindingLedger, UnwindingPosition, roll_forward

__all__ = [
    "EPOCH_LENGTH",
    "WAD",
    "Authorizer",
    "BucketData",
    "Clock",
    "GlobalPoint",
    "LockingController",
    "Metric",
    "Protocol",
    "ProtocolError",
    "ReceiptToken",
    "Role",
    "ShareToken",
    "UnwindingLedger",
    "UnwindingPosition",
    "epoch",
    "epoch_to_timestamp",
    "from_wad",
    "next_epoch",
    "roll_forward",
    "to_wad",
]
