"""Error taxonomy for the locking and unwinding engine.

Every failure aborts the whole calling transaction and surfaces to the
caller unchanged. `code` is the stable, machine-readable name.
"""

from typing import Any, Optional


class ProtocolError(Exception):
    """Base class for every rejected call."""

    code = "ProtocolError"

    def __init__(self, reason: str = "", details: Optional[Any] = None):
        self.reason = reason
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}" if self.reason else self.code
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidBucket(ProtocolError):
    code = "InvalidBucket"


class InvalidUnwindingEpochs(ProtocolError):
    code = "InvalidUnwindingEpochs"


class InvalidMultiplier(ProtocolError):
    code = "InvalidMultiplier"


class InvalidPercentage(ProtocolError):
    code = "InvalidPercentage"


class BucketMustBeLongerDuration(ProtocolError):
    code = "BucketMustBeLongerDuration"


class UserAlreadyUnwinding(ProtocolError):
    code = "UserAlreadyUnwinding"


class UserNotUnwinding(ProtocolError):
    code = "UserNotUnwinding"


class UserUnwindingNotStarted(ProtocolError):
    code = "UserUnwindingNotStarted"


class UserUnwindingInProgress(ProtocolError):
    code = "UserUnwindingInProgress"


class TransferFailed(ProtocolError):
    code = "TransferFailed"


class InsufficientBalance(ProtocolError):
    code = "InsufficientBalance"


class Unauthorized(ProtocolError):
    code = "Unauthorized"


class ControllerPaused(ProtocolError):
    code = "ControllerPaused"


class ReentrantCall(ProtocolError):
    code = "ReentrantCall"


class NoRewardWeight(ProtocolError):
    code = "NoRewardWeight"


class PoolWiped(ProtocolError):
    code = "PoolWiped"
