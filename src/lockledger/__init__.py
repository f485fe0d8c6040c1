"""lockledger - bucketed locking and epoch-decaying unwinding for a yield-bearing stablecoin."""

__version__ = "1.0.0"
