"""Invariant checks for the locking controller and unwinding ledger."""

from .invariants import InvariantChecker, ValidationWarning, check_invariants, errors_only

__all__ = [
    "InvariantChecker",
    "ValidationWarning",
    "check_invariants",
    "errors_only",
]
