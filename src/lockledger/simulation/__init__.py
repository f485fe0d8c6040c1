"""Seeded scenario simulation."""

from .monte_carlo import MonteCarloRunner
from .runner import ProtocolState, SimulationResult, SimulationRunner

__all__ = [
    "MonteCarloRunner",
    "ProtocolState",
    "SimulationResult",
    "SimulationRunner",
]
