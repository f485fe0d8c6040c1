"""Monte Carlo runs over many seeds."""

from typing import Any, Dict, List, Optional

import numpy as np

from ..config.schema import Config
from .runner import SimulationResult, SimulationRunner


class MonteCarloRunner:
    """Run the same scenario under many seeds and summarize."""

    def __init__(self, config: Config):
        """
        Initialize Monte Carlo runner.

        Args:
            config: Base configuration
        """
        self.config = config

    def run(
        self,
        num_runs: Optional[int] = None,
        random_seed: Optional[int] = None
    ) -> List[SimulationResult]:
        """
        Run Monte Carlo simulation.

        Args:
            num_runs: Number of runs (defaults to config value)
            random_seed: First seed (defaults to config value); run i uses seed + i

        Returns:
            List of simulation results
        """
        if num_runs is None:
            num_runs = self.config.simulation.monte_carlo_runs

        if random_seed is None:
            random_seed = self.config.simulation.random_seed

        runner = SimulationRunner(self.config)
        return [runner.run(random_seed=random_seed + run_idx) for run_idx in range(num_runs)]

    @staticmethod
    def summarize(results: List[SimulationResult]) -> Dict[str, Any]:
        """
        Aggregate final balances, slash indices and invariant failures.

        Returns:
            Dictionary of summary statistics
        """
        if not results:
            return {'runs': 0}

        final_balances = np.array([r.states[-1].total_balance for r in results], dtype=float)
        final_slash = np.array([r.states[-1].slash_index for r in results], dtype=float) / 1e18
        errors = [sum(1 for w in r.violations if w.severity == "error") for r in results]

        return {
            'runs': len(results),
            'failed_runs': sum(1 for e in errors if e > 0),
            'invariant_errors': int(sum(errors)),
            'paused_runs': sum(1 for r in results if r.paused_at_epoch is not None),
            'final_balance_mean': float(np.mean(final_balances)),
            'final_balance_p5': float(np.percentile(final_balances, 5)),
            'final_balance_p95': float(np.percentile(final_balances, 95)),
            'final_slash_index_min': float(np.min(final_slash)),
        }
