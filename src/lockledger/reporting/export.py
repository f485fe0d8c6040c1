"""Export functionality for CSV and JSON."""

import json

import pandas as pd

from ..simulation.runner import SimulationResult


def history_frame(result: SimulationResult) -> pd.DataFrame:
    """One row per recorded epoch."""
    return pd.DataFrame([state.to_dict() for state in result.states])


def export_csv(result: SimulationResult, filepath: str):
    """Export simulation history to CSV."""
    history_frame(result).to_csv(filepath, index=False)


def export_json(result: SimulationResult, filepath: str):
    """Export simulation results to JSON."""
    export_data = {
        'config': result.config.to_dict(),
        'config_hash': result.config.compute_hash(),
        'seed': result.seed,
        'states': [state.to_dict() for state in result.states],
        'action_counts': result.action_counts,
        'rejected_actions': result.rejected_actions,
        'paused_at_epoch': result.paused_at_epoch,
        'violations': [
            {
                'severity': w.severity,
                'category': w.category,
                'message': w.message,
                'details': w.details,
            }
            for w in result.violations
        ],
    }

    with open(filepath, 'w') as f:
        json.dump(export_data, f, indent=2, default=str)
