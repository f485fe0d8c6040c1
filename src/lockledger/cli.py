"""Command-line entry point: run a simulation and export the history."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config.loader import load_config
from .reporting.export import export_csv, export_json
from .simulation.monte_carlo import MonteCarloRunner
from .simulation.runner import SimulationRunner


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="lockledger", description="Simulate the locking and unwinding ledger")
    ap.add_argument("--config", default=None, help="Path to a YAML config (defaults to the bundled defaults.yaml)")
    ap.add_argument("--seed", type=int, default=None, help="Override simulation.random_seed")
    ap.add_argument("--epochs", type=int, default=None, help="Override simulation.epochs")
    ap.add_argument("--monte-carlo", type=int, default=None, metavar="RUNS", help="Run RUNS seeds and print a summary")
    ap.add_argument("--csv", default=None, help="Write the epoch history to this CSV file")
    ap.add_argument("--json", default=None, help="Write the full result to this JSON file")
    ap.add_argument("--log-level", default="WARNING", help="Python logging level (INFO shows every event)")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(name)s %(levelname)s %(message)s")

    config = load_config(args.config)
    if args.epochs is not None:
        config.simulation.epochs = args.epochs

    if args.monte_carlo:
        runner = MonteCarloRunner(config)
        results = runner.run(num_runs=args.monte_carlo, random_seed=args.seed)
        summary = MonteCarloRunner.summarize(results)
        print(json.dumps(summary, indent=2))
        return 1 if summary['failed_runs'] else 0

    result = SimulationRunner(config).run(random_seed=args.seed)
    if args.csv:
        export_csv(result, args.csv)
    if args.json:
        export_json(result, args.json)

    final = result.states[-1]
    print(f"config {config.compute_hash()} seed {result.seed}: "
          f"{len(result.states) - 1} epochs, total balance {final.total_balance}, "
          f"slash index {final.to_dict()['slash_index']:.6f}, paused={final.paused}")
    for warning in result.violations:
        print(f"[{warning.severity}] {warning.category}: {warning.message} ({warning.details})")
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
