#!/usr/bin/env python3
"""Run a STEPPE simulation and print a per-group biomass summary.

Usage:
    python scripts/run_steppe.py                          # default community
    python scripts/run_steppe.py configs/default.yaml
    python scripts/run_steppe.py configs/default.yaml --scenario wet.yaml \
        --years 50 --iterations 20 --workers 4 --seed 7

References:
    - steppe/config.py: load_config, default_config
    - steppe/model.py: run_simulation, SimulationResult
"""

import argparse
import logging
import sys
import time
from pathlib import Path

import numpy as np

# ── Project imports ──────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from steppe.config import default_config, load_config, validate_config
from steppe.model import SimulationResult, run_simulation
from steppe.types import MortalityType


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('config', nargs='?', default=None,
                        help='Base YAML configuration (default: built-in community)')
    parser.add_argument('--scenario', default=None,
                        help='Scenario YAML merged over the base configuration')
    parser.add_argument('--years', type=int, default=None)
    parser.add_argument('--iterations', type=int, default=None)
    parser.add_argument('--workers', type=int, default=None,
                        help='Thread-pool size for iterations')
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--check-sizes', action='store_true',
                        help='Reconcile sizes after growth and mortality')
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser.parse_args(argv)


def print_summary(result: SimulationResult) -> None:
    mean_bm = result.mean_group_biomass
    std_bm = result.std_group_biomass
    n_years = mean_bm.shape[0]
    last = slice(max(0, n_years - 10), n_years)

    print(f"\n{'Group':<16} {'mean biomass (g)':>18} {'sd':>10} {'mean PR':>9}")
    print('─' * 56)
    for gi, name in enumerate(result.group_names):
        print(f"{name:<16} {mean_bm[last, gi].mean():>18.2f} "
              f"{std_bm[last, gi].mean():>10.2f} "
              f"{result.mean_group_pr[last, gi].mean():>9.3f}")

    kills = result.total_kills_by_cause
    print(f"\nMean kills per iteration by cause:")
    for cause in MortalityType:
        print(f"  {cause.name.lower():<14} {kills[:, cause].sum():>10.1f}")


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if args.config is not None:
        config = load_config(args.config, scenario_path=args.scenario)
    else:
        config = default_config()

    sim = config.simulation
    if args.years is not None:
        sim.n_years = args.years
    if args.iterations is not None:
        sim.n_iterations = args.iterations
    if args.workers is not None:
        sim.parallel_workers = args.workers
    if args.seed is not None:
        sim.seed = args.seed
    if args.check_sizes:
        sim.check_sizes = True
    validate_config(config)

    t0 = time.time()
    result = run_simulation(config)
    elapsed = time.time() - t0

    print(f"Ran {sim.n_iterations} iterations × {sim.n_years} years "
          f"in {elapsed:.1f}s (seed={sim.seed})")
    print(f"Mean annual precipitation: {np.mean(result.mean_ppt):.0f} mm")
    print_summary(result)

    failures = sum(it.size_check_failures for it in result.iterations)
    if sim.check_sizes and failures:
        print(f"\nWARNING: {failures} size reconciliation failures")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
