#!/usr/bin/env python3
"""Run a chunked, resumable parameter sweep of the SR drive model.

Re-running the same command resumes from the persisted chunk files and
only computes the missing parameter rows.

Usage:
    python3 scripts/run_sweep.py --config configs/default.yaml
    python3 scripts/run_sweep.py --config configs/default.yaml \\
        --scenario configs/equilibrium_surface.yaml --workers 8
"""

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from srdrive import __version__
from srdrive.config import build_parameter_grid, load_config
from srdrive.sweep import run_sweep_from_config
from srdrive.utils import get_git_hash, timer


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--config', required=True, help='Base YAML configuration')
    parser.add_argument('--scenario', default=None, help='Scenario override YAML')
    parser.add_argument('--output-dir', default=None, help='Override sweep.output_dir')
    parser.add_argument('--workers', type=int, default=None, help='Override sweep.n_workers')
    parser.add_argument('--chunk-size', type=int, default=None, help='Override sweep.chunk_size')
    parser.add_argument('--max-chunks', type=int, default=None,
                        help='Stop after this many new chunks (resume later)')
    parser.add_argument('--record-trajectory', action='store_true',
                        help='Persist per-generation prop_SR under trajectories/')
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    overrides = {'sweep': {}}
    if args.output_dir is not None:
        overrides['sweep']['output_dir'] = args.output_dir
    if args.workers is not None:
        overrides['sweep']['n_workers'] = args.workers
    if args.chunk_size is not None:
        overrides['sweep']['chunk_size'] = args.chunk_size
    if args.record_trajectory:
        overrides['simulation'] = {'record_trajectory': True}
    config = load_config(args.config, args.scenario, overrides)

    grid = build_parameter_grid(config)
    out_dir = Path(config.sweep.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    print(f"SR drive sweep: {len(grid)} parameter rows, "
          f"{config.simulation.generations} generations max")
    print(f"Workers: {config.sweep.n_workers}, chunk size {config.sweep.chunk_size}")
    print(f"Output: {out_dir}")
    print(f"Started: {time.strftime('%Y-%m-%d %H:%M:%S')}")
    sys.stdout.flush()

    with timer("sweep"):
        results = run_sweep_from_config(config, grid=grid, max_chunks=args.max_chunks)

    manifest = {
        'version': __version__,
        'git_hash': get_git_hash(),
        'config': args.config,
        'scenario': args.scenario,
        'n_rows': int(len(grid)),
        'n_completed': int(len(results)),
        'n_failed': int((results['status'] == 'failed').sum()),
        'termination_counts': results['termination'].value_counts().to_dict(),
    }
    with open(out_dir / 'manifest.json', 'w') as f:
        json.dump(manifest, f, indent=2)

    print(f"\nCompleted {len(results)}/{len(grid)} rows, "
          f"{manifest['n_failed']} failed")
    if len(results) == len(grid):
        print(f"Saved: {out_dir / config.sweep.results_file}")
    else:
        print("Sweep stopped early; re-run the same command to resume.")


if __name__ == "__main__":
    main()
