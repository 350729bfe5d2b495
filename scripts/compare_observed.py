#!/usr/bin/env python3
"""Compare predicted SR frequencies with field observations.

Each population is simulated at its measured remating rate, all other
parameters taken from the first value of each grid list in the
config (defaults: the empirical scenario), or from --k and --paternity.

Populations come from the config's observed.populations list or from a
CSV with columns name, freq_polyandry, observed_freq_SR.

Usage:
    python3 scripts/compare_observed.py --config configs/default.yaml
    python3 scripts/compare_observed.py --observed data/field_sr.csv \\
        --output results/observed_vs_predicted.csv
"""

import argparse
import logging
import os
import sys
from pathlib import Path

import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from srdrive.analysis import predict_observed, prediction_summary
from srdrive.config import default_config, load_config
from srdrive.model import SimulationParameters


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--config', default=None, help='YAML configuration')
    parser.add_argument('--observed', default=None, help='CSV of field populations')
    parser.add_argument('--output', default='results/observed_vs_predicted.csv')
    parser.add_argument('--k', type=float, default=None)
    parser.add_argument('--paternity', type=float, default=None)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    config = load_config(args.config) if args.config else default_config()
    if args.observed:
        populations = pd.read_csv(args.observed).to_dict(orient='records')
    else:
        populations = config.observed.populations
    if not populations:
        parser.error("no observed populations (use --observed or observed.populations)")

    g = config.grid
    base = SimulationParameters(
        generations=config.simulation.generations,
        k=args.k if args.k is not None else g.k[0],
        paternity_of_SR_males=(args.paternity if args.paternity is not None
                               else g.paternity_of_SR_males[0]),
        freq_polyandry=g.freq_polyandry[0],
        w_STSR_female=g.w_STSR_female[0],
        w_SRSR_female=g.w_SRSR_female[0],
        w_SR_male=g.w_SR_male[0],
        initial_freq_SR=g.initial_freq_SR[0],
    )
    comparison = predict_observed(
        populations, base,
        fixation_threshold=config.simulation.fixation_threshold,
        extinction_threshold=config.simulation.extinction_threshold,
    )

    print(f"\n{'Population':<25} {'Polyandry':>9} {'Observed':>9} {'Predicted':>9}")
    print("-" * 56)
    for row in comparison.itertuples():
        print(f"{row.name:<25} {row.freq_polyandry:>9.3f} "
              f"{row.observed_freq_SR:>9.4f} {row.predicted_freq_SR:>9.4f}")
    summary = prediction_summary(comparison)
    print(f"\nn={summary['n']}  RMSE={summary['rmse']:.4f}  "
          f"mean residual={summary['mean_residual']:.4f}  r={summary['pearson_r']:.3f}")

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    comparison.to_csv(output, index=False)
    print(f"Saved: {output}")


if __name__ == "__main__":
    main()
