"""Post-processing of sweep results.

  - Equilibrium surface: terminal SR frequency pivoted over two swept
    parameters (input for surface/heatmap figures)
  - Observed vs predicted: model SR frequency at each field population's
    measured remating rate, compared with the observed SR frequency
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from srdrive.config import InvalidParameterError, validate_parameters
from srdrive.genetics import ZygoteTables
from srdrive.model import (
    EXTINCTION_THRESHOLD,
    FIXATION_THRESHOLD,
    PARAMETER_COLUMNS,
    SimulationParameters,
    run_simulation,
)


def equilibrium_surface(
    results: pd.DataFrame,
    index: str = 'freq_polyandry',
    columns: str = 'k',
    value: str = 'prop_SR',
) -> pd.DataFrame:
    """Pivot terminal values over two swept parameters.

    Failed rows are dropped. When other parameters were also swept, cells
    hold the mean over them.

    Raises:
        KeyError: If a requested column is not in the result table.
    """
    for name in (index, columns, value):
        if name not in results.columns:
            raise KeyError(f"Column '{name}' not in results")
    ok = results
    if 'status' in results.columns:
        ok = results[results['status'] == 'ok']
    return ok.pivot_table(index=index, columns=columns, values=value, aggfunc='mean')


def predict_observed(
    populations: Sequence[Dict[str, Any]],
    base: Optional[SimulationParameters] = None,
    fixation_threshold: float = FIXATION_THRESHOLD,
    extinction_threshold: float = EXTINCTION_THRESHOLD,
) -> pd.DataFrame:
    """Model SR frequency at each population's observed polyandry.

    Args:
        populations: Dicts with 'name', 'freq_polyandry' and
            'observed_freq_SR'. Any other PARAMETER_COLUMNS present
            override ``base`` for that population.
        base: Parameters shared by all populations (default
            SimulationParameters()).

    Returns:
        DataFrame with columns name, freq_polyandry, observed_freq_SR,
        predicted_freq_SR, residual (observed - predicted), termination.
    """
    if base is None:
        base = SimulationParameters()
    tables = ZygoteTables()
    rows: List[Dict[str, Any]] = []
    for pop in populations:
        overrides = {k: pop[k] for k in PARAMETER_COLUMNS if k in pop}
        params = SimulationParameters.from_mapping({**base.to_dict(), **overrides})
        problems = validate_parameters(params)
        if problems:
            raise InvalidParameterError([f"{pop['name']}: {p}" for p in problems])
        result = run_simulation(
            params, tables=tables,
            fixation_threshold=fixation_threshold,
            extinction_threshold=extinction_threshold,
        )
        observed = float(pop['observed_freq_SR'])
        rows.append({
            'name': pop['name'],
            'freq_polyandry': params.freq_polyandry,
            'observed_freq_SR': observed,
            'predicted_freq_SR': result.prop_SR,
            'residual': observed - result.prop_SR,
            'termination': result.termination.value,
        })
    return pd.DataFrame(rows, columns=[
        'name', 'freq_polyandry', 'observed_freq_SR',
        'predicted_freq_SR', 'residual', 'termination',
    ])


def prediction_summary(comparison: pd.DataFrame) -> Dict[str, float]:
    """Fit statistics of an observed-vs-predicted table."""
    obs = comparison['observed_freq_SR'].to_numpy(dtype=float)
    pred = comparison['predicted_freq_SR'].to_numpy(dtype=float)
    resid = obs - pred
    summary = {
        'n': int(len(obs)),
        'rmse': float(np.sqrt(np.mean(resid ** 2))) if len(obs) else float('nan'),
        'mean_residual': float(np.mean(resid)) if len(obs) else float('nan'),
    }
    if len(obs) > 1 and np.std(obs) > 0 and np.std(pred) > 0:
        summary['pearson_r'] = float(np.corrcoef(obs, pred)[0, 1])
    else:
        summary['pearson_r'] = float('nan')
    return summary
