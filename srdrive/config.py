"""Configuration system for srdrive.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → command-line overrides

A configuration describes one parameter sweep: the generation budget and
termination thresholds, the value lists whose Cartesian product forms the
parameter grid, how the sweep is chunked and parallelized, and optionally
the field populations used for observed-vs-predicted comparison.
"""

from __future__ import annotations

import dataclasses
import itertools
import math
import numbers
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd
import yaml

from srdrive.model import (
    EXTINCTION_THRESHOLD,
    FIXATION_THRESHOLD,
    PARAMETER_COLUMNS,
    SimulationParameters,
)


class InvalidParameterError(ValueError):
    """One or more parameter rows lie outside their declared domain."""

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        shown = self.violations[:20]
        more = len(self.violations) - len(shown)
        message = "Invalid parameters:\n  " + "\n  ".join(shown)
        if more > 0:
            message += f"\n  ... and {more} more"
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Per-run budget and termination policy."""
    generations: int = 100
    fixation_threshold: float = FIXATION_THRESHOLD
    extinction_threshold: float = EXTINCTION_THRESHOLD
    record_trajectory: bool = False


@dataclass
class GridSection:
    """Value lists swept by the parameter grid (Cartesian product).

    Defaults reproduce the single empirical scenario: strong drive, SR males
    siring ~21% of offspring against an ST rival, 73% of females remating.
    """
    k: List[float] = field(default_factory=lambda: [0.96])
    paternity_of_SR_males: List[float] = field(default_factory=lambda: [0.2105])
    freq_polyandry: List[float] = field(default_factory=lambda: [0.73])
    w_STSR_female: List[float] = field(default_factory=lambda: [0.92])
    w_SRSR_female: List[float] = field(default_factory=lambda: [0.41])
    w_SR_male: List[float] = field(default_factory=lambda: [1.0])
    initial_freq_SR: List[float] = field(default_factory=lambda: [0.1])


@dataclass
class SweepSection:
    """Chunking, parallelism and output locations."""
    output_dir: str = "results/sweep"
    results_file: str = "sweep_results.csv"
    chunk_size: int = 500
    n_workers: int = 1


@dataclass
class ObservedSection:
    """Field populations for observed-vs-predicted comparison.

    Each entry: {'name': str, 'freq_polyandry': float, 'observed_freq_SR': float}.
    """
    populations: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SweepConfig:
    """Complete sweep configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    grid: GridSection = field(default_factory=GridSection)
    sweep: SweepSection = field(default_factory=SweepSection)
    observed: ObservedSection = field(default_factory=ObservedSection)


# ═══════════════════════════════════════════════════════════════════════
# PARAMETER VALIDATION
# ═══════════════════════════════════════════════════════════════════════

_UNIT_INTERVAL = ('k', 'paternity_of_SR_males', 'freq_polyandry', 'initial_freq_SR')
_FITNESS = ('w_STSR_female', 'w_SRSR_female', 'w_SR_male')


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def validate_parameters(params: SimulationParameters) -> List[str]:
    """Domain violations of one parameter row (empty list if valid)."""
    problems = []
    gens = params.generations
    if not _is_number(gens) or not float(gens).is_integer() or gens <= 0:
        problems.append(f"generations must be a positive integer, got {gens!r}")
    for name in _UNIT_INTERVAL:
        value = getattr(params, name)
        if not _is_number(value):
            problems.append(f"{name} must be a number, got {value!r}")
        elif not (0.0 <= value <= 1.0):
            problems.append(f"{name} must be in [0, 1], got {value}")
    for name in _FITNESS:
        value = getattr(params, name)
        if not _is_number(value):
            problems.append(f"{name} must be a number, got {value!r}")
        elif not (math.isfinite(value) and value >= 0.0):
            problems.append(f"{name} must be a finite value >= 0, got {value}")
    return problems


def validate_grid(rows: Iterable[SimulationParameters]) -> None:
    """Check every row; raise once with all violations.

    Raises:
        InvalidParameterError: If any row is invalid.
    """
    violations = []
    for i, params in enumerate(rows):
        for problem in validate_parameters(params):
            violations.append(f"row {i}: {problem}")
    if violations:
        raise InvalidParameterError(violations)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SweepConfig:
    """Convert a merged YAML dict to a SweepConfig."""
    sections = {}
    section_map = {
        'simulation': SimulationSection,
        'grid': GridSection,
        'sweep': SweepSection,
        'observed': ObservedSection,
    }
    for key, cls in section_map.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    # Scalars in the grid section are shorthand for one-element lists
    grid = sections['grid']
    for f in dataclasses.fields(GridSection):
        value = getattr(grid, f.name)
        if not isinstance(value, (list, tuple)):
            setattr(grid, f.name, [value])

    return SweepConfig(**sections)


def validate_config(config: SweepConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Termination thresholds are ordered inside (0, 1)
      - Sweep chunking and worker counts are positive
      - Every grid list is non-empty and every grid row is in its domain
      - Observed populations carry the required fields
    """
    sim = config.simulation
    if not (0.0 < sim.extinction_threshold < sim.fixation_threshold < 1.0):
        raise ValueError(
            f"thresholds must satisfy 0 < extinction_threshold "
            f"({sim.extinction_threshold}) < fixation_threshold "
            f"({sim.fixation_threshold}) < 1"
        )

    sw = config.sweep
    if sw.chunk_size < 1:
        raise ValueError(f"sweep.chunk_size must be >= 1, got {sw.chunk_size}")
    if sw.n_workers < 1:
        raise ValueError(f"sweep.n_workers must be >= 1, got {sw.n_workers}")
    if not sw.results_file:
        raise ValueError("sweep.results_file must be a non-empty file name")

    for f in dataclasses.fields(GridSection):
        if len(getattr(config.grid, f.name)) == 0:
            raise ValueError(f"grid.{f.name} must list at least one value")

    validate_grid(iter_parameter_grid(config))

    for i, pop in enumerate(config.observed.populations):
        for key in ('name', 'freq_polyandry', 'observed_freq_SR'):
            if key not in pop:
                raise ValueError(f"observed.populations[{i}] is missing '{key}'")
        if not (0.0 <= float(pop['freq_polyandry']) <= 1.0):
            raise ValueError(
                f"observed.populations[{i}].freq_polyandry must be in [0, 1], "
                f"got {pop['freq_polyandry']}"
            )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SweepConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        overrides: Optional dict of overrides (e.g. from the command line).

    Returns:
        Validated SweepConfig.

    Raises:
        FileNotFoundError: If base_path or scenario_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        with open(scenario_path) as f:
            scenario = yaml.safe_load(f) or {}
        deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SweepConfig:
    """Return a SweepConfig with all default values."""
    config = SweepConfig()
    validate_config(config)
    return config


# ═══════════════════════════════════════════════════════════════════════
# PARAMETER GRID
# ═══════════════════════════════════════════════════════════════════════

def iter_parameter_grid(config: SweepConfig):
    """Yield SimulationParameters for every grid combination.

    The first grid column varies fastest.
    """
    g = config.grid
    columns = [name for name in PARAMETER_COLUMNS if name != 'generations']
    value_lists = [list(getattr(g, name)) for name in columns]
    for combo in itertools.product(*reversed(value_lists)):
        values = dict(zip(columns, reversed(combo)))
        yield SimulationParameters(generations=config.simulation.generations, **values)


def build_parameter_grid(config: SweepConfig) -> pd.DataFrame:
    """Cartesian parameter grid as a DataFrame with PARAMETER_COLUMNS."""
    rows = [p.to_dict() for p in iter_parameter_grid(config)]
    return pd.DataFrame(rows, columns=PARAMETER_COLUMNS)
