"""Deterministic simulation of SR drive through discrete generations.

A run starts from Hardy-Weinberg proportions at the initial SR frequency,
applies the one-generation recursion of srdrive.dynamics and stops as soon
as the SR allele frequency crosses the fixation or extinction threshold,
or when the generation budget is used up.

States: RUNNING → FIXED | EXTINCT | BUDGET_EXHAUSTED (terminal).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional, Tuple

import numpy as np

from srdrive.dynamics import advance
from srdrive.genetics import ZygoteTables
from srdrive.types import (
    GENOTYPE_COLUMNS,
    N_GENOTYPES,
    Genotype,
    TerminationReason,
    allele_frequency_sr,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

FIXATION_THRESHOLD: float = 0.99
EXTINCTION_THRESHOLD: float = 1e-4


# ═══════════════════════════════════════════════════════════════════════
# PARAMETERS & RESULTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SimulationParameters:
    """One row of a parameter grid. ST genotypes have fitness 1."""
    generations: int = 100
    k: float = 0.96                        # segregation distortion strength
    paternity_of_SR_males: float = 0.2105  # SR share of paternity vs an ST rival
    freq_polyandry: float = 0.73           # probability a female double-mates
    w_STSR_female: float = 0.92
    w_SRSR_female: float = 0.41
    w_SR_male: float = 1.0
    initial_freq_SR: float = 0.1

    def key(self) -> Tuple:
        """Full parameter tuple identifying this row."""
        return (
            int(self.generations),
            float(self.k),
            float(self.paternity_of_SR_males),
            float(self.freq_polyandry),
            float(self.w_STSR_female),
            float(self.w_SRSR_female),
            float(self.w_SR_male),
            float(self.initial_freq_SR),
        )

    def fitness(self) -> np.ndarray:
        """(5,) fitness vector in Genotype order."""
        w = np.ones(N_GENOTYPES, dtype=np.float64)
        w[Genotype.STSR_female] = self.w_STSR_female
        w[Genotype.SRSR_female] = self.w_SRSR_female
        w[Genotype.SR_male] = self.w_SR_male
        return w

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> 'SimulationParameters':
        """Build from a dict or DataFrame row, ignoring unknown keys.

        Values that are not numbers are kept as given so that
        config.validate_parameters() can report them.
        """
        values = {}
        for f in fields(cls):
            if f.name in data:
                v = data[f.name]
                try:
                    number = float(v)
                except (TypeError, ValueError):
                    values[f.name] = v
                    continue
                if f.name == 'generations' and number.is_integer():
                    values[f.name] = int(number)
                else:
                    # non-integral budgets stay float so validation can reject them
                    values[f.name] = number
        return cls(**values)


PARAMETER_COLUMNS = [f.name for f in fields(SimulationParameters)]


@dataclass
class SimulationResult:
    """Terminal state of one simulation run."""
    parameters: SimulationParameters
    state: np.ndarray                      # (5,) terminal genotype frequencies
    generation: int                        # generations executed
    termination: TerminationReason
    trajectory: Optional[np.ndarray] = None  # (generation + 1,) SR frequency incl. t=0

    @property
    def prop_SR(self) -> float:
        return allele_frequency_sr(self.state)

    def to_row(self) -> Dict[str, Any]:
        """Flat record: parameters, genotype frequencies and summary."""
        row = self.parameters.to_dict()
        for name, value in zip(GENOTYPE_COLUMNS, self.state):
            row[name] = float(value)
        row['prop_SR'] = self.prop_SR
        row['generation'] = self.generation
        row['termination'] = self.termination.value
        return row


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION
# ═══════════════════════════════════════════════════════════════════════

def initial_state(initial_freq_SR: float) -> np.ndarray:
    """Hardy-Weinberg females and linear males, each sex weighted 1/2.

    Args:
        initial_freq_SR: SR allele frequency q at t=0.

    Returns:
        (5,) genotype frequencies summing to 1.
    """
    q = float(initial_freq_SR)
    p = 1.0 - q
    state = np.array([p * p, 2.0 * p * q, q * q, p, q], dtype=np.float64)
    return state * 0.5


def run_simulation(
    params: SimulationParameters,
    tables: Optional[ZygoteTables] = None,
    record_trajectory: bool = False,
    fixation_threshold: float = FIXATION_THRESHOLD,
    extinction_threshold: float = EXTINCTION_THRESHOLD,
) -> SimulationResult:
    """Iterate the frequency recursion until a threshold or the budget.

    The loop checks the SR allele frequency after every generation and
    stops at the first generation where it exceeds ``fixation_threshold``
    (FIXED) or drops below ``extinction_threshold`` (EXTINCT). It never
    runs more than ``params.generations`` generations.

    Args:
        params: Parameter row.
        tables: Optional zygote-table memo shared across runs.
        record_trajectory: If True, keep the SR frequency of every generation.
        fixation_threshold: Upper terminal SR frequency.
        extinction_threshold: Lower terminal SR frequency.

    Returns:
        SimulationResult with the terminal state.

    Raises:
        NormalizationError: If a frequency vector loses all mass.
    """
    if tables is None:
        tables = ZygoteTables()
    mating_types = tables.mating_types
    zygote_table = tables.get(params.k, params.paternity_of_SR_males)
    fitness = params.fitness()

    state = initial_state(params.initial_freq_SR)
    trajectory = [allele_frequency_sr(state)] if record_trajectory else None

    termination = TerminationReason.BUDGET_EXHAUSTED
    generation = 0
    while generation < params.generations:
        state = advance(state, fitness, mating_types, zygote_table, params.freq_polyandry)
        generation += 1
        q = allele_frequency_sr(state)
        if trajectory is not None:
            trajectory.append(q)
        if q > fixation_threshold:
            termination = TerminationReason.FIXED
            break
        if q < extinction_threshold:
            termination = TerminationReason.EXTINCT
            break

    logger.debug(
        "k=%s p=%s polyandry=%s: %s after %d generations (prop_SR=%.6g)",
        params.k, params.paternity_of_SR_males, params.freq_polyandry,
        termination.value, generation, allele_frequency_sr(state),
    )
    return SimulationResult(
        parameters=params,
        state=state,
        generation=generation,
        termination=termination,
        trajectory=np.array(trajectory) if trajectory is not None else None,
    )
