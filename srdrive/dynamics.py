"""One-generation frequency recursion for srdrive.

Each discrete generation:
  1. Viability selection on adults (multiply by fitness, renormalize)
  2. Mating-type frequencies from sex-conditional adult frequencies,
     split into single matings (1 - polyandry) and double matings
     (polyandry); mixed ST+SR double matings count twice
  3. Offspring frequencies = mating frequencies @ zygote table

All functions are pure: the catalog and zygote table are never mutated.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from srdrive.types import FEMALE_MASK, MALE_MASK, N_GENOTYPES, MatingType


class NormalizationError(ArithmeticError):
    """A frequency vector has no positive mass to renormalize."""


def _normalize(values: np.ndarray, stage: str) -> np.ndarray:
    total = values.sum()
    if not np.isfinite(total) or total <= 0.0:
        raise NormalizationError(
            f"Cannot normalize {stage} frequencies: total = {total}"
        )
    return values / total


def apply_selection(state: np.ndarray, fitness: np.ndarray) -> np.ndarray:
    """Viability selection: weight genotype frequencies by fitness.

    Args:
        state: (5,) genotype frequencies.
        fitness: (5,) relative fitness per genotype.

    Returns:
        (5,) post-selection frequencies summing to 1.

    Raises:
        NormalizationError: If no genotype survives selection.
    """
    return _normalize(state * fitness, 'post-selection')


def sex_conditional(state: np.ndarray) -> np.ndarray:
    """Rescale each sex's genotype frequencies to sum to 1 within that sex."""
    females = state[FEMALE_MASK].sum()
    males = state[MALE_MASK].sum()
    if females <= 0.0 or males <= 0.0:
        raise NormalizationError(
            f"Mating requires both sexes: female mass = {females}, "
            f"male mass = {males}"
        )
    out = state.copy()
    out[FEMALE_MASK] /= females
    out[MALE_MASK] /= males
    return out


def mating_type_frequencies(
    state: np.ndarray,
    mating_types: Sequence[MatingType],
    polyandry: float,
) -> np.ndarray:
    """Frequency of each mating type among all matings.

    Mothers and fathers are drawn from the sex-conditional frequencies of
    ``state``. A mixed double mating is weighted by 2 because either male
    can be the first mate; same-genotype double matings are not.

    Args:
        state: (5,) post-selection genotype frequencies.
        mating_types: Catalog from build_mating_types().
        polyandry: Probability that a female mates with two males.

    Returns:
        (n_mating_types,) frequencies summing to 1, indexed by
        MatingType.index.

    Raises:
        ValueError: If a mating type's index does not match its position.
    """
    parents = sex_conditional(state)
    freqs = np.zeros(len(mating_types), dtype=np.float64)
    for pos, mt in enumerate(mating_types):
        if mt.index != pos:
            raise ValueError(
                f"Mating type {mt.label} has index {mt.index}, expected {pos}"
            )
        if mt.is_double_mating:
            f = polyandry * parents[mt.mother] * parents[mt.father1] * parents[mt.father2]
            if mt.is_mixed_double_mating:
                f *= 2.0
        else:
            f = (1.0 - polyandry) * parents[mt.mother] * parents[mt.father1]
        freqs[mt.index] = f
    return _normalize(freqs, 'mating-type')


def aggregate_offspring(
    mating_freqs: np.ndarray,
    zygote_table: np.ndarray,
) -> np.ndarray:
    """Offspring genotype frequencies summed over mating types.

    Raises:
        ValueError: If the mating-frequency vector and the zygote table do
            not index the same catalog, or the table does not have one
            column per genotype.
    """
    if (
        zygote_table.ndim != 2
        or mating_freqs.shape[0] != zygote_table.shape[0]
        or zygote_table.shape[1] != N_GENOTYPES
    ):
        raise ValueError(
            f"Mating frequencies {mating_freqs.shape} do not match "
            f"zygote table {zygote_table.shape}"
        )
    return _normalize(mating_freqs @ zygote_table, 'offspring')


def advance(
    state: np.ndarray,
    fitness: np.ndarray,
    mating_types: Sequence[MatingType],
    zygote_table: np.ndarray,
    polyandry: float,
) -> np.ndarray:
    """Advance the population by one generation.

    Returns:
        (5,) offspring genotype frequencies summing to 1. ``state`` is not
        modified.
    """
    selected = apply_selection(state, fitness)
    mating_freqs = mating_type_frequencies(selected, mating_types, polyandry)
    return aggregate_offspring(mating_freqs, zygote_table)
