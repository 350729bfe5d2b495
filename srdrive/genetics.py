"""Mating-type catalog and zygote model for srdrive.

Implements the transmission genetics of an X-linked driver:
  - Enumeration of the 15 distinguishable mating types (single and
    double matings), deduplicated under swapping of the two fathers
  - Offspring-genotype distributions per mating type as a function of
    drive strength k and SR paternity share p
  - Per-process memo of zygote tables keyed by (k, p)

Transmission rules:
  - ST fathers: Mendelian, X and Y gametes 50:50
  - SR fathers: X^SR gametes 0.5(1+k), Y gametes 0.5(1-k)
  - Mixed ST+SR double matings: SR father sires with probability p;
    sons fill the residual and inherit the maternal X
"""

from __future__ import annotations

import functools
import itertools
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from srdrive.types import (
    ALLELE_LABEL,
    FEMALE_GENOTYPES,
    MALE_GENOTYPES,
    N_GENOTYPES,
    Genotype,
    MatingType,
)


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

N_MATING_TYPES: int = 15
ROW_SUM_TOL: float = 1e-9

# Probability that the mother transmits (ST, SR)
MATERNAL_TRANSMISSION = {
    Genotype.STST_female: (1.0, 0.0),
    Genotype.STSR_female: (0.5, 0.5),
    Genotype.SRSR_female: (0.0, 1.0),
}


# ═══════════════════════════════════════════════════════════════════════
# MATING-TYPE CATALOG
# ═══════════════════════════════════════════════════════════════════════

@functools.lru_cache(maxsize=None)
def build_mating_types() -> Tuple[MatingType, ...]:
    """Enumerate all distinguishable mating configurations.

    Configurations are generated with the mother varying fastest, then the
    first father, then the second father (None, ST, SR). A configuration
    whose sorted participant labels were already seen is dropped, so the
    ST+SR double mating appears once per mother (as SR first, ST second).

    Returns:
        Tuple of 15 MatingType records: 6 single matings followed by
        9 double matings, with the 3 mixed double matings at
        positions 9-11 (0-based).
    """
    second_fathers = (None,) + MALE_GENOTYPES
    seen = set()
    catalog = []
    for father2, father1, mother in itertools.product(
        second_fathers, MALE_GENOTYPES, FEMALE_GENOTYPES,
    ):
        labels = tuple(sorted((
            ALLELE_LABEL[mother],
            ALLELE_LABEL[father1],
            ALLELE_LABEL[father2] if father2 is not None else 'none',
        )))
        if labels in seen:
            continue
        seen.add(labels)
        catalog.append(MatingType(
            index=len(catalog),
            mother=mother,
            father1=father1,
            father2=father2,
            is_mixed_double_mating=father2 is not None and father1 != father2,
        ))

    assert len(catalog) == N_MATING_TYPES, (
        f"Mating catalog must have {N_MATING_TYPES} entries, got {len(catalog)}"
    )
    return tuple(catalog)


# ═══════════════════════════════════════════════════════════════════════
# ZYGOTE MODEL
# ═══════════════════════════════════════════════════════════════════════

def _sr_paternity(mating_type: MatingType, paternity_of_SR_males: float) -> float:
    """Probability that an offspring of this mating is sired by an SR male."""
    fathers = mating_type.fathers
    if all(f == Genotype.SR_male for f in fathers):
        return 1.0
    if all(f == Genotype.ST_male for f in fathers):
        return 0.0
    return paternity_of_SR_males


def _zygote_row(
    mating_type: MatingType,
    k: float,
    paternity_of_SR_males: float,
) -> np.ndarray:
    """Offspring genotype distribution for one mating type.

    Daughters are enumerated per father: an ST father contributes an ST X
    to half his offspring, an SR father contributes an SR X to a
    fraction 0.5(1+k). Sons take the residual probability and carry the
    maternal X, so a heterozygous mother splits it evenly between
    ST and SR sons.
    """
    p_sr = _sr_paternity(mating_type, paternity_of_SR_males)
    m_st, m_sr = MATERNAL_TRANSMISSION[mating_type.mother]

    daughters_paternal_st = (1.0 - p_sr) * 0.5
    daughters_paternal_sr = p_sr * 0.5 * (1.0 + k)

    row = np.zeros(N_GENOTYPES, dtype=np.float64)
    row[Genotype.STST_female] = daughters_paternal_st * m_st
    row[Genotype.STSR_female] = daughters_paternal_st * m_sr + daughters_paternal_sr * m_st
    row[Genotype.SRSR_female] = daughters_paternal_sr * m_sr

    sons = 1.0 - row[:Genotype.ST_male].sum()
    row[Genotype.ST_male] = sons * m_st
    row[Genotype.SR_male] = sons * m_sr
    return row


def build_zygote_table(
    k: float,
    paternity_of_SR_males: float,
    mating_types: Optional[Sequence[MatingType]] = None,
) -> np.ndarray:
    """Offspring-genotype distribution for every mating type.

    Args:
        k: Segregation distortion strength in [0, 1].
        paternity_of_SR_males: SR male's share of paternity in an ST+SR
            double mating, in [0, 1].
        mating_types: Catalog from build_mating_types() (default).

    Returns:
        (n_mating_types, 5) float64 array. Row i belongs to the mating type
        with index i; columns follow Genotype order. Read-only.

    Raises:
        ValueError: If k or paternity_of_SR_males is outside [0, 1], a
            mating type's index does not match its position, or a row
            does not sum to 1.
    """
    if not (0.0 <= k <= 1.0):
        raise ValueError(f"k must be in [0, 1], got {k}")
    if not (0.0 <= paternity_of_SR_males <= 1.0):
        raise ValueError(
            f"paternity_of_SR_males must be in [0, 1], got {paternity_of_SR_males}"
        )
    if mating_types is None:
        mating_types = build_mating_types()

    table = np.zeros((len(mating_types), N_GENOTYPES), dtype=np.float64)
    for pos, mt in enumerate(mating_types):
        if mt.index != pos:
            raise ValueError(
                f"Mating type {mt.label} has index {mt.index}, expected {pos}"
            )
        table[pos] = _zygote_row(mt, k, paternity_of_SR_males)

    row_sums = table.sum(axis=1)
    if not np.all(np.abs(row_sums - 1.0) <= ROW_SUM_TOL):
        raise ValueError(f"Zygote rows must sum to 1, got {row_sums}")
    table.setflags(write=False)
    return table


def zygote_outcome(
    mating_type: MatingType,
    k: float,
    paternity_of_SR_males: float,
) -> Dict[Genotype, float]:
    """Offspring distribution of a single mating type as {Genotype: freq}."""
    row = _zygote_row(mating_type, k, paternity_of_SR_males)
    return {g: float(row[g]) for g in Genotype}


class ZygoteTables:
    """Memo of zygote tables keyed by (k, paternity_of_SR_males).

    Each worker process holds its own instance; tables are read-only and
    shared by every run with the same (k, p) pair.
    """

    def __init__(self, mating_types: Optional[Sequence[MatingType]] = None):
        self.mating_types = tuple(mating_types) if mating_types is not None \
            else build_mating_types()
        self._tables: Dict[Tuple[float, float], np.ndarray] = {}

    def get(self, k: float, paternity_of_SR_males: float) -> np.ndarray:
        key = (float(k), float(paternity_of_SR_males))
        table = self._tables.get(key)
        if table is None:
            table = build_zygote_table(key[0], key[1], self.mating_types)
            self._tables[key] = table
        return table

    def __len__(self) -> int:
        return len(self._tables)
