"""Core data types for srdrive.

This module is the SINGLE SOURCE OF TRUTH for:
  - Genotype enumeration (column order of every frequency vector)
  - Sex partitions of the genotype catalog
  - MatingType records and TerminationReason
  - The SR allele-frequency projection

All modules import these types from here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# GENOTYPES
# ═══════════════════════════════════════════════════════════════════════

class Genotype(IntEnum):
    """Heritable types for an X-linked locus.

    Females carry two X chromosomes, males carry one X and a Y.
    The enum value is the column index in state vectors and zygote tables.
    """
    STST_female = 0
    STSR_female = 1
    SRSR_female = 2
    ST_male     = 3
    SR_male     = 4


N_GENOTYPES = len(Genotype)

FEMALE_GENOTYPES = (Genotype.STST_female, Genotype.STSR_female, Genotype.SRSR_female)
MALE_GENOTYPES = (Genotype.ST_male, Genotype.SR_male)

FEMALE_MASK = np.array([True, True, True, False, False])
MALE_MASK = ~FEMALE_MASK

# SR copies and total X copies carried by each genotype
SR_COPIES = np.array([0.0, 1.0, 2.0, 0.0, 1.0])
X_COPIES = np.array([2.0, 2.0, 2.0, 1.0, 1.0])

# Short allele label used for mating-type display and deduplication
ALLELE_LABEL = {
    Genotype.STST_female: 'STST',
    Genotype.STSR_female: 'STSR',
    Genotype.SRSR_female: 'SRSR',
    Genotype.ST_male: 'ST',
    Genotype.SR_male: 'SR',
}

# Column names of a genotype-frequency table, in Genotype order
GENOTYPE_COLUMNS = [g.name for g in Genotype]


def allele_frequency_sr(state: np.ndarray) -> float:
    """SR allele frequency among all X chromosomes.

    Each STSR female carries one SR copy, each SRSR female two and each
    SR male one. Females contribute two X copies, males one.

    Args:
        state: (5,) genotype frequencies in Genotype order.

    Returns:
        SR frequency in [0, 1].
    """
    state = np.asarray(state, dtype=np.float64)
    return float(np.dot(state, SR_COPIES) / np.dot(state, X_COPIES))


# ═══════════════════════════════════════════════════════════════════════
# MATING TYPES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MatingType:
    """One distinguishable mating configuration.

    index is the row of this mating type in every mating-frequency
    vector and zygote table built from the same catalog.
    """
    index: int
    mother: Genotype
    father1: Genotype
    father2: Optional[Genotype] = None
    is_mixed_double_mating: bool = False

    @property
    def is_double_mating(self) -> bool:
        return self.father2 is not None

    @property
    def fathers(self) -> tuple:
        if self.father2 is None:
            return (self.father1,)
        return (self.father1, self.father2)

    @property
    def label(self) -> str:
        second = ALLELE_LABEL[self.father2] if self.father2 is not None else 'none'
        return f"{ALLELE_LABEL[self.mother]} x {ALLELE_LABEL[self.father1]} + {second}"


class TerminationReason(str, Enum):
    """Why a simulation run stopped."""
    FIXED = 'fixed'                         # SR frequency rose above fixation threshold
    EXTINCT = 'extinct'                     # SR frequency fell below extinction threshold
    BUDGET_EXHAUSTED = 'budget_exhausted'   # generation budget used up
