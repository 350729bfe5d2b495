"""Tests for srdrive.types — genotype catalog, mating-type records, SR frequency."""

import numpy as np
import pytest

from srdrive.types import (
    FEMALE_GENOTYPES,
    FEMALE_MASK,
    GENOTYPE_COLUMNS,
    MALE_GENOTYPES,
    MALE_MASK,
    N_GENOTYPES,
    Genotype,
    MatingType,
    TerminationReason,
    allele_frequency_sr,
)


# ── Genotype enum tests ──────────────────────────────────────────────

class TestGenotypeEnum:
    def test_values(self):
        assert Genotype.STST_female == 0
        assert Genotype.STSR_female == 1
        assert Genotype.SRSR_female == 2
        assert Genotype.ST_male == 3
        assert Genotype.SR_male == 4

    def test_count(self):
        assert len(Genotype) == 5
        assert N_GENOTYPES == 5

    def test_sex_partition(self):
        assert len(FEMALE_GENOTYPES) == 3
        assert len(MALE_GENOTYPES) == 2
        assert set(FEMALE_GENOTYPES) | set(MALE_GENOTYPES) == set(Genotype)
        assert FEMALE_MASK.sum() == 3
        assert MALE_MASK.sum() == 2
        assert not np.any(FEMALE_MASK & MALE_MASK)

    def test_columns_follow_enum_order(self):
        assert GENOTYPE_COLUMNS == [
            'STST_female', 'STSR_female', 'SRSR_female', 'ST_male', 'SR_male',
        ]


# ── allele_frequency_sr tests ────────────────────────────────────────

class TestAlleleFrequencySR:
    def test_all_standard(self):
        state = np.array([0.5, 0.0, 0.0, 0.5, 0.0])
        assert allele_frequency_sr(state) == 0.0

    def test_all_driver(self):
        state = np.array([0.0, 0.0, 0.5, 0.0, 0.5])
        assert allele_frequency_sr(state) == 1.0

    def test_heterozygous_females_only(self):
        """STSR females carry one SR copy out of two X chromosomes."""
        state = np.array([0.0, 1.0, 0.0, 0.0, 0.0])
        assert allele_frequency_sr(state) == pytest.approx(0.5)

    def test_copy_weighting(self):
        # SR copies: 0.2 + 2*0.1 + 0.3 = 0.7
        # X copies:  2*(0.1+0.2+0.1) + 0.3 + 0.3 = 1.4
        state = np.array([0.1, 0.2, 0.1, 0.3, 0.3])
        assert allele_frequency_sr(state) == pytest.approx(0.5)

    def test_hardy_weinberg_state(self):
        q = 0.3
        p = 1 - q
        state = 0.5 * np.array([p * p, 2 * p * q, q * q, p, q])
        assert allele_frequency_sr(state) == pytest.approx(q)

    def test_scale_invariant(self):
        state = np.array([0.1, 0.2, 0.1, 0.3, 0.3])
        assert allele_frequency_sr(3.0 * state) == pytest.approx(allele_frequency_sr(state))

    def test_accepts_list(self):
        assert allele_frequency_sr([0.0, 0.0, 0.5, 0.0, 0.5]) == 1.0


# ── MatingType tests ─────────────────────────────────────────────────

class TestMatingType:
    def test_single_mating(self):
        mt = MatingType(0, Genotype.STST_female, Genotype.ST_male)
        assert not mt.is_double_mating
        assert not mt.is_mixed_double_mating
        assert mt.fathers == (Genotype.ST_male,)
        assert mt.label == "STST x ST + none"

    def test_double_mating(self):
        mt = MatingType(9, Genotype.STSR_female, Genotype.SR_male, Genotype.ST_male,
                        is_mixed_double_mating=True)
        assert mt.is_double_mating
        assert mt.is_mixed_double_mating
        assert mt.fathers == (Genotype.SR_male, Genotype.ST_male)
        assert mt.label == "STSR x SR + ST"

    def test_frozen(self):
        mt = MatingType(0, Genotype.STST_female, Genotype.ST_male)
        with pytest.raises(Exception):
            mt.index = 3

    def test_hashable(self):
        a = MatingType(0, Genotype.STST_female, Genotype.ST_male)
        b = MatingType(0, Genotype.STST_female, Genotype.ST_male)
        assert a == b
        assert len({a, b}) == 1


class TestTerminationReason:
    def test_values(self):
        assert TerminationReason.FIXED.value == 'fixed'
        assert TerminationReason.EXTINCT.value == 'extinct'
        assert TerminationReason.BUDGET_EXHAUSTED.value == 'budget_exhausted'

    def test_round_trip_from_value(self):
        assert TerminationReason('extinct') is TerminationReason.EXTINCT
