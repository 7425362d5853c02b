"""
Tests for target cohort selection.
"""

import pytest
import numpy as np
import pandas as pd

from careroi.errors import InvalidConfiguration
from careroi.selection import TargetCohort, select_target_cohort, profile_cohort


def _scored(probabilities):
    n = len(probabilities)
    return pd.DataFrame({
        'patient_id': [f"PAT_{i:06d}" for i in range(n)],
        'predicted_probability': probabilities,
        'high_risk': [i % 2 for i in range(n)],
        'cost': np.linspace(1000.0, 2000.0, n),
    })


class TestSelectTargetCohort:
    """Tests for quantile-cutoff selection."""

    def test_top_decile_size(self):
        """q=0.90 on 100 distinct probabilities selects 10 patients."""
        scored = _scored(np.linspace(0.0, 1.0, 100))
        cohort = select_target_cohort(scored, 0.90)

        assert cohort.size == 10
        assert cohort.fraction == pytest.approx(0.10)

    def test_selected_dominate_unselected(self):
        rng = np.random.default_rng(0)
        scored = _scored(rng.random(500))
        cohort = select_target_cohort(scored, 0.90)

        rest = scored.loc[~scored['patient_id'].isin(cohort.patients['patient_id'])]
        assert cohort.probabilities.min() >= rest['predicted_probability'].max()
        assert cohort.probabilities.min() >= cohort.cutoff
        assert abs(cohort.size - 50) <= 1

    def test_sorted_descending(self):
        rng = np.random.default_rng(1)
        cohort = select_target_cohort(_scored(rng.random(200)), 0.75)
        assert (np.diff(cohort.probabilities) <= 0).all()

    def test_ties_at_cutoff_included(self):
        """Every patient tied at the cutoff is selected."""
        scored = _scored([0.5] * 20)
        cohort = select_target_cohort(scored, 0.90)

        assert cohort.cutoff == pytest.approx(0.5)
        assert cohort.size == 20

    def test_zero_quantile_selects_everyone(self):
        scored = _scored(np.linspace(0.1, 0.9, 30))
        assert select_target_cohort(scored, 0.0).size == 30

    def test_does_not_mutate_input(self):
        scored = _scored(np.linspace(0.0, 1.0, 50))
        before = scored.copy()
        cohort = select_target_cohort(scored, 0.9)
        cohort.patients['cost'] = 0.0

        pd.testing.assert_frame_equal(scored, before)

    @pytest.mark.parametrize('quantile', [-0.1, 1.1])
    def test_invalid_quantile(self, quantile):
        with pytest.raises(InvalidConfiguration) as excinfo:
            select_target_cohort(_scored([0.1, 0.2]), quantile)
        assert excinfo.value.stage == 'selection'

    def test_empty_scored_table(self):
        with pytest.raises(InvalidConfiguration):
            select_target_cohort(_scored([]), 0.9)


class TestProfileCohort:
    """Tests for cohort vs population comparison."""

    def test_profile_columns(self):
        scored = _scored(np.linspace(0.0, 1.0, 100))
        cohort = select_target_cohort(scored, 0.9)
        profile = profile_cohort(scored, cohort)

        assert 'cost' in profile.index
        assert {'population_mean', 'cohort_mean', 'ratio'} <= set(profile.columns)
        assert profile.attrs['cohort_size'] == 10
        # Highest-probability rows carry the highest costs in this fixture
        assert profile.loc['cost', 'ratio'] > 1.0
