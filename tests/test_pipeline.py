"""
Tests for the end-to-end pipeline.

Tests cover:
- Configuration validation before generation
- Cardinality across stages
- Reproducibility of every output for a fixed seed
- Degenerate thresholds reported without failing the run
- Repeat-seed comparison and printed summary
- Custom sex levels and isolation of the stored configuration
"""

from dataclasses import replace

import pytest
import numpy as np
import pandas as pd

from careroi.cohort import CohortParameters
from careroi.errors import InvalidConfiguration
from careroi.roi import ProgramParameters
from careroi.pipeline import (
    PipelineConfig,
    run_pipeline,
    compare_seeds,
    print_pipeline_summary,
)

pytestmark = pytest.mark.filterwarnings("ignore::careroi.errors.DegenerateModelFit")


@pytest.fixture(scope='module')
def config():
    return PipelineConfig(n_patients=3000, seed=123)


@pytest.fixture(scope='module')
def result(config):
    return run_pipeline(config)


class TestConfigValidation:
    """Invalid inputs are rejected before anything runs."""

    @pytest.mark.parametrize('n', [0, -10])
    def test_non_positive_population(self, n):
        with pytest.raises(InvalidConfiguration) as excinfo:
            run_pipeline(PipelineConfig(n_patients=n))
        assert excinfo.value.name == 'n_patients'

    @pytest.mark.parametrize('q', [-0.5, 1.5])
    def test_quantile_out_of_range(self, q):
        with pytest.raises(InvalidConfiguration):
            run_pipeline(PipelineConfig(target_quantile=q))

    def test_threshold_out_of_range(self):
        with pytest.raises(InvalidConfiguration):
            run_pipeline(PipelineConfig(decision_thresholds=(0.5, 2.0)))

    def test_negative_rate(self):
        config = PipelineConfig()
        config.cohort.utilization_rates['pcp_visits'] = -2.0
        with pytest.raises(InvalidConfiguration):
            run_pipeline(config)

    def test_invalid_program(self):
        with pytest.raises(InvalidConfiguration):
            run_pipeline(PipelineConfig(program=ProgramParameters(savings_rate=-0.1)))


class TestCardinality:
    """Row counts are preserved, except for selection."""

    def test_population_size(self, result, config):
        assert len(result.patients) == config.n_patients

    def test_partitions_sum_to_population(self, result, config):
        assert len(result.train) + len(result.scored) == config.n_patients

    def test_target_is_subset_of_scored(self, result):
        assert set(result.target.patients['patient_id']) <= set(result.scored['patient_id'])
        assert 0 < result.target.size < len(result.scored)

    def test_target_fraction_near_decile(self, result):
        assert result.target.fraction == pytest.approx(0.10, abs=0.02)

    def test_scored_probabilities_in_unit_interval(self, result):
        assert result.scored['predicted_probability'].between(0.0, 1.0).all()


class TestOutputs:
    """All reporting outputs are present."""

    def test_evaluations_per_threshold(self, result):
        assert set(result.evaluations) == {0.5, 0.8}
        assert isinstance(result.confusion_matrix(0.8), pd.DataFrame)

    def test_roc_and_auc(self, result):
        assert not result.roc.empty
        assert 0.5 < result.auc <= 1.0

    def test_coefficients(self, result):
        assert 'const' in set(result.coefficients['term'])

    def test_roi_uses_population_baseline(self, result):
        assert result.roi.baseline_average_cost == pytest.approx(result.patients['cost'].mean())
        assert result.roi.n_patients == result.target.size

    def test_auc_independent_of_thresholds(self, config, result):
        other = run_pipeline(replace(config, decision_thresholds=(0.1, 0.3, 0.95)))
        assert other.auc == result.auc

    def test_strict_threshold_is_not_fatal(self, config):
        """A threshold above every prediction collapses to one class but completes."""
        strict = run_pipeline(replace(config, decision_thresholds=(1.0,)))
        ev = strict.evaluations[1.0]

        assert ev.degenerate
        assert strict.degenerate_model
        assert ev.confusion.shape[0] == 1
        assert np.isnan(ev.precision)

    def test_custom_sex_levels_keep_sex_feature(self):
        """sex_male follows the second configured sex level."""
        config = PipelineConfig(
            n_patients=3000,
            seed=1,
            cohort=CohortParameters(sex_levels=('female', 'male')),
        )
        custom = run_pipeline(config)

        assert not any('sex_male' in d for d in custom.model_diagnostics)
        row = custom.coefficients.set_index('term').loc['sex_male']
        assert np.isfinite(row['estimate'])


class TestReproducibility:
    """Same configuration and seed give identical outputs."""

    def test_identical_roi(self, config, result):
        again = run_pipeline(config)
        assert again.roi == result.roi

    def test_identical_tables(self, config, result):
        again = run_pipeline(config)
        pd.testing.assert_frame_equal(again.patients, result.patients)
        pd.testing.assert_frame_equal(again.scored, result.scored)
        pd.testing.assert_frame_equal(again.coefficients, result.coefficients)
        pd.testing.assert_frame_equal(again.target.patients, result.target.patients)

    def test_different_seed_differs(self, config, result):
        other = run_pipeline(replace(config, seed=124))
        assert other.roi != result.roi

    def test_result_config_isolated_from_caller(self):
        """Editing the caller's config after a run leaves the stored config intact."""
        config = PipelineConfig(n_patients=1000, seed=9)
        run = run_pipeline(config)

        config.target_quantile = 0.5
        config.cohort.prevalences['cancer'] = 0.9
        config.program.program_cost_per_patient = 1.0

        assert run.config is not config
        assert run.config.target_quantile == 0.90
        assert run.config.cohort.prevalences['cancer'] == 0.05
        assert run.config.program == ProgramParameters()
        assert run.config.cohort == CohortParameters()


class TestRepeatsAndSummary:
    """Tests for repeat-seed statistics and printed output."""

    def test_compare_seeds(self):
        stats = compare_seeds(PipelineConfig(n_patients=1500), n_repeats=2, seed=5)

        assert set(stats) == {'auc', 'roi', 'cohort_size'}
        assert len(stats['roi']['values']) == 2
        assert stats['roi']['min'] <= stats['roi']['mean'] <= stats['roi']['max']

    def test_compare_seeds_invalid_repeats(self):
        with pytest.raises(InvalidConfiguration):
            compare_seeds(n_repeats=0)

    def test_print_summary(self, result, capsys):
        print_pipeline_summary(result)
        out = capsys.readouterr().out

        assert 'Pipeline summary' in out
        assert 'ROI' in out
        assert 'threshold 0.80' in out

    def test_verbose_run(self, config, capsys):
        run_pipeline(config, verbose=True)
        out = capsys.readouterr().out
        assert 'Generated 3000 patients' in out
