"""
End-to-end pipeline runner.

Runs the four stages strictly in sequence:

    generate_cohort -> stratified_split / RiskModel -> select_target_cohort
    -> estimate_roi

One numpy Generator seeded from the configuration is consumed by generation
and then by the split, so a seed reproduces every downstream table.
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .cohort import (
    CohortParameters,
    DEFAULT_INCOME_EDGES,
    generate_cohort,
    population_baseline_cost,
)
from .errors import InvalidConfiguration
from .model import (
    LABEL,
    PROBABILITY,
    RiskModel,
    ThresholdEvaluation,
    evaluate_threshold,
    roc_auc,
    roc_points,
    stratified_split,
)
from .roi import ProgramParameters, ROISummary, estimate_roi
from .selection import TargetCohort, select_target_cohort


@dataclass
class PipelineConfig:
    """All pipeline inputs, with defaults."""
    n_patients: int = 5000
    seed: Optional[int] = 42
    cohort: CohortParameters = field(default_factory=CohortParameters)
    eval_fraction: float = 0.25
    bucket_income: bool = True
    income_edges: Tuple[float, ...] = DEFAULT_INCOME_EDGES
    decision_thresholds: Tuple[float, ...] = (0.5, 0.8)
    target_quantile: float = 0.90
    program: ProgramParameters = field(default_factory=ProgramParameters)
    alpha: float = 0.05

    def validate(self) -> None:
        """Reject invalid inputs before anything is generated."""
        n = self.n_patients
        if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n <= 0:
            raise InvalidConfiguration('config', 'n_patients', n, 'a positive integer')
        if n < 2:
            raise InvalidConfiguration('config', 'n_patients', n, 'at least 2 for a split')
        if not 0.0 < self.eval_fraction < 1.0:
            raise InvalidConfiguration('config', 'eval_fraction', self.eval_fraction, 'in (0, 1)')
        if not self.decision_thresholds:
            raise InvalidConfiguration(
                'config', 'decision_thresholds', self.decision_thresholds, 'non-empty'
            )
        for t in self.decision_thresholds:
            if not 0.0 <= t <= 1.0:
                raise InvalidConfiguration('config', 'decision_threshold', t, 'in [0, 1]')
        if not 0.0 <= self.target_quantile <= 1.0:
            raise InvalidConfiguration(
                'config', 'target_quantile', self.target_quantile, 'in [0, 1]'
            )
        if not 0.0 < self.alpha < 1.0:
            raise InvalidConfiguration('config', 'alpha', self.alpha, 'in (0, 1)')
        self.cohort.validate()
        self.program.validate()


@dataclass(frozen=True)
class PipelineResult:
    """
    Every table the reporting layer consumes.

    config is a private copy of the configuration the run used. The tables are
    produced once per run and are not modified by any later stage.
    """
    config: PipelineConfig
    patients: pd.DataFrame
    train: pd.DataFrame
    scored: pd.DataFrame
    coefficients: pd.DataFrame
    model_diagnostics: Tuple[str, ...]
    evaluations: Dict[float, ThresholdEvaluation]
    roc: pd.DataFrame
    auc: float
    target: TargetCohort
    baseline_average_cost: float
    roi: ROISummary

    @property
    def degenerate_model(self) -> bool:
        """Fit or any reported threshold hit a degenerate case."""
        return bool(self.model_diagnostics) or any(
            e.degenerate for e in self.evaluations.values()
        )

    def confusion_matrix(self, threshold: float) -> pd.DataFrame:
        return self.evaluations[threshold].confusion


def run_pipeline(
    config: Optional[PipelineConfig] = None,
    verbose: bool = False
) -> PipelineResult:
    """
    Run generation, training/scoring, selection and ROI estimation.

    Args:
        config: Pipeline configuration (defaults to PipelineConfig())
        verbose: Print stage progress

    Returns:
        PipelineResult

    Raises:
        InvalidConfiguration: Before generation, for bad inputs
        EmptyCohort: If the selector returns no patients
    """
    if config is None:
        config = PipelineConfig()
    config.validate()
    # The result keeps its own copy of the configuration
    config = copy.deepcopy(config)

    rng = np.random.default_rng(config.seed)

    patients = generate_cohort(config.n_patients, rng=rng, params=config.cohort)
    if verbose:
        print(f"Generated {len(patients)} patients "
              f"(high-risk rate {patients[LABEL].mean():.3f})")

    train, evaluation = stratified_split(patients, rng, config.eval_fraction)
    model = RiskModel(
        bucket_income=config.bucket_income,
        income_edges=config.income_edges,
        alpha=config.alpha,
        male_level=config.cohort.sex_levels[1],
    ).fit(train)
    scored = model.score(evaluation)

    y_eval = scored[LABEL].to_numpy()
    proba = scored[PROBABILITY].to_numpy()
    evaluations = {
        float(t): evaluate_threshold(y_eval, proba, t)
        for t in config.decision_thresholds
    }
    roc = roc_points(y_eval, proba)
    auc = roc_auc(y_eval, proba)
    if verbose:
        print(f"Fitted risk model on {len(train)} patients "
              f"({model.fit_method}), scored {len(scored)}: AUC={auc:.3f}")

    target = select_target_cohort(scored, config.target_quantile)
    if verbose:
        print(f"Selected {target.size} patients at cutoff {target.cutoff:.4f} "
              f"(q={target.quantile})")

    baseline = population_baseline_cost(patients)
    summary = estimate_roi(target, baseline, config.program)
    if verbose:
        print(f"ROI {summary.roi:+.2%} on program cost {summary.total_program_cost:,.2f}")

    return PipelineResult(
        config=config,
        patients=patients,
        train=train,
        scored=scored,
        coefficients=model.coefficients,
        model_diagnostics=tuple(model.diagnostics),
        evaluations=evaluations,
        roc=roc,
        auc=auc,
        target=target,
        baseline_average_cost=baseline,
        roi=summary,
    )


def compare_seeds(
    config: Optional[PipelineConfig] = None,
    n_repeats: int = 5,
    seed: int = 0
) -> Dict[str, Dict[str, float]]:
    """
    Repeat the pipeline over consecutive seeds.

    Returns:
        Dict mapping metric ('auc', 'roi', 'cohort_size') to mean/std/min/max/values
    """
    if config is None:
        config = PipelineConfig()
    if n_repeats <= 0:
        raise InvalidConfiguration('config', 'n_repeats', n_repeats, 'positive')

    metrics: Dict[str, List[float]] = {'auc': [], 'roi': [], 'cohort_size': []}
    for i in range(n_repeats):
        result = run_pipeline(replace(config, seed=seed + i * 1000))
        metrics['auc'].append(result.auc)
        metrics['roi'].append(result.roi.roi)
        metrics['cohort_size'].append(float(result.target.size))

    return {
        name: {
            'mean': float(np.mean(values)),
            'std': float(np.std(values)),
            'min': float(np.min(values)),
            'max': float(np.max(values)),
            'values': values,
        }
        for name, values in metrics.items()
    }


def print_pipeline_summary(result: PipelineResult) -> None:
    """Print a plain-text summary of a pipeline run."""
    roi = result.roi
    print(f"Pipeline summary ({len(result.patients)} patients, seed={result.config.seed})")
    print("=" * 50)
    print(f"{'evaluation patients':24s}: {len(result.scored)}")
    print(f"{'AUC':24s}: {result.auc:.3f}")
    for threshold, ev in sorted(result.evaluations.items()):
        flag = "  [degenerate]" if ev.degenerate else ""
        print(f"{'threshold ' + format(threshold, '.2f'):24s}: "
              f"sens={ev.sensitivity:.3f} spec={ev.specificity:.3f}{flag}")
    if result.model_diagnostics:
        print(f"{'model diagnostics':24s}: {'; '.join(result.model_diagnostics)}")
    print(f"{'target cohort':24s}: {result.target.size} (cutoff {result.target.cutoff:.4f})")
    print(f"{'baseline average cost':24s}: {roi.baseline_average_cost:12,.2f}")
    print(f"{'total expected cost':24s}: {roi.total_expected_cost:12,.2f}")
    print(f"{'total savings':24s}: {roi.total_savings:12,.2f}")
    print(f"{'total program cost':24s}: {roi.total_program_cost:12,.2f}")
    print(f"{'ROI':24s}: {roi.roi:+.2%}")
