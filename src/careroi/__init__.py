"""
careroi - High-utilizer risk scoring and care-management ROI on a synthetic cohort.
"""

from .errors import (
    InvalidConfiguration,
    EmptyCohort,
    DegenerateModelFit,
)

from .cohort import (
    CLINICAL_FLAGS,
    UTILIZATION_COUNTS,
    CohortParameters,
    generate_cohort,
    population_baseline_cost,
    income_bands,
)

from .model import (
    RiskModel,
    ThresholdEvaluation,
    stratified_split,
    feature_matrix,
    evaluate_threshold,
    threshold_sweep,
    roc_points,
    roc_auc,
)

from .selection import (
    TargetCohort,
    select_target_cohort,
    profile_cohort,
)

from .roi import (
    ProgramParameters,
    ROISummary,
    estimate_roi,
    roi_sensitivity,
)

from .pipeline import (
    PipelineConfig,
    PipelineResult,
    run_pipeline,
    compare_seeds,
    print_pipeline_summary,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "InvalidConfiguration",
    "EmptyCohort",
    "DegenerateModelFit",
    # Cohort
    "CLINICAL_FLAGS",
    "UTILIZATION_COUNTS",
    "CohortParameters",
    "generate_cohort",
    "population_baseline_cost",
    "income_bands",
    # Model
    "RiskModel",
    "ThresholdEvaluation",
    "stratified_split",
    "feature_matrix",
    "evaluate_threshold",
    "threshold_sweep",
    "roc_points",
    "roc_auc",
    # Selection
    "TargetCohort",
    "select_target_cohort",
    "profile_cohort",
    # ROI
    "ProgramParameters",
    "ROISummary",
    "estimate_roi",
    "roi_sensitivity",
    # Pipeline
    "PipelineConfig",
    "PipelineResult",
    "run_pipeline",
    "compare_seeds",
    "print_pipeline_summary",
]
