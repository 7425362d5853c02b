"""
Return on investment of a care-management program over a target cohort.

Expected cost uses the population-wide baseline average cost weighted by each
patient's predicted probability, not the patient's own simulated cost:

    exposure      = sum(p_i * baseline_average_cost)
    savings       = exposure * savings_rate
    program_cost  = n * program_cost_per_patient
    roi           = (savings - program_cost) / program_cost

ROI is a signed ratio and is never clamped.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .errors import InvalidConfiguration, EmptyCohort
from .model import PROBABILITY
from .selection import TargetCohort


@dataclass
class ProgramParameters:
    """
    Care-management program assumptions.

    savings_rate: Fraction of expected cost avoided per enrolled patient
    program_cost_per_patient: Fixed cost of enrolling one patient
    """
    savings_rate: float = 0.12
    program_cost_per_patient: float = 400.0

    def validate(self) -> None:
        if not 0.0 <= self.savings_rate <= 1.0:
            raise InvalidConfiguration('roi', 'savings_rate', self.savings_rate, 'in [0, 1]')
        if not self.program_cost_per_patient > 0:
            raise InvalidConfiguration(
                'roi', 'program_cost_per_patient', self.program_cost_per_patient, 'positive'
            )


@dataclass(frozen=True)
class ROISummary:
    """Aggregate financial outcome for one target cohort."""
    n_patients: int
    baseline_average_cost: float
    savings_rate: float
    program_cost_per_patient: float
    expected_cost_per_patient: float
    total_expected_cost: float
    total_savings: float
    total_program_cost: float
    net_savings: float
    roi: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def _cohort_probabilities(
    cohort: Union[TargetCohort, pd.DataFrame, Sequence[float]]
) -> np.ndarray:
    if isinstance(cohort, TargetCohort):
        return cohort.probabilities.astype(float)
    if isinstance(cohort, pd.DataFrame):
        return cohort[PROBABILITY].to_numpy(dtype=float)
    return np.asarray(cohort, dtype=float)


def estimate_roi(
    cohort: Union[TargetCohort, pd.DataFrame, Sequence[float]],
    baseline_average_cost: float,
    program: Optional[ProgramParameters] = None
) -> ROISummary:
    """
    Estimate program ROI for a target cohort.

    Args:
        cohort: TargetCohort, scored DataFrame, or raw predicted probabilities
        baseline_average_cost: Population-wide average annual cost
        program: Program assumptions (defaults to ProgramParameters())

    Returns:
        ROISummary

    Raises:
        EmptyCohort: If the cohort has no patients
    """
    if program is None:
        program = ProgramParameters()
    program.validate()
    if not np.isfinite(baseline_average_cost) or baseline_average_cost < 0:
        raise InvalidConfiguration(
            'roi', 'baseline_average_cost', baseline_average_cost, 'finite and non-negative'
        )

    probabilities = _cohort_probabilities(cohort)
    n = len(probabilities)
    if n == 0:
        cutoff = cohort.cutoff if isinstance(cohort, TargetCohort) else float('nan')
        raise EmptyCohort('roi', cutoff)
    if np.any((probabilities < 0) | (probabilities > 1)) or np.any(np.isnan(probabilities)):
        raise InvalidConfiguration(
            'roi', 'probabilities',
            (float(np.nanmin(probabilities)), float(np.nanmax(probabilities))),
            'in [0, 1] and not NaN'
        )

    expected_costs = probabilities * baseline_average_cost
    total_expected_cost = float(np.sum(expected_costs))
    total_savings = total_expected_cost * program.savings_rate
    total_program_cost = n * program.program_cost_per_patient
    net_savings = total_savings - total_program_cost

    return ROISummary(
        n_patients=n,
        baseline_average_cost=float(baseline_average_cost),
        savings_rate=program.savings_rate,
        program_cost_per_patient=program.program_cost_per_patient,
        expected_cost_per_patient=float(np.mean(expected_costs)),
        total_expected_cost=total_expected_cost,
        total_savings=total_savings,
        total_program_cost=total_program_cost,
        net_savings=net_savings,
        roi=net_savings / total_program_cost,
    )


def roi_sensitivity(
    cohort: Union[TargetCohort, pd.DataFrame, Sequence[float]],
    baseline_average_cost: float,
    savings_rates: Sequence[float] = (0.06, 0.09, 0.12, 0.15, 0.18),
    program_costs: Sequence[float] = (200.0, 300.0, 400.0, 500.0, 600.0)
) -> pd.DataFrame:
    """
    ROI over a grid of program assumptions.

    Returns:
        DataFrame with one row per (savings_rate, program_cost_per_patient)
    """
    rows = []
    for rate in savings_rates:
        for cost in program_costs:
            summary = estimate_roi(
                cohort,
                baseline_average_cost,
                ProgramParameters(savings_rate=rate, program_cost_per_patient=cost)
            )
            rows.append({
                'savings_rate': rate,
                'program_cost_per_patient': cost,
                'total_savings': summary.total_savings,
                'total_program_cost': summary.total_program_cost,
                'roi': summary.roi,
            })
    return pd.DataFrame(rows)
