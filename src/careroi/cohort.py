"""
Synthetic patient cohort with a known latent risk process.

Each patient gets demographics, five clinical flags, utilization counts and an
adherence score, all drawn independently. A latent risk index (linear in age,
flags and utilization, plus noise) is passed through a sigmoid and the
high-risk label is *sampled* from that probability, so the label is never a
deterministic function of the observed features. Annual cost is a different
linear combination (including the label) plus noise, clamped at zero.

Draw order from the random source (fixed, so a seed reproduces every column):
    1. age          2. sex            3. income
    4. clinical flags, in CLINICAL_FLAGS order
    5. utilization counts, in UTILIZATION_COUNTS order
    6. adherence    7. risk noise     8. label uniforms    9. cost noise
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.special import expit

from .errors import InvalidConfiguration


CLINICAL_FLAGS: Tuple[str, ...] = (
    'hypertension', 'diabetes', 'copd', 'depression', 'cancer'
)
UTILIZATION_COUNTS: Tuple[str, ...] = ('ed_visits', 'inpatient_admits', 'pcp_visits')

# Columns that describe the latent process; never model features.
LATENT_COLUMNS: Tuple[str, ...] = ('risk_index', 'risk_probability', 'high_risk')

DEFAULT_INCOME_EDGES: Tuple[float, ...] = (30_000.0, 45_000.0, 60_000.0, 75_000.0)


# =============================================================================
# Parameters
# =============================================================================

@dataclass
class CohortParameters:
    """
    Distributional and structural parameters of the synthetic population.

    Cost model:
        cost = cost_baseline + sum(cost_weights[c] * x_c)
               + cost_high_risk * high_risk + N(0, cost_noise_std)
    Risk model:
        risk_index = risk_intercept + risk_age * age
                     + sum(risk_weights[c] * x_c) + N(0, risk_noise_std)
        high_risk ~ Bernoulli(sigmoid(risk_index))
    """
    age_min: int = 18
    age_max: int = 90
    sex_levels: Tuple[str, str] = ('F', 'M')
    sex_weights: Tuple[float, float] = (0.52, 0.48)
    income_mean: float = 55_000.0
    income_std: float = 18_000.0

    prevalences: Dict[str, float] = field(default_factory=lambda: {
        'hypertension': 0.30,
        'diabetes': 0.15,
        'copd': 0.08,
        'depression': 0.12,
        'cancer': 0.05,
    })
    utilization_rates: Dict[str, float] = field(default_factory=lambda: {
        'ed_visits': 0.5,
        'inpatient_admits': 0.2,
        'pcp_visits': 3.0,
    })
    adherence_mean: float = 0.70
    adherence_std: float = 0.15

    cost_baseline: float = 2_000.0
    cost_weights: Dict[str, float] = field(default_factory=lambda: {
        'hypertension': 1_500.0,
        'diabetes': 2_500.0,
        'copd': 3_000.0,
        'depression': 1_200.0,
        'cancer': 8_000.0,
        'ed_visits': 800.0,
        'inpatient_admits': 6_000.0,
        'pcp_visits': 150.0,
    })
    cost_high_risk: float = 5_000.0
    cost_noise_std: float = 1_500.0

    risk_intercept: float = -5.0
    risk_age: float = 0.03
    risk_weights: Dict[str, float] = field(default_factory=lambda: {
        'hypertension': 0.4,
        'diabetes': 0.6,
        'copd': 0.8,
        'depression': 0.5,
        'cancer': 1.0,
        'ed_visits': 0.5,
        'inpatient_admits': 0.9,
        'pcp_visits': 0.05,
    })
    risk_noise_std: float = 1.0

    def validate(self) -> None:
        """Raise InvalidConfiguration for any out-of-domain parameter."""
        stage = 'cohort'
        if not self.age_min <= self.age_max:
            raise InvalidConfiguration(
                stage, 'age range', (self.age_min, self.age_max), 'age_min <= age_max'
            )
        if len(self.sex_levels) != 2 or len(self.sex_weights) != 2:
            raise InvalidConfiguration(stage, 'sex_levels', self.sex_levels, 'two levels')
        if any(w < 0 for w in self.sex_weights) or sum(self.sex_weights) <= 0:
            raise InvalidConfiguration(
                stage, 'sex_weights', self.sex_weights, 'non-negative with positive sum'
            )
        for name in CLINICAL_FLAGS:
            p = self.prevalences.get(name)
            if p is None or not 0.0 <= p <= 1.0:
                raise InvalidConfiguration(stage, f'prevalences[{name!r}]', p, 'in [0, 1]')
        for name in UTILIZATION_COUNTS:
            rate = self.utilization_rates.get(name)
            if rate is None or rate < 0:
                raise InvalidConfiguration(
                    stage, f'utilization_rates[{name!r}]', rate, 'a non-negative rate'
                )
        known = set(CLINICAL_FLAGS) | set(UTILIZATION_COUNTS)
        for weights_name, weights in (
            ('cost_weights', self.cost_weights),
            ('risk_weights', self.risk_weights),
        ):
            unknown = sorted(set(weights) - known)
            if unknown:
                raise InvalidConfiguration(
                    stage, weights_name, unknown, f'keys among {sorted(known)}'
                )
        for name, value in (
            ('income_std', self.income_std),
            ('adherence_std', self.adherence_std),
            ('cost_noise_std', self.cost_noise_std),
            ('risk_noise_std', self.risk_noise_std),
        ):
            if value < 0:
                raise InvalidConfiguration(stage, name, value, 'non-negative')


# =============================================================================
# Generation
# =============================================================================

def _patient_ids(n: int) -> np.ndarray:
    return np.array([f"PAT_{i:06d}" for i in range(1, n + 1)])


def generate_cohort(
    n: int,
    rng: Optional[np.random.Generator] = None,
    params: Optional[CohortParameters] = None,
    seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Generate n synthetic patients.

    Args:
        n: Population size (must be positive)
        rng: Random source; consumed in the order documented in this module
        params: Cohort parameters (defaults to CohortParameters())
        seed: Convenience seed used only when rng is None

    Returns:
        DataFrame with one row per patient
    """
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n <= 0:
        raise InvalidConfiguration('cohort', 'n', n, 'a positive integer')
    if params is None:
        params = CohortParameters()
    params.validate()
    if rng is None:
        rng = np.random.default_rng(seed)

    age = rng.integers(params.age_min, params.age_max + 1, size=n)
    sex_p = np.asarray(params.sex_weights, dtype=float)
    sex = rng.choice(np.asarray(params.sex_levels), size=n, p=sex_p / sex_p.sum())
    income = rng.normal(params.income_mean, params.income_std, size=n)

    flags = {
        name: rng.binomial(1, params.prevalences[name], size=n)
        for name in CLINICAL_FLAGS
    }
    counts = {
        name: rng.poisson(params.utilization_rates[name], size=n)
        for name in UTILIZATION_COUNTS
    }
    adherence = np.clip(
        rng.normal(params.adherence_mean, params.adherence_std, size=n), 0.0, 1.0
    )

    # Latent risk process
    covariates = {**flags, **counts}
    risk_index = params.risk_intercept + params.risk_age * age
    for name, weight in params.risk_weights.items():
        risk_index = risk_index + weight * covariates[name]
    risk_index = risk_index + rng.normal(0.0, params.risk_noise_std, size=n)
    risk_probability = expit(risk_index)
    high_risk = (rng.random(size=n) < risk_probability).astype(int)

    cost = np.full(n, params.cost_baseline, dtype=float)
    for name, weight in params.cost_weights.items():
        cost = cost + weight * covariates[name]
    cost = cost + params.cost_high_risk * high_risk
    cost = cost + rng.normal(0.0, params.cost_noise_std, size=n)
    cost = np.round(np.maximum(cost, 0.0), 2)

    return pd.DataFrame({
        'patient_id': _patient_ids(n),
        'age': age.astype(int),
        'sex': sex,
        'income': income,
        **{name: values.astype(int) for name, values in flags.items()},
        **{name: values.astype(int) for name, values in counts.items()},
        'adherence': adherence,
        'risk_index': risk_index,
        'risk_probability': risk_probability,
        'high_risk': high_risk,
        'cost': cost,
    })


# =============================================================================
# Helpers
# =============================================================================

def population_baseline_cost(patients: pd.DataFrame) -> float:
    """Mean annual cost over the whole population."""
    if patients.empty:
        raise InvalidConfiguration('cohort', 'patients', 0, 'a non-empty table')
    return float(patients['cost'].mean())


def income_bands(
    income: pd.Series,
    edges: Sequence[float] = DEFAULT_INCOME_EDGES
) -> pd.Series:
    """
    Bucket income into ordinal bands 0..len(edges).

    Bands are open below the first edge and above the last, so negative
    incomes land in band 0.
    """
    bins = [-np.inf, *sorted(edges), np.inf]
    return pd.cut(income, bins=bins, labels=False, right=False).astype(int)
