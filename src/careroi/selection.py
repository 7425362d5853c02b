"""
Target cohort selection from scored probabilities.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from .errors import InvalidConfiguration
from .model import PROBABILITY, LABEL


@dataclass(frozen=True)
class TargetCohort:
    """Patients at or above the quantile cutoff, highest probability first."""
    patients: pd.DataFrame
    cutoff: float
    quantile: float
    n_scored: int

    @property
    def size(self) -> int:
        return len(self.patients)

    @property
    def fraction(self) -> float:
        """Selected share of the scored partition."""
        return self.size / self.n_scored if self.n_scored else float('nan')

    @property
    def probabilities(self) -> np.ndarray:
        return self.patients[PROBABILITY].to_numpy()


def select_target_cohort(
    scored: pd.DataFrame,
    quantile: float = 0.90,
    probability_column: str = PROBABILITY
) -> TargetCohort:
    """
    Select every patient whose probability is >= the q-th quantile.

    The cutoff uses numpy's default (linear) quantile interpolation. Patients
    exactly at the cutoff are included, so ties can push the selected share
    above 1 - q. An empty selection is returned as-is; the ROI stage decides
    whether that is fatal.

    Args:
        scored: Scored evaluation partition
        quantile: Target quantile in [0, 1]
        probability_column: Column holding predicted probabilities

    Returns:
        TargetCohort sorted descending by probability (ties by patient_id)
    """
    if not 0.0 <= quantile <= 1.0:
        raise InvalidConfiguration('selection', 'quantile', quantile, 'in [0, 1]')
    if scored.empty:
        raise InvalidConfiguration('selection', 'scored', 0, 'a non-empty table')

    probabilities = scored[probability_column].to_numpy(dtype=float)
    cutoff = float(np.quantile(probabilities, quantile))

    selected = scored.loc[probabilities >= cutoff]
    sort_by = [probability_column]
    ascending = [False]
    if 'patient_id' in selected.columns:
        sort_by.append('patient_id')
        ascending.append(True)
    selected = selected.sort_values(sort_by, ascending=ascending, kind='mergesort')

    return TargetCohort(
        patients=selected.copy(),
        cutoff=cutoff,
        quantile=float(quantile),
        n_scored=len(scored),
    )


def profile_cohort(
    population: pd.DataFrame,
    cohort: TargetCohort,
    columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Compare column means of the target cohort against the population.

    Args:
        population: Reference table (full population or scored partition)
        cohort: Selected target cohort
        columns: Numeric columns to compare (default: all shared numeric columns)

    Returns:
        DataFrame indexed by column with population/cohort means and their ratio
    """
    if columns is None:
        numeric = population.select_dtypes(include='number').columns
        columns = [c for c in numeric if c in cohort.patients.columns]

    rows = []
    for column in columns:
        pop_mean = float(population[column].mean())
        cohort_mean = float(cohort.patients[column].mean()) if cohort.size else float('nan')
        rows.append({
            'column': column,
            'population_mean': pop_mean,
            'cohort_mean': cohort_mean,
            'ratio': cohort_mean / pop_mean if pop_mean else float('nan'),
        })

    profile = pd.DataFrame(rows).set_index('column')
    profile.attrs['population_size'] = len(population)
    profile.attrs['cohort_size'] = cohort.size
    if LABEL in cohort.patients.columns and cohort.size:
        profile.attrs['cohort_label_rate'] = float(cohort.patients[LABEL].mean())
    return profile
