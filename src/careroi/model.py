"""
High-utilizer risk model.

Logistic regression fit by maximum likelihood on a stratified training
partition, scored on the held-out evaluation partition. Diagnostics cover the
coefficient table (estimate, standard error, significance), thresholded
confusion matrices and the ROC curve / AUC.

Degenerate cases (single-class labels, constant features, singular or
perfectly separated designs, predictions that collapse to one class) are
never fatal: they emit a DegenerateModelFit warning and surface as flags and
NaN metrics.
"""

import math
import warnings
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from scipy.special import expit, logit
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import confusion_matrix, roc_auc_score, roc_curve
from sklearn.model_selection import train_test_split
from statsmodels.tools.sm_exceptions import (
    PerfectSeparationError,
    PerfectSeparationWarning,
)

from .cohort import (
    CLINICAL_FLAGS,
    UTILIZATION_COUNTS,
    DEFAULT_INCOME_EDGES,
    income_bands,
)
from .errors import InvalidConfiguration, DegenerateModelFit


LABEL = 'high_risk'
PROBABILITY = 'predicted_probability'
INTERCEPT = 'const'


# =============================================================================
# Train / evaluation split
# =============================================================================

def stratified_split(
    patients: pd.DataFrame,
    rng: np.random.Generator,
    eval_fraction: float = 0.25,
    label: str = LABEL
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split patients into training and evaluation partitions, stratified on label.

    The shuffling seed is drawn from rng, so the split continues the same
    random stream that generated the cohort.

    Returns:
        (train, evaluation) as new DataFrames; sizes sum to len(patients)
    """
    if not 0.0 < eval_fraction < 1.0:
        raise InvalidConfiguration('split', 'eval_fraction', eval_fraction, 'in (0, 1)')
    n = len(patients)
    if n < 2:
        raise InvalidConfiguration('split', 'patients', n, 'at least 2 rows')

    random_state = int(rng.integers(0, 2**32 - 1))

    n_eval = math.ceil(eval_fraction * n)
    n_train = n - n_eval
    class_counts = patients[label].value_counts()
    n_classes = len(class_counts)
    stratify = patients[label]
    if class_counts.min() < 2 or min(n_eval, n_train) < n_classes:
        warnings.warn(
            f"[split] cannot stratify on {label!r} (class counts "
            f"{class_counts.to_dict()}); using an unstratified split",
            DegenerateModelFit,
            stacklevel=2
        )
        stratify = None

    train, evaluation = train_test_split(
        patients,
        test_size=eval_fraction,
        random_state=random_state,
        stratify=stratify
    )
    return train.copy(), evaluation.copy()


# =============================================================================
# Features
# =============================================================================

def feature_matrix(
    patients: pd.DataFrame,
    bucket_income: bool = True,
    income_edges: Sequence[float] = DEFAULT_INCOME_EDGES,
    male_level: str = 'M'
) -> pd.DataFrame:
    """
    Model features for each patient.

    Cost, the latent risk columns and the label are never included.
    """
    X = pd.DataFrame(index=patients.index)
    X['age'] = patients['age'].astype(float)
    X['sex_male'] = (patients['sex'] == male_level).astype(float)
    if bucket_income:
        X['income_band'] = income_bands(patients['income'], income_edges).astype(float)
    else:
        X['income'] = patients['income'].astype(float)
    for name in CLINICAL_FLAGS + UTILIZATION_COUNTS:
        X[name] = patients[name].astype(float)
    X['adherence'] = patients['adherence'].astype(float)
    return X


# =============================================================================
# Model
# =============================================================================

class RiskModel:
    """
    Logistic regression risk model.

    Args:
        bucket_income: Replace raw income with ordinal income bands
        income_edges: Band edges used when bucket_income is True
        alpha: Significance level for the coefficient table
        label: Name of the binary target column
        male_level: Value of the sex column encoded as sex_male = 1
        maxiter: Iteration limit for the maximum likelihood fit
    """

    def __init__(
        self,
        bucket_income: bool = True,
        income_edges: Sequence[float] = DEFAULT_INCOME_EDGES,
        alpha: float = 0.05,
        label: str = LABEL,
        male_level: str = 'M',
        maxiter: int = 100
    ):
        if not 0.0 < alpha < 1.0:
            raise InvalidConfiguration('model', 'alpha', alpha, 'in (0, 1)')
        self.bucket_income = bucket_income
        self.income_edges = tuple(income_edges)
        self.alpha = alpha
        self.label = label
        self.male_level = male_level
        self.maxiter = maxiter

        self.coefficients: Optional[pd.DataFrame] = None
        self.diagnostics: List[str] = []
        self.fit_method: Optional[str] = None
        self._params: Optional[pd.Series] = None

    @property
    def is_fitted(self) -> bool:
        return self._params is not None

    @property
    def degenerate(self) -> bool:
        """True if the fit needed any degenerate-case handling."""
        return bool(self.diagnostics)

    def features(self, patients: pd.DataFrame) -> pd.DataFrame:
        return feature_matrix(
            patients, self.bucket_income, self.income_edges, self.male_level
        )

    def _flag(self, message: str) -> None:
        self.diagnostics.append(message)
        warnings.warn(f"[model] {message}", DegenerateModelFit, stacklevel=3)

    def fit(self, train: pd.DataFrame) -> 'RiskModel':
        """Fit coefficients by maximum likelihood on the training partition."""
        if train.empty:
            raise InvalidConfiguration('model', 'train', 0, 'a non-empty table')

        X = self.features(train)
        y = train[self.label].astype(int).to_numpy()
        self.diagnostics = []

        constant = [c for c in X.columns if X[c].nunique() <= 1]
        if constant:
            self._flag(f"dropping constant features {constant}")
        used = [c for c in X.columns if c not in constant]

        estimates = pd.Series(np.nan, index=[INTERCEPT] + list(X.columns))
        std_errors = pd.Series(np.nan, index=estimates.index)

        single_class = len(np.unique(y)) < 2
        if single_class or not used:
            # Intercept-only model at the clipped observed rate
            if single_class:
                self._flag(f"training label has a single class ({int(y[0])})")
            rate = np.clip(y.mean(), 1e-6, 1 - 1e-6)
            estimates[INTERCEPT] = float(logit(rate))
            self.fit_method = 'constant'
            used = []
        else:
            design = sm.add_constant(X[used], has_constant='add')
            if np.linalg.matrix_rank(design.to_numpy()) < design.shape[1]:
                self._flag("singular design matrix")
                fitted = None
            else:
                fitted = self._fit_mle(y, design)

            if fitted is not None:
                estimates[fitted.params.index] = fitted.params
                std_errors[fitted.bse.index] = fitted.bse
                self.fit_method = 'mle'
            else:
                clf = LogisticRegression(C=1e4, max_iter=1000)
                clf.fit(X[used].to_numpy(), y)
                estimates[INTERCEPT] = float(clf.intercept_[0])
                estimates[used] = clf.coef_[0]
                self.fit_method = 'penalised'

        self._params = estimates[[INTERCEPT] + used]
        self.coefficients = self._coefficient_table(estimates, std_errors)
        return self

    def _fit_mle(self, y: np.ndarray, design: pd.DataFrame):
        try:
            with warnings.catch_warnings():
                warnings.simplefilter('error', PerfectSeparationWarning)
                fitted = sm.Logit(y, design).fit(disp=0, maxiter=self.maxiter)
        except (PerfectSeparationError, PerfectSeparationWarning):
            self._flag("perfect separation in training data")
            return None
        except np.linalg.LinAlgError as exc:
            self._flag(f"singular information matrix ({exc})")
            return None
        if not fitted.mle_retvals.get('converged', True):
            self._flag(f"maximum likelihood did not converge in {self.maxiter} iterations")
        return fitted

    def _coefficient_table(
        self,
        estimates: pd.Series,
        std_errors: pd.Series
    ) -> pd.DataFrame:
        z = estimates / std_errors
        p = 2.0 * stats.norm.sf(np.abs(z))
        table = pd.DataFrame({
            'term': estimates.index,
            'estimate': estimates.to_numpy(),
            'std_error': std_errors.to_numpy(),
            'z_value': z.to_numpy(),
            'p_value': p,
        })
        table['significant'] = table['p_value'] < self.alpha
        return table

    def predict_proba(self, patients: pd.DataFrame) -> np.ndarray:
        """Probability of high risk for each patient, in [0, 1]."""
        if not self.is_fitted:
            raise RuntimeError("RiskModel must be fitted before predicting")
        X = self.features(patients)
        used = [c for c in self._params.index if c != INTERCEPT]
        log_odds = self._params[INTERCEPT] + X[used].to_numpy() @ self._params[used].to_numpy()
        return expit(np.asarray(log_odds, dtype=float))

    def score(self, evaluation: pd.DataFrame) -> pd.DataFrame:
        """Copy of the evaluation partition with a predicted_probability column."""
        scored = evaluation.copy()
        scored[PROBABILITY] = self.predict_proba(evaluation)
        return scored


# =============================================================================
# Diagnostics
# =============================================================================

def _ratio(numerator: float, denominator: float) -> float:
    return float(numerator) / denominator if denominator > 0 else float('nan')


@dataclass(frozen=True)
class ThresholdEvaluation:
    """Confusion matrix and derived rates at one decision threshold."""
    threshold: float
    confusion: pd.DataFrame
    tn: int
    fp: int
    fn: int
    tp: int
    sensitivity: float
    specificity: float
    precision: float
    accuracy: float
    degenerate: bool

    def as_dict(self) -> Dict[str, float]:
        """Scalar fields only (confusion table omitted)."""
        out = asdict(self)
        out.pop('confusion')
        return out


def evaluate_threshold(
    y_true: Sequence[int],
    proba: Sequence[float],
    threshold: float = 0.5,
    warn: bool = True
) -> ThresholdEvaluation:
    """
    Classify at `proba >= threshold` and summarise against the true labels.

    The confusion table has predicted classes as rows and actual classes as
    columns. Only predicted classes that occur get a row, so predictions that
    collapse to one class give a single-row table. Rates with a zero
    denominator are NaN.
    """
    if not 0.0 <= threshold <= 1.0:
        raise InvalidConfiguration('model', 'threshold', threshold, 'in [0, 1]')
    y = np.asarray(y_true).astype(int)
    predicted = (np.asarray(proba, dtype=float) >= threshold).astype(int)

    tn, fp, fn, tp = (int(v) for v in confusion_matrix(y, predicted, labels=[0, 1]).ravel())
    confusion = pd.crosstab(
        pd.Series(predicted, name='predicted'),
        pd.Series(y, name='actual')
    ).reindex(columns=[0, 1], fill_value=0)

    degenerate = len(np.unique(predicted)) < 2
    if degenerate and warn:
        warnings.warn(
            f"[model] all predictions are class {int(predicted[0]) if len(predicted) else '-'} "
            f"at threshold {threshold}",
            DegenerateModelFit,
            stacklevel=2
        )

    return ThresholdEvaluation(
        threshold=float(threshold),
        confusion=confusion,
        tn=tn, fp=fp, fn=fn, tp=tp,
        sensitivity=_ratio(tp, tp + fn),
        specificity=_ratio(tn, tn + fp),
        precision=_ratio(tp, tp + fp),
        accuracy=_ratio(tp + tn, len(y)),
        degenerate=degenerate,
    )


def threshold_sweep(
    y_true: Sequence[int],
    proba: Sequence[float],
    thresholds: Optional[Sequence[float]] = None
) -> pd.DataFrame:
    """Metrics at each threshold (default 0, 0.05, ..., 1)."""
    if thresholds is None:
        thresholds = np.linspace(0.0, 1.0, 21)
    rows = [
        evaluate_threshold(y_true, proba, float(t), warn=False).as_dict()
        for t in thresholds
    ]
    return pd.DataFrame(rows)


def _single_class(y: np.ndarray) -> bool:
    if len(np.unique(y)) < 2:
        warnings.warn(
            "[model] evaluation labels hold a single class; ROC/AUC undefined",
            DegenerateModelFit,
            stacklevel=3
        )
        return True
    return False


def roc_points(y_true: Sequence[int], proba: Sequence[float]) -> pd.DataFrame:
    """ROC curve as (fpr, tpr, threshold) rows; empty if undefined."""
    y = np.asarray(y_true).astype(int)
    if _single_class(y):
        return pd.DataFrame(columns=['fpr', 'tpr', 'threshold'], dtype=float)
    fpr, tpr, thr = roc_curve(y, np.asarray(proba, dtype=float))
    return pd.DataFrame({'fpr': fpr, 'tpr': tpr, 'threshold': thr})


def roc_auc(y_true: Sequence[int], proba: Sequence[float]) -> float:
    """Area under the ROC curve from ranked probabilities (NaN if undefined)."""
    y = np.asarray(y_true).astype(int)
    if _single_class(y):
        return float('nan')
    return float(roc_auc_score(y, np.asarray(proba, dtype=float)))
