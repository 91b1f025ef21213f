"""
Classification metrics for held-out evaluation.

All metrics derive from a confusion matrix built over the sorted union of actual
and predicted labels (rows = actual, columns = predicted):

- accuracy: trace / total
- precision, recall, specificity: per-class one-vs-rest, macro-averaged
- F1: harmonic mean of macro precision and macro recall
- log-loss: approximation from confusion-matrix row proportions (models that do
  not produce calibrated probabilities still get a comparable number)
- MCC: closed form for two classes, generalized covariance form for three or more

Values are returned unrounded; presentation layers round as they see fit.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np


# Probabilities are floored here before taking logarithms
PROBABILITY_FLOOR: float = 1e-10


@dataclass
class ClassificationMetrics:
    """Metrics of one set of predictions against ground truth."""

    accuracy: float
    precision: float
    recall: float
    f1: float
    specificity: float
    log_loss: float
    mcc: float
    confusion_matrix: List[List[int]]
    labels: List[str]


def confusion_matrix(
    actual: Sequence[str],
    predicted: Sequence[str],
) -> Tuple[np.ndarray, List[str]]:
    """
    Confusion matrix over the sorted union of labels.

    Returns:
        Tuple of (matrix [classes x classes] of ints, sorted labels)
    """
    labels = sorted(set(actual) | set(predicted))
    index = {label: i for i, label in enumerate(labels)}
    cm = np.zeros((len(labels), len(labels)), dtype=np.int64)
    for a, p in zip(actual, predicted):
        cm[index[a], index[p]] += 1
    return cm, labels


def accuracy_score(actual: Sequence[str], predicted: Sequence[str]) -> float:
    if len(actual) == 0:
        return 0.0
    correct = sum(1 for a, p in zip(actual, predicted) if a == p)
    return correct / len(actual)


def macro_scores(cm: np.ndarray) -> Tuple[float, float, float]:
    """
    Macro-averaged precision, recall and specificity.

    A class with an empty denominator contributes 0 to the average.
    """
    total = cm.sum()
    n_classes = cm.shape[0]
    if n_classes == 0:
        return 0.0, 0.0, 0.0

    tp = np.diag(cm).astype(np.float64)
    predicted_totals = cm.sum(axis=0).astype(np.float64)
    actual_totals = cm.sum(axis=1).astype(np.float64)
    fp = predicted_totals - tp
    fn = actual_totals - tp
    tn = total - tp - fp - fn

    def _safe_div(num: np.ndarray, den: np.ndarray) -> np.ndarray:
        return np.divide(num, den, out=np.zeros_like(num), where=den > 0)

    precision = _safe_div(tp, predicted_totals).mean()
    recall = _safe_div(tp, actual_totals).mean()
    specificity = _safe_div(tn, tn + fp).mean()
    return float(precision), float(recall), float(specificity)


def f1_from(precision: float, recall: float) -> float:
    if precision + recall <= 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


def approximate_log_loss(
    actual: Sequence[str],
    predicted: Sequence[str],
    cm: np.ndarray,
    labels: Sequence[str],
) -> float:
    """
    Log-loss estimated from confusion-matrix row proportions.

    Each test row is assigned probability p = cm[actual, predicted] / row_total;
    correct rows contribute -log(p) and incorrect rows -log(1 - p).
    """
    if len(actual) == 0:
        return 0.0
    index = {label: i for i, label in enumerate(labels)}
    row_totals = cm.sum(axis=1)
    total = 0.0
    for a, p in zip(actual, predicted):
        i, j = index[a], index[p]
        prob = cm[i, j] / row_totals[i] if row_totals[i] > 0 else PROBABILITY_FLOOR
        prob = max(prob, PROBABILITY_FLOOR)
        if a == p:
            total -= np.log(prob)
        else:
            total -= np.log(max(1.0 - prob, PROBABILITY_FLOOR))
    return float(total / len(actual))


def matthews_corrcoef(cm: np.ndarray) -> float:
    """
    Matthews correlation coefficient.

    Two classes use the closed form with the first label as the positive class;
    three or more use the generalized covariance form. A zero denominator gives 0.
    """
    n_classes = cm.shape[0]
    cm = cm.astype(np.float64)

    if n_classes == 2:
        tp, fn = cm[0, 0], cm[0, 1]
        fp, tn = cm[1, 0], cm[1, 1]
        denom = np.sqrt((tp + fp) * (tp + fn) * (tn + fp) * (tn + fn))
        return float((tp * tn - fp * fn) / denom) if denom > 0 else 0.0

    if n_classes < 2:
        return 0.0

    n = cm.sum()
    correct = np.trace(cm)
    actual_totals = cm.sum(axis=1)
    predicted_totals = cm.sum(axis=0)
    cov_xy = n * correct - np.dot(actual_totals, predicted_totals)
    cov_xx = n * n - np.dot(actual_totals, actual_totals)
    cov_yy = n * n - np.dot(predicted_totals, predicted_totals)
    denom = np.sqrt(cov_xx * cov_yy)
    return float(cov_xy / denom) if denom > 0 else 0.0


def evaluate_predictions(actual: Sequence[str], predicted: Sequence[str]) -> ClassificationMetrics:
    """
    Compute every held-out metric for one set of predictions.

    Args:
        actual: Ground-truth labels
        predicted: Model labels, aligned with actual

    Returns:
        ClassificationMetrics with the confusion matrix and its label order
    """
    cm, labels = confusion_matrix(actual, predicted)
    precision, recall, specificity = macro_scores(cm)
    return ClassificationMetrics(
        accuracy=accuracy_score(actual, predicted),
        precision=precision,
        recall=recall,
        f1=f1_from(precision, recall),
        specificity=specificity,
        log_loss=approximate_log_loss(actual, predicted, cm, labels),
        mcc=matthews_corrcoef(cm),
        confusion_matrix=cm.tolist(),
        labels=labels,
    )
