"""
Numeric primitives shared by the trainer, the clustering engine and the diagnosis layer.

Provides:
- Column-wise standardization with stored statistics (zero-variance columns get std 1)
- Sigmoid / softmax activations
- Euclidean and pairwise distances
- Gini impurity
- Percentile with linear interpolation between order statistics
- The seeded random generator every stochastic step draws from

All matrix helpers take and return numpy arrays of dtype float64.
"""

from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ml_engine.core.config import get_settings


# Columns whose population std falls below this are treated as constant
ZERO_VARIANCE_EPS: float = 1e-12

# Logits are clipped to this magnitude before exponentiation
SIGMOID_CLIP: float = 500.0


# =============================================================================
# Random Generator
# =============================================================================


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """
    Build the seeded generator a computation threads through its random steps.

    Args:
        seed: Explicit seed. When None, the configured random_seed is used so
            that unseeded calls are still reproducible.

    Returns:
        numpy Generator seeded deterministically
    """
    if seed is None:
        seed = get_settings().random_seed
    return np.random.default_rng(seed)


# =============================================================================
# Standardization
# =============================================================================


def standardize(data: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Z-score each column using its population mean and standard deviation.

    Args:
        data: 2-D array [rows x features]

    Returns:
        Tuple of (normalized, means, stds). Constant columns get std 1, so
        they normalize to all zeros instead of dividing by zero.
    """
    data = np.asarray(data, dtype=np.float64)
    means = data.mean(axis=0)
    stds = data.std(axis=0)
    stds = np.where(stds < ZERO_VARIANCE_EPS, 1.0, stds)
    return (data - means) / stds, means, stds


def apply_standardization(
    data: np.ndarray,
    means: Sequence[float],
    stds: Sequence[float],
) -> np.ndarray:
    """Normalize rows with previously stored statistics, unchanged."""
    data = np.asarray(data, dtype=np.float64)
    return (data - np.asarray(means, dtype=np.float64)) / np.asarray(stds, dtype=np.float64)


def zero_variance_mask(data: np.ndarray) -> np.ndarray:
    """Boolean mask of columns with no variance."""
    data = np.asarray(data, dtype=np.float64)
    return data.std(axis=0) < ZERO_VARIANCE_EPS


# =============================================================================
# Activations
# =============================================================================


def sigmoid(x: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """Logistic function with the input clipped to +/-500."""
    return 1.0 / (1.0 + np.exp(-np.clip(x, -SIGMOID_CLIP, SIGMOID_CLIP)))


def softmax(logits: np.ndarray) -> np.ndarray:
    """
    Row-wise softmax.

    Subtracts the row maximum before exponentiating so large logits do not
    overflow. Accepts a 1-D vector or a 2-D [rows x classes] matrix.
    """
    logits = np.asarray(logits, dtype=np.float64)
    shifted = logits - logits.max(axis=-1, keepdims=True)
    exps = np.exp(shifted)
    return exps / exps.sum(axis=-1, keepdims=True)


# =============================================================================
# Distances
# =============================================================================


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance between two vectors."""
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(np.sqrt(np.dot(diff, diff)))


def pairwise_distances(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Euclidean distances between every row of a and every row of b.

    Returns:
        Array [len(a) x len(b)]
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    sq = (
        np.sum(a * a, axis=1)[:, None]
        + np.sum(b * b, axis=1)[None, :]
        - 2.0 * a @ b.T
    )
    # Rounding can push tiny distances below zero
    return np.sqrt(np.maximum(sq, 0.0))


# =============================================================================
# Impurity and Order Statistics
# =============================================================================


def gini_impurity(labels_or_counts: Union[Sequence[str], Iterable[int], np.ndarray]) -> float:
    """
    Gini impurity: probability that two labels drawn with replacement differ.

    Accepts either a sequence of labels or an array of per-class counts.

    Example:
        >>> gini_impurity(["a", "a", "b", "b"])
        0.5
        >>> gini_impurity(np.array([4, 0]))
        0.0
    """
    values = list(labels_or_counts)
    if not values:
        return 0.0
    if isinstance(values[0], str):
        _, counts = np.unique(np.asarray(values), return_counts=True)
    else:
        counts = np.asarray(values, dtype=np.float64)
    total = counts.sum()
    if total <= 0:
        return 0.0
    p = counts / total
    return float(1.0 - np.sum(p * p))


def percentile(values: Sequence[float], p: float) -> float:
    """
    Value at percentile p (0-100), interpolating linearly between order statistics.

    Returns 0.0 for an empty input.
    """
    if len(values) == 0:
        return 0.0
    return float(np.percentile(np.asarray(values, dtype=np.float64), p))


def population_std(values: Sequence[float]) -> float:
    """Population standard deviation, 0.0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64)))


def majority_label(labels: Sequence[str]) -> Tuple[str, List[Tuple[str, int]]]:
    """
    Most frequent label plus the (label, count) tally in first-seen order.

    Ties go to the label encountered first.
    """
    tally: dict = {}
    for label in labels:
        tally[label] = tally.get(label, 0) + 1
    best_label = labels[0]
    best_count = 0
    for label, count in tally.items():
        if count > best_count:
            best_label, best_count = label, count
    return best_label, list(tally.items())
