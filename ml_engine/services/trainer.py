"""
Supervised trainer: logistic regression and Gini decision trees, no modeling library.

Pipeline (train_model):
1. Validate config against the data and build the numeric matrix
2. Seeded shuffle, then split at floor(n * (1 - testSplit)), keeping both sides non-empty
3. Fit the selected model on the train rows (normalization statistics from train rows only)
4. Predict train and test rows, compute held-out metrics and train accuracy
5. Package everything, including the explicit model handle, in a frozen TrainingResult

Logistic Regression:
    Full-batch gradient descent on one-hot targets with an L2 penalty on the weights.
    loss = mean cross-entropy + (lambda / 2) * ||W||^2
    dW   = (P - Y)^T X / n + lambda * W
    db   = sum(P - Y) / n          (biases are not regularized)

Decision Tree:
    Exhaustive midpoint thresholds on every feature, split chosen by minimum
    sample-weighted Gini of the children. A node becomes a majority-vote leaf at
    max depth, at <= 2 samples, when pure, or when no split lowers impurity.
    The reported "loss" trajectory is the weighted Gini of the tree truncated at
    each depth, so it is a real, monotone quantity rather than a synthetic curve.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ml_engine.core.config import get_settings
from ml_engine.core.exceptions import DegenerateSplitError, InvalidConfigError
from ml_engine.models.enums import ModelType
from ml_engine.models.schemas import (
    ClassCount,
    DecisionTreeModel,
    FeatureImportance,
    FeatureRow,
    LogisticModel,
    TrainedModel,
    TrainingConfig,
    TrainingResult,
    TreeNode,
)
from ml_engine.services.evaluation import accuracy_score, evaluate_predictions
from ml_engine.services.feature_builder import build_feature_matrix
from ml_engine.services.numeric import (
    gini_impurity,
    majority_label,
    make_rng,
    standardize,
    zero_variance_mask,
)
from ml_engine.services.predictor import output_probabilities, predict_labels


logger = logging.getLogger(__name__)


# A candidate split must beat the parent impurity by more than this
IMPURITY_TOLERANCE: float = 1e-12

# Nodes with this many samples or fewer become leaves
MIN_SPLIT_SAMPLES: int = 2


# =============================================================================
# Train / Test Split
# =============================================================================


def split_indices(
    n: int,
    test_split: float,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Shuffle row indices and cut them into train and test parts.

    The cut is floor(n * (1 - test_split)), clamped so that both parts hold
    at least one row.
    """
    order = rng.permutation(n)
    cut = int(np.floor(n * (1.0 - test_split)))
    cut = min(max(cut, 1), n - 1)
    return order[:cut], order[cut:]


# =============================================================================
# Logistic Regression
# =============================================================================


def train_logistic_regression(
    X: np.ndarray,
    y: Sequence[str],
    learning_rate: float,
    epochs: int,
    feature_names: Sequence[str],
    rng: np.random.Generator,
) -> Tuple[LogisticModel, List[float]]:
    """
    Fit a (multi-class) logistic regression by full-batch gradient descent.

    Args:
        X: Raw train matrix [rows x features]
        y: Train labels
        learning_rate: Gradient descent step size
        epochs: Number of full-batch updates
        feature_names: Column names, stored on the model
        rng: Generator used for weight initialization

    Returns:
        Tuple of (LogisticModel, per-epoch loss trajectory)
    """
    settings = get_settings()
    lam = settings.l2_lambda

    Xn, means, stds = standardize(X)
    classes = sorted(set(y))
    class_index = {label: i for i, label in enumerate(classes)}
    n_samples, n_features = Xn.shape
    n_classes = len(classes)

    Y = np.zeros((n_samples, n_classes))
    Y[np.arange(n_samples), [class_index[label] for label in y]] = 1.0

    W = (rng.random((n_classes, n_features)) - 0.5) * settings.weight_init_scale
    b = np.zeros(n_classes)

    losses: List[float] = []
    for _ in range(epochs):
        P = output_probabilities(Xn @ W.T + b)

        cross_entropy = -np.sum(Y * np.log(np.maximum(P, 1e-10))) / n_samples
        losses.append(float(cross_entropy + (lam / 2.0) * np.sum(W * W)))

        residual = P - Y
        grad_W = residual.T @ Xn / n_samples + lam * W
        grad_b = residual.sum(axis=0) / n_samples
        W = W - learning_rate * grad_W
        b = b - learning_rate * grad_b

    model = LogisticModel(
        weights=W.tolist(),
        biases=b.tolist(),
        classes=classes,
        means=means.tolist(),
        stds=stds.tolist(),
        featureNames=list(feature_names),
    )
    return model, losses


def logistic_importance(model: LogisticModel, X_train: np.ndarray) -> np.ndarray:
    """
    Mean absolute weight per feature over the classes that drive predictions.

    Binary models only use the first weight row. Features constant on the train
    rows carry no signal and are zeroed.
    """
    W = np.abs(np.asarray(model.weights, dtype=np.float64))
    if len(model.classes) == 2:
        W = W[:1]
    importance = W.mean(axis=0)
    importance[zero_variance_mask(X_train)] = 0.0
    return importance


# =============================================================================
# Decision Tree
# =============================================================================


def _class_tally(y: Sequence[str]) -> Tuple[str, List[ClassCount]]:
    prediction, tally = majority_label(y)
    return prediction, [ClassCount(label=label, count=count) for label, count in tally]


def find_best_split(X: np.ndarray, y: Sequence[str]) -> Tuple[int, float, float]:
    """
    Best (feature, threshold) by sample-weighted child Gini impurity.

    Thresholds are midpoints between consecutive distinct sorted values. Ties go
    to the earliest feature, then the lowest threshold.

    Returns:
        Tuple of (feature index, threshold, weighted child impurity)

    Raises:
        DegenerateSplitError: If no threshold exists or none lowers impurity
    """
    n_samples, n_features = X.shape
    labels = sorted(set(y))
    label_index = {label: i for i, label in enumerate(labels)}
    onehot = np.zeros((n_samples, len(labels)))
    onehot[np.arange(n_samples), [label_index[label] for label in y]] = 1.0
    totals = onehot.sum(axis=0)

    best: Optional[Tuple[int, float, float]] = None
    for f in range(n_features):
        order = np.argsort(X[:, f], kind="stable")
        xs = X[order, f]
        # Candidate cut after position i when the next value differs
        cut_positions = np.nonzero(xs[1:] > xs[:-1])[0]
        if len(cut_positions) == 0:
            continue

        cumulative = np.cumsum(onehot[order], axis=0)
        left_counts = cumulative[cut_positions]
        right_counts = totals - left_counts
        n_left = (cut_positions + 1).astype(np.float64)
        n_right = n_samples - n_left

        gini_left = 1.0 - np.sum((left_counts / n_left[:, None]) ** 2, axis=1)
        gini_right = 1.0 - np.sum((right_counts / n_right[:, None]) ** 2, axis=1)
        weighted = (n_left * gini_left + n_right * gini_right) / n_samples

        i = int(np.argmin(weighted))
        if best is None or weighted[i] < best[2]:
            pos = cut_positions[i]
            threshold = float((xs[pos] + xs[pos + 1]) / 2.0)
            best = (f, threshold, float(weighted[i]))

    if best is None:
        raise DegenerateSplitError("No candidate threshold: every feature is constant on this node")
    if best[2] >= gini_impurity(totals) - IMPURITY_TOLERANCE:
        raise DegenerateSplitError("No split lowers impurity")

    feature, threshold, _ = best
    go_left = X[:, feature] <= threshold
    if go_left.all() or not go_left.any():
        raise DegenerateSplitError("Midpoint collapsed onto a sample value")
    return best


def build_tree(X: np.ndarray, y: Sequence[str], depth: int, max_depth: int) -> TreeNode:
    """Recursively grow a tree over normalized rows."""
    prediction, counts = _class_tally(y)

    if depth >= max_depth or len(y) <= MIN_SPLIT_SAMPLES or len(counts) == 1:
        return TreeNode(prediction=prediction, counts=counts)

    try:
        feature, threshold, _ = find_best_split(X, y)
    except DegenerateSplitError as e:
        logger.debug(f"Leaf at depth {depth} with {len(y)} samples: {e}")
        return TreeNode(prediction=prediction, counts=counts)

    go_left = X[:, feature] <= threshold
    y_arr = np.asarray(y, dtype=object)
    return TreeNode(
        featureIndex=feature,
        threshold=threshold,
        left=build_tree(X[go_left], list(y_arr[go_left]), depth + 1, max_depth),
        right=build_tree(X[~go_left], list(y_arr[~go_left]), depth + 1, max_depth),
        counts=counts,
    )


def tree_importance(root: TreeNode, n_features: int) -> np.ndarray:
    """Training samples routed through splits on each feature."""
    importance = np.zeros(n_features)
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_leaf:
            continue
        importance[node.featureIndex] += node.sample_count
        stack.extend([node.left, node.right])
    return importance


def tree_depth(node: TreeNode) -> int:
    if node.is_leaf:
        return 0
    return 1 + max(tree_depth(node.left), tree_depth(node.right))


def _truncated_impurity(node: TreeNode, depth_limit: int, depth: int = 0) -> float:
    if node.is_leaf or depth >= depth_limit:
        return node.sample_count * gini_impurity([c.count for c in node.counts])
    return (
        _truncated_impurity(node.left, depth_limit, depth + 1)
        + _truncated_impurity(node.right, depth_limit, depth + 1)
    )


def impurity_trajectory(root: TreeNode) -> List[float]:
    """Weighted Gini of the tree cut off at depth 0, 1, ..., full depth."""
    total = root.sample_count
    return [
        _truncated_impurity(root, limit) / total
        for limit in range(tree_depth(root) + 1)
    ]


def train_decision_tree(
    X: np.ndarray,
    y: Sequence[str],
    max_depth: int,
    feature_names: Sequence[str],
    classes: Sequence[str],
) -> Tuple[DecisionTreeModel, List[float]]:
    """
    Grow a Gini decision tree on standardized train rows.

    Returns:
        Tuple of (DecisionTreeModel, impurity-by-depth trajectory)
    """
    Xn, means, stds = standardize(X)
    root = build_tree(Xn, list(y), 0, max_depth)
    model = DecisionTreeModel(
        root=root,
        classes=list(classes),
        means=means.tolist(),
        stds=stds.tolist(),
        featureNames=list(feature_names),
    )
    return model, impurity_trajectory(root)


# =============================================================================
# Training Pipeline
# =============================================================================


def _normalized_importance(raw: np.ndarray, feature_names: Sequence[str]) -> List[FeatureImportance]:
    total = raw.sum()
    shares = raw / total if total > 0 else np.zeros_like(raw)
    return [
        FeatureImportance(feature=name, importance=float(share))
        for name, share in zip(feature_names, shares)
    ]


def train_model(
    rows: Sequence[FeatureRow],
    config: TrainingConfig,
    seed: Optional[int] = None,
) -> TrainingResult:
    """
    Train a classifier on feature rows and evaluate it on a held-out split.

    Args:
        rows: Per-user feature rows
        config: Target, features, model type and hyperparameters
        seed: Seed for the shuffle and weight initialization (settings.random_seed when None)

    Returns:
        Frozen TrainingResult carrying metrics and the trained model handle

    Raises:
        EmptyDatasetError: If rows is empty
        InvalidConfigError: On an invalid feature list, target, held-out fraction,
            or fewer than two rows
    """
    started = time.perf_counter()

    if not 0.0 < config.testSplit < 1.0:
        raise InvalidConfigError(f"testSplit must lie strictly between 0 and 1, got {config.testSplit}")

    matrix = build_feature_matrix(rows, config.features, config.targetVariable)
    n = len(matrix.y)
    if n < 2:
        raise InvalidConfigError("At least two rows are needed to form a train and a test split")

    rng = make_rng(seed)
    train_idx, test_idx = split_indices(n, config.testSplit, rng)

    X_train, X_test = matrix.X[train_idx], matrix.X[test_idx]
    y_train = [matrix.y[i] for i in train_idx]
    y_test = [matrix.y[i] for i in test_idx]

    model: TrainedModel
    if config.modelType == ModelType.LOGISTIC_REGRESSION:
        model, losses = train_logistic_regression(
            X_train, y_train, config.learningRate, config.epochs, matrix.feature_names, rng,
        )
        raw_importance = logistic_importance(model, X_train)
    else:
        model, losses = train_decision_tree(
            X_train, y_train, config.maxDepth, matrix.feature_names, sorted(set(matrix.y)),
        )
        raw_importance = tree_importance(model.root, len(matrix.feature_names))

    test_predictions = predict_labels(model, X_test)
    train_predictions = predict_labels(model, X_train)
    metrics = evaluate_predictions(y_test, test_predictions)

    duration_ms = int(round((time.perf_counter() - started) * 1000))
    logger.info(
        f"Trained {config.modelType.value} on {len(train_idx)} rows "
        f"(test={len(test_idx)}, features={len(matrix.feature_names)}) "
        f"in {duration_ms}ms: accuracy={metrics.accuracy:.4f}"
    )

    return TrainingResult(
        modelId=f"model_{uuid.uuid4().hex[:12]}",
        modelType=config.modelType,
        accuracy=metrics.accuracy,
        precision=metrics.precision,
        recall=metrics.recall,
        f1Score=metrics.f1,
        logLoss=metrics.log_loss,
        specificity=metrics.specificity,
        mcc=metrics.mcc,
        trainAccuracy=accuracy_score(y_train, train_predictions),
        trainingDurationMs=duration_ms,
        confusionMatrix=metrics.confusion_matrix,
        classLabels=metrics.labels,
        featureImportance=_normalized_importance(raw_importance, matrix.feature_names),
        trainingLoss=losses,
        trainSize=len(train_idx),
        testSize=len(test_idx),
        trainUserIds=[matrix.user_ids[i] for i in train_idx],
        testUserIds=[matrix.user_ids[i] for i in test_idx],
        timestamp=datetime.now(timezone.utc),
        config=config,
        model=model,
    )
