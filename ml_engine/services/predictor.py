"""
Predictor: applies an explicit trained-model handle to feature vectors.

The engine keeps no "current model". Callers hold the TrainedModel returned in
TrainingResult.model (or restored from persistence with restore_model) and pass it
to every prediction call.

Logistic models:
    Inputs are normalized with the stored train-set statistics, then
    logits = W @ x + b. Binary models report [sigmoid(z0), 1 - sigmoid(z0)];
    three or more classes use softmax.

Decision trees:
    The normalized vector walks the tree to a leaf whose majority label is the
    prediction. Probabilities follow settings.tree_probability_mode:
    - heuristic: 0.85 for the predicted class, 0.15 spread evenly over the rest.
      This is a fixed approximation, not a posterior estimate.
    - leaf_frequency: class frequencies of the training rows that reached the leaf.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from pydantic import TypeAdapter

from ml_engine.core.config import get_settings
from ml_engine.core.exceptions import InvalidConfigError, ModelNotLoadedError
from ml_engine.models.enums import TreeProbabilityMode
from ml_engine.models.schemas import (
    ClassProbability,
    DecisionTreeModel,
    FeatureValue,
    LogisticModel,
    PredictionResult,
    TrainedModel,
    TreeNode,
)
from ml_engine.services.numeric import apply_standardization, sigmoid, softmax


logger = logging.getLogger(__name__)


# Probability reported for the predicted class under the heuristic mode
HEURISTIC_TOP_PROBABILITY: float = 0.85

_MODEL_ADAPTER: TypeAdapter = TypeAdapter(TrainedModel)


# =============================================================================
# Model Internals
# =============================================================================


def output_probabilities(logits: np.ndarray) -> np.ndarray:
    """
    Turn a [rows x classes] logit matrix into class probabilities.

    Binary models only use the first logit: [sigmoid(z0), 1 - sigmoid(z0)].
    """
    logits = np.atleast_2d(logits)
    if logits.shape[1] == 2:
        p0 = sigmoid(logits[:, 0])
        return np.column_stack([p0, 1.0 - p0])
    return softmax(logits)


def logistic_probability_matrix(model: LogisticModel, X: np.ndarray) -> np.ndarray:
    """Class probabilities for raw (unnormalized) rows."""
    Xn = apply_standardization(np.atleast_2d(X), model.means, model.stds)
    W = np.asarray(model.weights, dtype=np.float64)
    b = np.asarray(model.biases, dtype=np.float64)
    return output_probabilities(Xn @ W.T + b)


def find_leaf(node: TreeNode, row: Sequence[float]) -> TreeNode:
    """Walk a normalized row down to its leaf; left means value <= threshold."""
    while not node.is_leaf:
        if row[node.featureIndex] <= node.threshold:
            node = node.left
        else:
            node = node.right
    return node


def predict_labels(model: TrainedModel, X: np.ndarray) -> List[str]:
    """Predicted labels for raw rows, in row order."""
    X = np.atleast_2d(np.asarray(X, dtype=np.float64))
    if isinstance(model, LogisticModel):
        probs = logistic_probability_matrix(model, X)
        return [model.classes[i] for i in np.argmax(probs, axis=1)]

    Xn = apply_standardization(X, model.means, model.stds)
    return [find_leaf(model.root, row).prediction for row in Xn]


def tree_probabilities(
    model: DecisionTreeModel,
    leaf: TreeNode,
    mode: TreeProbabilityMode,
) -> List[float]:
    """Per-class probabilities for a reached leaf, ordered like model.classes."""
    n_classes = len(model.classes)
    if n_classes == 1:
        return [1.0]

    if mode == TreeProbabilityMode.LEAF_FREQUENCY:
        tally = {c.label: c.count for c in leaf.counts}
        total = leaf.sample_count
        return [tally.get(label, 0) / total for label in model.classes]

    rest = (1.0 - HEURISTIC_TOP_PROBABILITY) / (n_classes - 1)
    return [
        HEURISTIC_TOP_PROBABILITY if label == leaf.prediction else rest
        for label in model.classes
    ]


# =============================================================================
# Prediction
# =============================================================================


def _feature_vector(model: TrainedModel, features: Mapping[str, Any]) -> np.ndarray:
    missing = [name for name in model.featureNames if name not in features]
    if missing:
        raise InvalidConfigError(f"Missing features for prediction: {missing}")

    values = []
    for name in model.featureNames:
        value = features[name]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidConfigError(f"Feature '{name}' must be numeric, got {value!r}")
        values.append(float(value))
    return np.asarray(values, dtype=np.float64)


def predict(
    model: Optional[TrainedModel],
    features: Dict[str, FeatureValue],
) -> PredictionResult:
    """
    Predict the class of one feature vector.

    Args:
        model: Trained model handle
        features: Feature name -> value, keyed like the training columns.
            Extra keys are ignored and echoed back.

    Returns:
        PredictionResult with the label, per-class probabilities and the input

    Raises:
        ModelNotLoadedError: If no model handle is supplied
        InvalidConfigError: If a model feature is missing or not numeric
    """
    if model is None:
        raise ModelNotLoadedError("No trained model supplied; train or restore a model first")

    x = _feature_vector(model, features)

    if isinstance(model, LogisticModel):
        probs = logistic_probability_matrix(model, x)[0]
        prediction = model.classes[int(np.argmax(probs))]
        probabilities = [float(p) for p in probs]
    else:
        xn = apply_standardization(x[None, :], model.means, model.stds)[0]
        leaf = find_leaf(model.root, xn)
        prediction = leaf.prediction
        probabilities = tree_probabilities(model, leaf, get_settings().tree_probability_mode)

    return PredictionResult(
        prediction=prediction,
        probabilities=[
            ClassProbability(label=label, probability=min(max(p, 0.0), 1.0))
            for label, p in zip(model.classes, probabilities)
        ],
        inputFeatures=dict(features),
    )


def predict_batch(
    model: Optional[TrainedModel],
    rows: Sequence[Dict[str, FeatureValue]],
) -> List[PredictionResult]:
    """Predict every feature vector in rows, in order."""
    return [predict(model, features) for features in rows]


# =============================================================================
# Persistence
# =============================================================================


def serialize_model(model: TrainedModel) -> Dict[str, Any]:
    """
    Flatten a model to JSON-compatible data.

    Tree nodes stay nested and class tallies are explicit label/count lists, so
    the blob survives any JSON store unchanged.
    """
    return model.model_dump(mode="json")


def restore_model(blob: Optional[Mapping[str, Any]]) -> Optional[TrainedModel]:
    """
    Rebuild a model handle from serialize_model output.

    Returns None for an empty blob or one without a model type. A blob with a
    known type but invalid content raises pydantic.ValidationError.
    """
    if not blob or not blob.get("type"):
        return None
    model = _MODEL_ADAPTER.validate_python(dict(blob))
    logger.debug(f"Restored {model.type} model over {len(model.featureNames)} features")
    return model
