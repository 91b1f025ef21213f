"""
Enumeration definitions for the ML engine.

All enums inherit from both `str` and `Enum` to ensure JSON serialization compatibility
with Pydantic models, enabling automatic serialization/deserialization in API responses.
"""

from enum import Enum


class ModelType(str, Enum):
    """
    Supervised model families supported by the trainer.

    - logistic_regression: multinomial logistic regression (sigmoid for 2 classes)
    - decision_tree: binary-split Gini decision tree
    """
    LOGISTIC_REGRESSION = "logistic_regression"
    DECISION_TREE = "decision_tree"


class FeatureType(str, Enum):
    """Value kind of a feature column."""
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"


class FeatureSource(str, Enum):
    """Whether a feature comes straight from the logs or is derived."""
    RAW = "raw"
    ENGINEERED = "engineered"


class PersonaFeatureKind(str, Enum):
    """
    Statistical shape of a persona feature.

    Counts are heavy-tailed and usually log-transformed; ratios are bounded
    in [0, 1]; entropy and std are unbounded but well-behaved.
    """
    COUNT = "count"
    RATIO = "ratio"
    ENTROPY = "entropy"
    STD = "std"


class FeatureVerdict(str, Enum):
    """
    Verdict for a feature's contribution to clustering quality.

    Derived from the silhouette delta when the feature is removed (selected
    features) or added (unselected features):
    - critical: delta > 0.05
    - helpful: delta > 0.01
    - harmful: delta < -0.03
    - neutral: anything in between
    """
    CRITICAL = "critical"
    HELPFUL = "helpful"
    NEUTRAL = "neutral"
    HARMFUL = "harmful"


class QualityTier(str, Enum):
    """
    Overall clustering quality from the current silhouette.

    - good: silhouette >= 0.5
    - weak: 0.25 <= silhouette < 0.5
    - poor: silhouette < 0.25
    """
    GOOD = "good"
    WEAK = "weak"
    POOR = "poor"


class FeatureLevel(str, Enum):
    """Position of a centroid value within the range spanned by all centroids."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RecommendationType(str, Enum):
    """
    Kind of change a diagnosis recommendation proposes.

    - k: change the number of clusters
    - feature: add, drop or swap features
    - algo: switch clustering algorithm
    - accept: current configuration is good enough
    """
    K = "k"
    FEATURE = "feature"
    ALGO = "algo"
    ACCEPT = "accept"


class RecommendationPriority(str, Enum):
    """Priority of a diagnosis recommendation."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TreeProbabilityMode(str, Enum):
    """
    How a decision tree reports class probabilities.

    - heuristic: 0.85 for the predicted label, the rest split evenly
    - leaf_frequency: class frequencies of the training rows in the reached leaf
    """
    HEURISTIC = "heuristic"
    LEAF_FREQUENCY = "leaf_frequency"
