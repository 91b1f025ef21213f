"""
Engine Services Module

Business logic of the ML engine. Every service is stateless: results depend only
on the arguments and the seed, and no call shares mutable state with another.

Services:
- numeric: Standardization, activations, distances, impurity, seeded generator
- feature_builder: Raw logs -> per-user feature rows with percentile targets
- persona_features: Raw logs -> persona behavioral signals
- trainer: Logistic regression and Gini decision tree training
- evaluation: Confusion matrix and classification metrics
- predictor: Prediction with an explicit model handle, model persistence
- clustering: K-Means++ persona clustering, silhouette, elbow sweep
- diagnosis: Feature verdicts, alternative combos, profiles, recommendations
"""

# =============================================================================
# Feature Builder Exports
# =============================================================================

from ml_engine.services.feature_builder import (
    parse_raw_logs,
    compute_user_features,
    build_feature_matrix,
    get_feature_stats,
    FeatureMatrix,
    DEFAULT_FEATURES,
    TARGET_VARIABLES,
)

# =============================================================================
# Persona Feature Exports
# =============================================================================

from ml_engine.services.persona_features import (
    clean_logs,
    aggregate_to_persona_features,
    PERSONA_FEATURE_NAMES,
    PERSONA_FEATURE_META,
)

# =============================================================================
# Training, Evaluation and Prediction Exports
# =============================================================================

from ml_engine.services.trainer import (
    train_model,
    train_logistic_regression,
    train_decision_tree,
)
from ml_engine.services.evaluation import (
    evaluate_predictions,
    ClassificationMetrics,
)
from ml_engine.services.predictor import (
    predict,
    predict_batch,
    serialize_model,
    restore_model,
)

# =============================================================================
# Clustering and Diagnosis Exports
# =============================================================================

from ml_engine.services.clustering import (
    run_persona_clustering,
    compute_elbow_data,
    infer_persona,
    silhouette_score,
    kmeans,
    DEFAULT_PERSONAS,
)
from ml_engine.services.diagnosis import (
    quick_silhouette,
    analyze_feature_importance,
    suggest_feature_combos,
    interpret_cluster_profiles,
    diagnose_model,
)


__all__ = [
    # feature_builder
    "parse_raw_logs",
    "compute_user_features",
    "build_feature_matrix",
    "get_feature_stats",
    "FeatureMatrix",
    "DEFAULT_FEATURES",
    "TARGET_VARIABLES",
    # persona_features
    "clean_logs",
    "aggregate_to_persona_features",
    "PERSONA_FEATURE_NAMES",
    "PERSONA_FEATURE_META",
    # trainer / evaluation / predictor
    "train_model",
    "train_logistic_regression",
    "train_decision_tree",
    "evaluate_predictions",
    "ClassificationMetrics",
    "predict",
    "predict_batch",
    "serialize_model",
    "restore_model",
    # clustering / diagnosis
    "run_persona_clustering",
    "compute_elbow_data",
    "infer_persona",
    "silhouette_score",
    "kmeans",
    "DEFAULT_PERSONAS",
    "quick_silhouette",
    "analyze_feature_importance",
    "suggest_feature_combos",
    "interpret_cluster_profiles",
    "diagnose_model",
]
