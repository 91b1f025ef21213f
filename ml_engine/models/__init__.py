"""
Package initialization file for engine models.

This module exports all Pydantic schemas and enumerations from schemas.py and enums.py,
making them importable from ml_engine.models directly.

Usage:
    from ml_engine.models import (
        ModelType,
        TrainingConfig,
        TrainingResult,
        ClusteringResult,
        # ... etc
    )
"""

# =============================================================================
# Enums
# =============================================================================

from ml_engine.models.enums import (
    ModelType,
    FeatureType,
    FeatureSource,
    PersonaFeatureKind,
    FeatureVerdict,
    QualityTier,
    FeatureLevel,
    RecommendationType,
    RecommendationPriority,
    TreeProbabilityMode,
)


# =============================================================================
# Schemas
# =============================================================================

from ml_engine.models.schemas import (
    # -------------------------------------------------------------------------
    # Raw input and features
    # -------------------------------------------------------------------------
    FeatureValue,
    RawLogEntry,
    CleanedLog,
    FeatureDefinition,
    FeatureRow,
    FeatureStats,

    # -------------------------------------------------------------------------
    # Supervised training
    # -------------------------------------------------------------------------
    TrainingConfig,
    ClassCount,
    TreeNode,
    LogisticModel,
    DecisionTreeModel,
    TrainedModel,
    FeatureImportance,
    TrainingResult,
    ClassProbability,
    PredictionResult,

    # -------------------------------------------------------------------------
    # Persona clustering
    # -------------------------------------------------------------------------
    PersonaFeatureRow,
    PersonaFeatureMeta,
    ClusterConfig,
    PersonaDefinition,
    PersonaAssignment,
    ClusteringResult,
    ElbowPoint,

    # -------------------------------------------------------------------------
    # Diagnosis
    # -------------------------------------------------------------------------
    FeatureImportanceResult,
    DominantFeature,
    ClusterProfile,
    FeatureComboSuggestion,
    Recommendation,
    ModelDiagnosis,

    # -------------------------------------------------------------------------
    # HTTP request bodies
    # -------------------------------------------------------------------------
    BuildFeaturesRequest,
    FeatureStatsRequest,
    TrainRequest,
    PredictRequest,
    ClusterRequest,
    ElbowRequest,
    DiagnoseRequest,
    InferPersonaRequest,
)


__all__ = [
    # Enums
    'ModelType',
    'FeatureType',
    'FeatureSource',
    'PersonaFeatureKind',
    'FeatureVerdict',
    'QualityTier',
    'FeatureLevel',
    'RecommendationType',
    'RecommendationPriority',
    'TreeProbabilityMode',
    # Raw input and features
    'FeatureValue',
    'RawLogEntry',
    'CleanedLog',
    'FeatureDefinition',
    'FeatureRow',
    'FeatureStats',
    # Supervised training
    'TrainingConfig',
    'ClassCount',
    'TreeNode',
    'LogisticModel',
    'DecisionTreeModel',
    'TrainedModel',
    'FeatureImportance',
    'TrainingResult',
    'ClassProbability',
    'PredictionResult',
    # Persona clustering
    'PersonaFeatureRow',
    'PersonaFeatureMeta',
    'ClusterConfig',
    'PersonaDefinition',
    'PersonaAssignment',
    'ClusteringResult',
    'ElbowPoint',
    # Diagnosis
    'FeatureImportanceResult',
    'DominantFeature',
    'ClusterProfile',
    'FeatureComboSuggestion',
    'Recommendation',
    'ModelDiagnosis',
    # HTTP request bodies
    'BuildFeaturesRequest',
    'FeatureStatsRequest',
    'TrainRequest',
    'PredictRequest',
    'ClusterRequest',
    'ElbowRequest',
    'DiagnoseRequest',
    'InferPersonaRequest',
]
