"""
Pydantic records for the ML engine.

This module provides type-safe data validation and serialization for every record the
engine consumes or produces: raw event logs, engineered feature rows, training
configuration, trained model handles, training results, persona clustering results and
model diagnoses, plus the request bodies of the HTTP layer.

Trained models are plain nested data (tree nodes as nested records, class tallies as
explicit label/count lists) so a model can be round-tripped through any flat persistence
layer and restored to resume prediction.

Result records are frozen: a run produces them once and nothing mutates them afterwards.

All models use Pydantic v2 syntax.
"""

from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ml_engine.models.enums import (
    FeatureLevel,
    FeatureSource,
    FeatureType,
    FeatureVerdict,
    ModelType,
    PersonaFeatureKind,
    QualityTier,
    RecommendationPriority,
    RecommendationType,
)


# A single cell of a feature row: numeric or categorical
FeatureValue = Union[float, str]


# =============================================================================
# Raw Input Records
# =============================================================================


class RawLogEntry(BaseModel):
    """
    One raw dashboard event.

    The metadata field is a JSON blob; parse_raw_logs decodes it into the
    device_type, source_item and folder fields.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "u_001",
                "resource_type": "realtime",
                "resource_name": "A49 - Live KPIs",
                "timestamp": "2025-03-02T09:15:00Z",
                "metadata": "{\"device_type\": \"mobile\", \"folder\": \"game_a\"}",
            }
        }
    )

    user_id: str = Field(..., min_length=1, description="Stable user identifier")
    resource_type: str = Field(default="", description="Resource type (home, realtime, tableau, export, ...)")
    resource_name: str = Field(default="", description="Resource name")
    timestamp: str = Field(default="", description="ISO-8601 event timestamp")
    metadata: str = Field(default="", description="JSON metadata blob")
    device_type: str = Field(default="", description="Device type parsed from metadata")
    source_item: str = Field(default="", description="Source item parsed from metadata")
    folder: str = Field(default="", description="Folder parsed from metadata")


class CleanedLog(BaseModel):
    """Event normalized for persona feature aggregation."""

    user_id: str
    resource_type: str
    resource_name: str
    hour: int = Field(..., ge=0, le=23)
    device: str
    source: str


# =============================================================================
# Feature Records
# =============================================================================


class FeatureDefinition(BaseModel):
    """Catalog entry describing an engineered feature or target."""

    id: str
    name: str
    description: str
    type: FeatureType
    source: FeatureSource
    expression: Optional[str] = None
    enabled: bool = True


class FeatureRow(BaseModel):
    """
    One row of the per-user feature matrix.

    Values map a column name to a numeric or categorical cell. Column types are
    checked once, when a matrix is built from a batch of rows.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "user_id": "u_001",
                "values": {"session_count": 42, "mobile_ratio": 0.25, "will_export": "yes"},
            }
        },
    )

    user_id: str = Field(..., min_length=1)
    values: Dict[str, FeatureValue] = Field(default_factory=dict)


class FeatureStats(BaseModel):
    """Summary statistics of one numeric feature column."""

    min: float
    max: float
    mean: float
    median: float
    std: float


# =============================================================================
# Training Records
# =============================================================================


class TrainingConfig(BaseModel):
    """
    Configuration of one supervised training run.

    Feature list emptiness, overlap with the target and the held-out fraction are
    validated by the trainer against the actual data.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "targetVariable": "will_export",
                "features": ["session_count", "mobile_ratio", "unique_resources"],
                "modelType": "decision_tree",
                "testSplit": 0.2,
                "learningRate": 0.1,
                "epochs": 100,
                "maxDepth": 5,
            }
        },
    )

    targetVariable: str = Field(..., description="Target column name")
    features: List[str] = Field(..., description="Ordered feature column names")
    modelType: ModelType = Field(default=ModelType.LOGISTIC_REGRESSION)
    testSplit: float = Field(default=0.2, description="Held-out fraction, exclusive (0, 1)")
    learningRate: float = Field(default=0.1, gt=0.0)
    epochs: int = Field(default=100, ge=1)
    maxDepth: int = Field(default=5, ge=0)


class ClassCount(BaseModel):
    """Number of training rows with a given label."""
    model_config = ConfigDict(frozen=True)

    label: str
    count: int = Field(..., ge=0)


class TreeNode(BaseModel):
    """
    Decision tree node.

    Internal nodes carry featureIndex/threshold and both children (left is
    "value <= threshold"); leaves carry prediction. Both carry the class tally
    of the training rows that reached them.
    """
    model_config = ConfigDict(frozen=True)

    featureIndex: Optional[int] = None
    threshold: Optional[float] = None
    left: Optional["TreeNode"] = None
    right: Optional["TreeNode"] = None
    prediction: Optional[str] = None
    counts: List[ClassCount] = Field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return self.prediction is not None

    @property
    def sample_count(self) -> int:
        return sum(c.count for c in self.counts)


TreeNode.model_rebuild()


class LogisticModel(BaseModel):
    """Trained logistic regression; weights are [classes x features]."""
    model_config = ConfigDict(frozen=True)

    type: Literal["logistic_regression"] = "logistic_regression"
    weights: List[List[float]]
    biases: List[float]
    classes: List[str]
    means: List[float]
    stds: List[float]
    featureNames: List[str]


class DecisionTreeModel(BaseModel):
    """Trained decision tree over standardized features."""
    model_config = ConfigDict(frozen=True)

    type: Literal["decision_tree"] = "decision_tree"
    root: TreeNode
    classes: List[str]
    means: List[float]
    stds: List[float]
    featureNames: List[str]


TrainedModel = Annotated[Union[LogisticModel, DecisionTreeModel], Field(discriminator="type")]


class FeatureImportance(BaseModel):
    """Importance share of one feature; shares sum to 1 when any is non-zero."""
    model_config = ConfigDict(frozen=True)

    feature: str
    importance: float = Field(..., ge=0.0)


class TrainingResult(BaseModel):
    """
    Outcome of one training run.

    Metrics are computed on the held-out split; trainAccuracy is reported next to
    accuracy so overfitting is visible. The model field is the explicit handle
    to pass to the predictor.
    """
    model_config = ConfigDict(frozen=True)

    modelId: str
    modelType: ModelType
    accuracy: float = Field(..., ge=0.0, le=1.0)
    precision: float
    recall: float
    f1Score: float
    logLoss: float
    specificity: float
    mcc: float
    trainAccuracy: float = Field(..., ge=0.0, le=1.0)
    trainingDurationMs: int = Field(..., ge=0)
    confusionMatrix: List[List[int]]
    classLabels: List[str]
    featureImportance: List[FeatureImportance]
    trainingLoss: List[float]
    trainSize: int
    testSize: int
    trainUserIds: List[str]
    testUserIds: List[str]
    timestamp: datetime
    config: TrainingConfig
    model: TrainedModel


class ClassProbability(BaseModel):
    """Probability the model assigns to one class."""
    model_config = ConfigDict(frozen=True)

    label: str
    probability: float = Field(..., ge=0.0, le=1.0)


class PredictionResult(BaseModel):
    """Predicted label, per-class probabilities and the echoed input."""
    model_config = ConfigDict(frozen=True)

    prediction: str
    probabilities: List[ClassProbability]
    inputFeatures: Dict[str, FeatureValue]


# =============================================================================
# Persona Records
# =============================================================================


class PersonaFeatureRow(BaseModel):
    """Per-user behavioral signals used for persona clustering."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    total_events_30d: float = Field(default=0.0, ge=0.0)
    unique_dashboards_viewed: float = Field(default=0.0, ge=0.0)
    mobile_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    realtime_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    repeat_view_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    games_touched: float = Field(default=0.0, ge=0.0)
    navigation_entropy: float = Field(default=0.0, ge=0.0)
    active_hour_std: float = Field(default=0.0, ge=0.0)


class PersonaFeatureMeta(BaseModel):
    """Catalog entry describing one persona feature."""
    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    type: PersonaFeatureKind
    recommendLog: bool
    description: str


class ClusterConfig(BaseModel):
    """
    Feature selection for a clustering run.

    selectedFeatures=None means every persona feature. Columns listed in
    logTransformFeatures are log1p-transformed before standardization.
    """
    model_config = ConfigDict(frozen=True)

    selectedFeatures: Optional[List[str]] = None
    logTransformFeatures: List[str] = Field(default_factory=list)


class PersonaDefinition(BaseModel):
    """Persona archetype bound to a cluster."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=0)
    name: str
    color: str
    icon: str
    definingSignals: List[str]
    onboardingType: str
    onboardingTitle: str
    onboardingActions: List[str]


class PersonaAssignment(BaseModel):
    """Binding of one user to a cluster and its persona."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    persona_id: int = Field(..., ge=0)
    persona_name: str
    distance_to_centroid: float = Field(..., ge=0.0)
    is_edge_case: Optional[bool] = None
    recommended_onboarding_type: str
    features: PersonaFeatureRow


class ClusteringResult(BaseModel):
    """
    Outcome of a persona clustering run.

    Centroids are expressed in the original feature units (standardization and any
    log1p transform reversed), ordered like featureNames.
    """
    model_config = ConfigDict(frozen=True)

    centroids: List[List[float]]
    assignments: List[PersonaAssignment]
    personas: List[PersonaDefinition]
    inertia: float = Field(..., ge=0.0)
    iterations: int = Field(..., ge=0)
    k: int = Field(..., ge=1)
    featureNames: List[str]


class ElbowPoint(BaseModel):
    """Inertia and silhouette of the best clustering found for one k."""
    model_config = ConfigDict(frozen=True)

    k: int = Field(..., ge=1)
    inertia: float = Field(..., ge=0.0)
    silhouette: float = Field(..., ge=-1.0, le=1.0)


# =============================================================================
# Diagnosis Records
# =============================================================================


class FeatureImportanceResult(BaseModel):
    """
    Silhouette impact of one feature.

    For selected features silhouetteWithout is the silhouette with the feature
    removed; for unselected features it is the silhouette with the feature added.
    Positive delta always means the feature helps.
    """
    model_config = ConfigDict(frozen=True)

    feature: str
    label: str
    selected: bool
    baselineSilhouette: float
    silhouetteWithout: float
    delta: float
    verdict: FeatureVerdict


class DominantFeature(BaseModel):
    """A centroid's value for one feature and where it sits among centroids."""
    model_config = ConfigDict(frozen=True)

    feature: str
    value: float
    level: FeatureLevel


class ClusterProfile(BaseModel):
    """Business-readable profile of one cluster."""
    model_config = ConfigDict(frozen=True)

    clusterId: int
    suggestedName: str
    description: str
    dominantFeatures: List[DominantFeature]
    userCount: int = Field(..., ge=0)
    percentOfTotal: int = Field(..., ge=0, le=100)


class FeatureComboSuggestion(BaseModel):
    """Silhouette of an alternative feature subset, compared with the current one."""
    model_config = ConfigDict(frozen=True)

    features: List[str]
    logTransforms: List[str]
    silhouette: float
    delta: float
    reason: str


class Recommendation(BaseModel):
    """One actionable diagnosis recommendation."""
    model_config = ConfigDict(frozen=True)

    action: str
    type: RecommendationType
    priority: RecommendationPriority


class ModelDiagnosis(BaseModel):
    """
    Automated diagnosis of a persona clustering run.

    Derived data only: computing it never mutates the clustering result.
    """
    model_config = ConfigDict(frozen=True)

    overallQuality: QualityTier
    silhouette: float
    bestK: int
    bestKSilhouette: float
    isKOptimal: bool
    allKWeak: bool
    featureImportance: List[FeatureImportanceResult]
    suggestedCombos: List[FeatureComboSuggestion]
    clusterProfiles: List[ClusterProfile]
    recommendations: List[Recommendation]


# =============================================================================
# HTTP Request Bodies
# =============================================================================


class BuildFeaturesRequest(BaseModel):
    """Raw logs to turn into per-user rows."""

    logs: List[RawLogEntry] = Field(default_factory=list)


class FeatureStatsRequest(BaseModel):
    """Feature rows and the column to summarize."""

    rows: List[FeatureRow]
    feature: str


class TrainRequest(BaseModel):
    """Feature rows, training configuration and optional seed."""

    rows: List[FeatureRow]
    config: TrainingConfig
    seed: Optional[int] = None


class PredictRequest(BaseModel):
    """
    Model handle and one feature vector.

    The model is the blob returned in TrainingResult.model (or restored from
    persistence); the service keeps no model between requests.
    """

    model: Optional[TrainedModel] = None
    features: Dict[str, FeatureValue]


class ClusterRequest(BaseModel):
    """Persona rows plus clustering parameters."""

    rows: List[PersonaFeatureRow]
    k: int = Field(default=3, ge=1)
    config: Optional[ClusterConfig] = None
    seed: Optional[int] = None


class ElbowRequest(BaseModel):
    """Persona rows plus the k values to sweep."""

    rows: List[PersonaFeatureRow]
    kRange: List[int] = Field(default_factory=lambda: [2, 3, 4, 5, 6, 7, 8])
    config: Optional[ClusterConfig] = None
    seed: Optional[int] = None


class DiagnoseRequest(BaseModel):
    """Persona rows, the clustering to diagnose and its elbow sweep."""

    rows: List[PersonaFeatureRow]
    result: ClusteringResult
    elbow: List[ElbowPoint] = Field(default_factory=list)
    config: Optional[ClusterConfig] = None
    seed: Optional[int] = None


class InferPersonaRequest(BaseModel):
    """A new user's persona features and the clustering to place them in."""

    row: PersonaFeatureRow
    result: ClusteringResult
