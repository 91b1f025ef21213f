"""
FastAPI router module for feature engineering and supervised training endpoints.

Endpoints:
- POST /training/features: Raw logs -> per-user feature rows with targets
- GET  /training/catalog: Engineered feature and target catalog
- POST /training/feature-stats: Summary statistics of one feature column
- POST /training/train: Train and evaluate a classifier
- POST /training/predict: Apply a trained model blob to one feature vector

The router is stateless. A trained model lives in TrainingResult.model and the
client sends it back with each predict request.

Error Mapping:
- EmptyDatasetError, InvalidConfigError -> 422
- ModelNotLoadedError -> 409
- Compute deadline exceeded -> 504
"""

import logging
from typing import Dict, List

from fastapi import APIRouter, HTTPException, status

from ml_engine.core.dependencies import SettingsDep, run_with_deadline
from ml_engine.core.exceptions import EmptyDatasetError, InvalidConfigError, ModelNotLoadedError
from ml_engine.models.schemas import (
    BuildFeaturesRequest,
    FeatureDefinition,
    FeatureRow,
    FeatureStats,
    FeatureStatsRequest,
    PredictionResult,
    PredictRequest,
    TrainingResult,
    TrainRequest,
)
from ml_engine.services.feature_builder import (
    DEFAULT_FEATURES,
    TARGET_VARIABLES,
    compute_user_features,
    get_feature_stats,
    parse_raw_logs,
)
from ml_engine.services.predictor import predict
from ml_engine.services.trainer import train_model


logger = logging.getLogger(__name__)


# =============================================================================
# Router Configuration
# =============================================================================

router = APIRouter(
    prefix="/training",
    tags=["training"],
    responses={
        409: {"description": "No trained model supplied"},
        422: {"description": "Empty dataset or invalid configuration"},
        504: {"description": "Computation exceeded the deadline"},
    },
)


def _build_features(request: BuildFeaturesRequest) -> List[FeatureRow]:
    return compute_user_features(parse_raw_logs(request.logs))


# =============================================================================
# POST /training/features - Build per-user feature rows
# =============================================================================


@router.post("/features", response_model=List[FeatureRow])
async def build_features(request: BuildFeaturesRequest, settings: SettingsDep) -> List[FeatureRow]:
    """
    Turn raw dashboard logs into one feature row per user.

    Metadata blobs are decoded first; binary targets are labeled from
    dataset-wide 75th percentiles.

    Raises:
        HTTPException 422: If no logs are supplied
    """
    try:
        return await run_with_deadline(settings, _build_features, request)
    except (EmptyDatasetError, InvalidConfigError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


# =============================================================================
# GET /training/catalog - Feature and target catalog
# =============================================================================


@router.get("/catalog", response_model=Dict[str, List[FeatureDefinition]])
async def get_catalog() -> Dict[str, List[FeatureDefinition]]:
    """Engineered features and target variables the builder produces."""
    return {"features": DEFAULT_FEATURES, "targets": TARGET_VARIABLES}


# =============================================================================
# POST /training/feature-stats - Column summary
# =============================================================================


@router.post("/feature-stats", response_model=FeatureStats)
async def feature_stats(request: FeatureStatsRequest) -> FeatureStats:
    """Min, max, mean, median and std of one numeric feature column."""
    return get_feature_stats(request.rows, request.feature)


# =============================================================================
# POST /training/train - Train and evaluate
# =============================================================================


@router.post("/train", response_model=TrainingResult)
async def train(request: TrainRequest, settings: SettingsDep) -> TrainingResult:
    """
    Train a logistic regression or decision tree and evaluate it on a held-out split.

    The response carries metrics, feature importance, the loss trajectory and the
    model blob to send to /training/predict.

    Raises:
        HTTPException 422: On empty rows or an invalid configuration
        HTTPException 504: If training exceeds the compute deadline
    """
    try:
        return await run_with_deadline(settings, train_model, request.rows, request.config, request.seed)
    except (EmptyDatasetError, InvalidConfigError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


# =============================================================================
# POST /training/predict - Single prediction
# =============================================================================


@router.post("/predict", response_model=PredictionResult)
async def predict_one(request: PredictRequest) -> PredictionResult:
    """
    Predict the class of one feature vector with the supplied model blob.

    Raises:
        HTTPException 409: If no model is supplied
        HTTPException 422: If a model feature is missing or not numeric
    """
    try:
        return predict(request.model, request.features)
    except ModelNotLoadedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidConfigError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
