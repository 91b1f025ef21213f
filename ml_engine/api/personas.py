"""
FastAPI router module for persona clustering endpoints.

Endpoints:
- POST /personas/features: Raw logs -> persona feature rows
- POST /personas/cluster: K-Means persona clustering
- POST /personas/elbow: Inertia and silhouette over a range of k
- POST /personas/diagnose: Diagnosis and recommendations for a clustering
- POST /personas/infer: Place a new user in an existing clustering

Clustering, elbow and diagnosis are CPU-bound and run in the threadpool under
the compute deadline. Diagnosis is the heaviest: it re-clusters once per feature
probe and once per alternative feature combo.
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException, status

from ml_engine.core.dependencies import SettingsDep, run_with_deadline
from ml_engine.core.exceptions import EmptyDatasetError, InvalidConfigError
from ml_engine.models.schemas import (
    BuildFeaturesRequest,
    ClusteringResult,
    ClusterRequest,
    DiagnoseRequest,
    ElbowPoint,
    ElbowRequest,
    InferPersonaRequest,
    ModelDiagnosis,
    PersonaAssignment,
    PersonaFeatureRow,
)
from ml_engine.services.clustering import compute_elbow_data, infer_persona, run_persona_clustering
from ml_engine.services.diagnosis import diagnose_model
from ml_engine.services.feature_builder import parse_raw_logs
from ml_engine.services.persona_features import aggregate_to_persona_features, clean_logs


logger = logging.getLogger(__name__)


# =============================================================================
# Router Configuration
# =============================================================================

router = APIRouter(
    prefix="/personas",
    tags=["personas"],
    responses={
        422: {"description": "Empty dataset or invalid configuration"},
        504: {"description": "Computation exceeded the deadline"},
    },
)


def _persona_features(request: BuildFeaturesRequest) -> List[PersonaFeatureRow]:
    return aggregate_to_persona_features(clean_logs(parse_raw_logs(request.logs)))


# =============================================================================
# POST /personas/features - Build persona feature rows
# =============================================================================


@router.post("/features", response_model=List[PersonaFeatureRow])
async def build_persona_features(
    request: BuildFeaturesRequest,
    settings: SettingsDep,
) -> List[PersonaFeatureRow]:
    """
    Clean raw logs and aggregate them into persona signals per user.

    Raises:
        HTTPException 422: If no logs are supplied
    """
    try:
        return await run_with_deadline(settings, _persona_features, request)
    except (EmptyDatasetError, InvalidConfigError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


# =============================================================================
# POST /personas/cluster - Persona clustering
# =============================================================================


@router.post("/cluster", response_model=ClusteringResult)
async def cluster(request: ClusterRequest, settings: SettingsDep) -> ClusteringResult:
    """
    Cluster users into k personas.

    Returns denormalized centroids, persona templates bound to clusters and
    per-user assignments with edge-case flags.

    Raises:
        HTTPException 422: On empty rows, k out of range or unknown features
        HTTPException 504: If clustering exceeds the compute deadline
    """
    try:
        return await run_with_deadline(
            settings, run_persona_clustering, request.rows, request.k, request.config, request.seed,
        )
    except (EmptyDatasetError, InvalidConfigError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


# =============================================================================
# POST /personas/elbow - k sweep
# =============================================================================


@router.post("/elbow", response_model=List[ElbowPoint])
async def elbow(request: ElbowRequest, settings: SettingsDep) -> List[ElbowPoint]:
    """
    Inertia and silhouette of the best clustering found for each k.

    k values outside [1, number of rows] are skipped.
    """
    try:
        return await run_with_deadline(
            settings, compute_elbow_data, request.rows, request.kRange, request.config, request.seed,
        )
    except (EmptyDatasetError, InvalidConfigError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


# =============================================================================
# POST /personas/diagnose - Clustering diagnosis
# =============================================================================


@router.post("/diagnose", response_model=ModelDiagnosis)
async def diagnose(request: DiagnoseRequest, settings: SettingsDep) -> ModelDiagnosis:
    """
    Diagnose a clustering: quality tier, feature verdicts, alternative combos,
    cluster profiles and prioritized recommendations.
    """
    try:
        return await run_with_deadline(
            settings, diagnose_model, request.rows, request.result, request.elbow,
            request.config, request.seed,
        )
    except (EmptyDatasetError, InvalidConfigError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


# =============================================================================
# POST /personas/infer - Nearest-centroid persona for a new user
# =============================================================================


@router.post("/infer", response_model=PersonaAssignment)
async def infer(request: InferPersonaRequest) -> PersonaAssignment:
    """Assign a new user to the nearest centroid of an existing clustering."""
    try:
        return infer_persona(request.row, request.result)
    except InvalidConfigError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
