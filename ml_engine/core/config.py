"""
Settings and environment management module for the ML engine.

Every tunable of the engine lives in one pydantic-settings class, read from the
environment (or a local .env file) once per process.

Key Features:
- Typed, validated overrides for every algorithm knob
- Defaults that run the engine with no environment at all
- One cached instance shared by services and the HTTP layer
- Regularization, restarts and iteration caps kept out of the algorithms

Environment Variables:
- LOG_LEVEL: Root logging level (default: INFO)
- RANDOM_SEED: Seed for every stochastic step when a caller supplies none (default: 42)
- COMPUTE_TIMEOUT_SECONDS: Deadline applied by the HTTP layer around each compute call

Algorithm Defaults:
- l2_lambda: 0.1 (L2 penalty on logistic regression weights)
- kmeans_max_iter: 50 (Lloyd iteration cap for persona clustering)
- clustering_restarts: 5 (K-Means restarts, lowest inertia kept)
- elbow_restarts: 3 (restarts per k in the elbow sweep)
- edge_case_sigma: 1.5 (distance above mean + sigma * std flags an edge case)

Usage:
    from ml_engine.core.config import get_settings

    settings = get_settings()
    restarts = settings.clustering_restarts
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from ml_engine.models.enums import TreeProbabilityMode


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables.

    Every field has a default, so the engine runs without any environment
    configuration. Values can be overridden per deployment through the
    environment or a local .env file.

    Attributes:
        log_level: Root logging level used by the FastAPI entry point.
        random_seed: Seed used for shuffling, weight init and K-Means++ seeding
            when a call does not pass its own seed.
        l2_lambda: L2 regularization strength for logistic regression.
        weight_init_scale: Width of the uniform interval used to initialize weights.
        kmeans_max_iter: Maximum Lloyd iterations for a clustering run.
        clustering_restarts: Number of K-Means restarts for persona clustering.
        elbow_restarts: Number of K-Means restarts per k in the elbow sweep.
        diagnosis_restarts: Number of restarts for each diagnosis silhouette probe.
        diagnosis_max_iter: Lloyd iteration cap for diagnosis silhouette probes.
        edge_case_sigma: Standard-deviation multiplier for edge-case detection.
        silhouette_sample_size: Rows above which silhouette is computed on a seeded sample.
        tree_probability_mode: How decision-tree predictions report probabilities.
        compute_timeout_seconds: Deadline the HTTP layer applies to each compute call.
        cors_origins: Origins allowed to call the HTTP layer.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Runtime
    # =========================================================================

    log_level: str = 'INFO'

    # Seed threaded through every stochastic step; same input + seed => same output
    random_seed: int = 42

    # =========================================================================
    # Supervised training
    # =========================================================================

    l2_lambda: float = 0.1

    # Weights start in U(-scale/2, scale/2)
    weight_init_scale: float = 0.1

    # 'heuristic' keeps the fixed 0.85 / 0.15 split for tree predictions,
    # 'leaf_frequency' reports the class frequencies of the reached leaf
    tree_probability_mode: TreeProbabilityMode = TreeProbabilityMode.HEURISTIC

    # =========================================================================
    # Persona clustering
    # =========================================================================

    kmeans_max_iter: int = 50
    clustering_restarts: int = 5
    elbow_restarts: int = 3
    edge_case_sigma: float = 1.5

    # Silhouette is O(n^2); above this many rows it is computed on a seeded sample
    silhouette_sample_size: int = 2000

    # =========================================================================
    # Diagnosis
    # =========================================================================

    diagnosis_restarts: int = 3
    diagnosis_max_iter: int = 30

    # =========================================================================
    # HTTP layer
    # =========================================================================

    compute_timeout_seconds: float = 60.0
    cors_origins: List[str] = [
        'http://localhost:3000',
        'http://127.0.0.1:3000',
    ]


@lru_cache()
def get_settings() -> Settings:
    """
    Get the engine settings singleton.

    Returns:
        Settings: The cached settings instance.

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
