"""
Persona clustering engine: K-Means++ with restarts, silhouette, elbow sweep.

Pipeline (run_persona_clustering):
1. Build the persona matrix over the selected features, log1p on heavy-tailed columns
2. Z-score standardize
3. K-Means++ seeding + Lloyd iterations, repeated N times; lowest inertia wins
4. Denormalize centroids (inverse z-score, then expm1 on log columns) so archetype
   scoring sees human-interpretable units
5. Match clusters to archetype templates (casual / LiveOps monitor / exploratory analyst)
6. Assign users with distance-to-centroid and an edge-case flag

Archetype Matching:
    Each template scores every centroid. Clusters are matched greedily, highest score
    first, without reusing a template; clusters left over when k exceeds the template
    count take their best-scoring template.

Edge Cases:
    A user is flagged when their distance to the assigned centroid (standardized space)
    exceeds mean + sigma * std of all distances (sigma defaults to 1.5).

Determinism:
    Every random draw comes from one seeded generator per call, so the same rows,
    k, config and seed always give the same result.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ml_engine.core.config import get_settings
from ml_engine.core.exceptions import EmptyDatasetError, InvalidConfigError
from ml_engine.models.schemas import (
    ClusterConfig,
    ClusteringResult,
    ElbowPoint,
    PersonaAssignment,
    PersonaDefinition,
    PersonaFeatureRow,
)
from ml_engine.services.numeric import make_rng, pairwise_distances, standardize
from ml_engine.services.persona_features import PERSONA_FEATURE_NAMES


logger = logging.getLogger(__name__)


# Rows per block when computing silhouette distances
SILHOUETTE_CHUNK_SIZE: int = 512

DEFAULT_ELBOW_K_RANGE: List[int] = [2, 3, 4, 5, 6, 7, 8]


# =============================================================================
# Persona Templates
# =============================================================================


DEFAULT_PERSONAS: List[PersonaDefinition] = [
    PersonaDefinition(
        id=0,
        name="New / Casual User",
        color="#f59e0b",
        icon="sun",
        definingSignals=[
            "Low total_events_30d: minimal platform activity",
            "Low unique_dashboards_viewed: hasn't explored",
            "High mobile_ratio: mobile-first access pattern",
            "Low navigation_entropy: visits only 1-2 resources",
            "High active_hour_std: irregular usage schedule",
        ],
        onboardingType="guided_basic",
        onboardingTitle="Welcome! Start with 1 dashboard",
        onboardingActions=[
            "Guided tour of key features",
            "Big buttons, simple navigation",
            "Hide advanced filters",
            "Suggest default game dashboard",
        ],
    ),
    PersonaDefinition(
        id=1,
        name="LiveOps Monitor",
        color="#22c55e",
        icon="activity",
        definingSignals=[
            "High realtime_ratio: focused on live game dashboards",
            "High repeat_view_ratio: monitors same dashboards repeatedly",
            "Low active_hour_std: consistent daily schedule",
            "Low games_touched: focused on specific game(s)",
            "Low navigation_entropy: repetitive, focused pattern",
        ],
        onboardingType="skip_tutorial_realtime",
        onboardingTitle="Realtime dashboards updated every 60s",
        onboardingActions=[
            "Skip tutorial entirely",
            "Ask: Which realtime dashboard to pin?",
            "Emphasize alerts & data freshness",
            "Offer notification setup",
        ],
    ),
    PersonaDefinition(
        id=2,
        name="Exploratory Analyst",
        color="#3b82f6",
        icon="compass",
        definingSignals=[
            "High unique_dashboards_viewed: broad exploration",
            "High games_touched: cross-game analysis",
            "High navigation_entropy: varied, exploratory navigation",
            "Low mobile_ratio: desktop/laptop power user",
            "Low repeat_view_ratio: rarely revisits same view",
        ],
        onboardingType="advanced_shortcuts",
        onboardingTitle="Explore cross-game performance dashboards",
        onboardingActions=[
            "No tutorial needed",
            "Show advanced navigation & filters",
            "Suggest cross-game comparison views",
            "Offer saved views & keyboard shortcuts",
        ],
    ),
]


def _casual_score(f: Callable[[str], float]) -> float:
    # low volume, mobile-first, narrow, irregular
    return (
        2.0 / (1.0 + f("total_events_30d"))
        + 2.0 / (1.0 + f("unique_dashboards_viewed"))
        + 3.0 * f("mobile_ratio")
        + 1.5 / (1.0 + f("navigation_entropy"))
        + 0.5 * f("active_hour_std")
    )


def _liveops_score(f: Callable[[str], float]) -> float:
    # realtime, repetitive, regular schedule, few games
    return (
        4.0 * f("realtime_ratio")
        + 3.0 * f("repeat_view_ratio")
        + 2.0 / (1.0 + f("active_hour_std"))
        + 1.0 / (1.0 + f("games_touched"))
        + 1.0 / (1.0 + f("navigation_entropy"))
    )


def _analyst_score(f: Callable[[str], float]) -> float:
    # broad, cross-game, desktop, rarely repeats
    return (
        2.0 * f("unique_dashboards_viewed")
        + 2.0 * f("games_touched")
        + 2.0 * f("navigation_entropy")
        + 1.5 * (1.0 - f("mobile_ratio"))
        + 1.0 * (1.0 - f("repeat_view_ratio"))
    )


# Order matches DEFAULT_PERSONAS
ARCHETYPE_SCORERS: List[Callable[[Callable[[str], float]], float]] = [
    _casual_score,
    _liveops_score,
    _analyst_score,
]


# =============================================================================
# K-Means
# =============================================================================


@dataclass
class KMeansRun:
    """One K-Means run in standardized space."""

    centroids: np.ndarray
    labels: np.ndarray
    inertia: float
    iterations: int
    inertia_history: List[float] = field(default_factory=list)


def kmeans_plus_plus(data: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    """
    K-Means++ seeding.

    The first centroid is a uniformly random row; each next one is drawn with
    probability proportional to squared distance from the nearest chosen
    centroid. Already-chosen rows get weight 0. When all weights are 0
    (duplicate rows) a uniformly random row is used.
    """
    n = data.shape[0]
    first = int(rng.integers(n))
    chosen = [first]
    centroids = [data[first].copy()]
    closest_sq = np.sum((data - data[first]) ** 2, axis=1)

    for _ in range(1, k):
        weights = closest_sq.copy()
        weights[chosen] = 0.0
        total = weights.sum()
        if total > 0:
            target = rng.random() * total
            idx = int(np.searchsorted(np.cumsum(weights), target, side="left"))
            idx = min(idx, n - 1)
            chosen.append(idx)
        else:
            idx = int(rng.integers(n))
        centroids.append(data[idx].copy())
        closest_sq = np.minimum(closest_sq, np.sum((data - data[idx]) ** 2, axis=1))

    return np.vstack(centroids)


def kmeans(
    data: np.ndarray,
    k: int,
    rng: np.random.Generator,
    max_iter: Optional[int] = None,
) -> KMeansRun:
    """
    K-Means++ seeded Lloyd iterations.

    Iterates until no assignment changes or max_iter is reached. A cluster that
    loses all its members keeps its previous centroid.

    Raises:
        InvalidConfigError: If k < 1 or k exceeds the number of rows
    """
    n = data.shape[0]
    if k < 1 or k > n:
        raise InvalidConfigError(f"k must lie in [1, {n}], got {k}")
    if max_iter is None:
        max_iter = get_settings().kmeans_max_iter

    centroids = kmeans_plus_plus(data, k, rng)
    labels = np.full(n, -1, dtype=np.int64)
    history: List[float] = []
    iterations = 0

    for it in range(max(max_iter, 1)):
        iterations = it + 1
        new_labels = np.argmin(pairwise_distances(data, centroids), axis=1)
        changed = bool(np.any(new_labels != labels))
        labels = new_labels

        for c in range(k):
            members = data[labels == c]
            if len(members) > 0:
                centroids[c] = members.mean(axis=0)

        history.append(_inertia(data, centroids, labels))
        if not changed:
            break

    return KMeansRun(
        centroids=centroids,
        labels=labels,
        inertia=_inertia(data, centroids, labels),
        iterations=iterations,
        inertia_history=history,
    )


def _inertia(data: np.ndarray, centroids: np.ndarray, labels: np.ndarray) -> float:
    diff = data - centroids[labels]
    return float(np.sum(diff * diff))


def best_of_restarts(
    data: np.ndarray,
    k: int,
    restarts: int,
    rng: np.random.Generator,
    max_iter: Optional[int] = None,
) -> KMeansRun:
    """Run K-Means `restarts` times from one generator and keep the lowest inertia."""
    best: Optional[KMeansRun] = None
    for _ in range(max(restarts, 1)):
        run = kmeans(data, k, rng, max_iter)
        if best is None or run.inertia < best.inertia:
            best = run
    return best


# =============================================================================
# Silhouette
# =============================================================================


def silhouette_score(
    data: np.ndarray,
    labels: Sequence[int],
    sample_size: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> float:
    """
    Mean silhouette coefficient, s = (b - a) / max(a, b).

    a is the mean distance to the other members of the point's cluster (0 for a
    singleton); b is the smallest mean distance to another non-empty cluster.
    A point with no other non-empty cluster scores 0.

    Args:
        data: Rows in the space the clustering ran in
        labels: Cluster id per row
        sample_size: When set and exceeded, score a seeded random subset of rows
        rng: Generator for the subset (a default-seeded one when None)

    Returns:
        Silhouette in [-1, 1]; 0.0 for fewer than two rows
    """
    data = np.asarray(data, dtype=np.float64)
    labels = np.asarray(labels)
    n = data.shape[0]
    if n < 2:
        return 0.0

    if sample_size is not None and n > sample_size:
        rng = rng if rng is not None else make_rng()
        subset = rng.choice(n, size=sample_size, replace=False)
        data, labels = data[subset], labels[subset]
        n = sample_size

    cluster_ids, cluster_of = np.unique(labels, return_inverse=True)
    if len(cluster_ids) < 2:
        return 0.0

    membership = np.zeros((n, len(cluster_ids)))
    membership[np.arange(n), cluster_of] = 1.0
    sizes = membership.sum(axis=0)

    total = 0.0
    for start in range(0, n, SILHOUETTE_CHUNK_SIZE):
        stop = min(start + SILHOUETTE_CHUNK_SIZE, n)
        rows = np.arange(start, stop)
        dist = pairwise_distances(data[start:stop], data)
        dist[rows - start, rows] = 0.0
        sums = dist @ membership

        own = cluster_of[start:stop]
        own_size = sizes[own]
        a = np.where(own_size > 1, sums[rows - start, own] / np.maximum(own_size - 1, 1), 0.0)

        means = sums / sizes
        means[rows - start, own] = np.inf
        b = means.min(axis=1)

        denom = np.maximum(a, b)
        s = np.where(denom > 0, (b - a) / np.where(denom > 0, denom, 1.0), 0.0)
        total += float(s.sum())

    return float(np.clip(total / n, -1.0, 1.0))


# =============================================================================
# Feature Matrix
# =============================================================================


def check_feature_names(selected: Sequence[str], log_features: Sequence[str] = ()) -> None:
    """
    Validate a persona feature selection and its log-transformed columns.

    Raises:
        InvalidConfigError: On an empty selection, duplicates or unknown feature names
    """
    if not selected:
        raise InvalidConfigError("At least one persona feature must be selected")
    if len(set(selected)) != len(selected):
        raise InvalidConfigError("Selected persona features must be unique")
    unknown = [name for name in [*selected, *log_features] if name not in PERSONA_FEATURE_NAMES]
    if unknown:
        raise InvalidConfigError(f"Unknown persona features: {unknown}")


def resolve_features(config: Optional[ClusterConfig]) -> Tuple[List[str], List[str]]:
    """
    Selected features and log-transformed features of a clustering config.

    Raises:
        InvalidConfigError: On an empty selection or unknown feature names
    """
    if config is None or config.selectedFeatures is None:
        selected = list(PERSONA_FEATURE_NAMES)
    else:
        selected = list(config.selectedFeatures)
    log_features = list(config.logTransformFeatures) if config else []
    check_feature_names(selected, log_features)
    return selected, log_features


def check_clustering_result(result: ClusteringResult) -> None:
    """
    Validate a clustering result handed back by a caller.

    Raises:
        InvalidConfigError: If its feature names are invalid or its centroids and
            personas do not line up with them
    """
    check_feature_names(result.featureNames)
    if len(result.centroids) != result.k:
        raise InvalidConfigError(f"Expected {result.k} centroids, got {len(result.centroids)}")
    width = len(result.featureNames)
    if any(len(centroid) != width for centroid in result.centroids):
        raise InvalidConfigError(f"Every centroid must have {width} values, one per feature")
    if len(result.personas) != len(result.centroids):
        raise InvalidConfigError(
            f"Got {len(result.personas)} personas for {len(result.centroids)} centroids"
        )
    if sorted(p.id for p in result.personas) != list(range(len(result.centroids))):
        raise InvalidConfigError("Persona ids must number the centroids 0..k-1")


def build_persona_matrix(
    rows: Sequence[PersonaFeatureRow],
    features: Sequence[str],
    log_features: Sequence[str] = (),
) -> np.ndarray:
    """Matrix [rows x features] with log1p applied to the listed columns."""
    X = np.array(
        [[float(getattr(row, name)) for name in features] for row in rows],
        dtype=np.float64,
    ).reshape(len(rows), len(features))
    for j, name in enumerate(features):
        if name in log_features:
            X[:, j] = np.log1p(X[:, j])
    return X


def denormalize_centroids(
    centroids: np.ndarray,
    means: np.ndarray,
    stds: np.ndarray,
    features: Sequence[str],
    log_features: Sequence[str],
) -> np.ndarray:
    """Map standardized centroids back to original units (inverse z-score, then expm1)."""
    raw = centroids * stds + means
    for j, name in enumerate(features):
        if name in log_features:
            raw[:, j] = np.expm1(raw[:, j])
    return raw


# =============================================================================
# Archetype Matching
# =============================================================================


def archetype_scores(centroids: np.ndarray, feature_names: Sequence[str]) -> np.ndarray:
    """Score matrix [clusters x templates]; unselected features read as 0."""
    scores = np.zeros((len(centroids), len(ARCHETYPE_SCORERS)))
    for c, centroid in enumerate(centroids):
        values: Dict[str, float] = dict(zip(feature_names, (float(v) for v in centroid)))

        def f(name: str) -> float:
            return values.get(name, 0.0)

        for p, scorer in enumerate(ARCHETYPE_SCORERS):
            scores[c, p] = scorer(f)
    return scores


def interpret_clusters(centroids: np.ndarray, feature_names: Sequence[str]) -> List[int]:
    """
    Template index for each cluster.

    Greedy unique matching for min(k, templates) rounds, highest remaining score
    first; leftover clusters take their best-scoring template.
    """
    scores = archetype_scores(np.asarray(centroids, dtype=np.float64), feature_names)
    k, n_templates = scores.shape
    mapping = [-1] * k
    used = set()

    for _ in range(min(k, n_templates)):
        best_cluster, best_template, best_score = -1, -1, -np.inf
        for c in range(k):
            if mapping[c] != -1:
                continue
            for p in range(n_templates):
                if p in used:
                    continue
                if scores[c, p] > best_score:
                    best_cluster, best_template, best_score = c, p, scores[c, p]
        if best_cluster >= 0:
            mapping[best_cluster] = best_template
            used.add(best_template)

    for c in range(k):
        if mapping[c] == -1:
            mapping[c] = int(np.argmax(scores[c]))
    return mapping


# =============================================================================
# Public Entry Points
# =============================================================================


def run_persona_clustering(
    rows: Sequence[PersonaFeatureRow],
    k: int = 3,
    config: Optional[ClusterConfig] = None,
    seed: Optional[int] = None,
) -> ClusteringResult:
    """
    Cluster users into k personas.

    Args:
        rows: Persona feature rows
        k: Number of clusters
        config: Feature selection and log transforms (all features, no logs when None)
        seed: Seed for K-Means++ seeding (settings.random_seed when None)

    Returns:
        ClusteringResult with denormalized centroids and per-user assignments

    Raises:
        EmptyDatasetError: If rows is empty
        InvalidConfigError: If k is out of range or a feature name is unknown
    """
    if not rows:
        raise EmptyDatasetError("Cannot cluster an empty set of persona rows")
    if k < 1 or k > len(rows):
        raise InvalidConfigError(f"k must lie in [1, {len(rows)}], got {k}")

    settings = get_settings()
    features, log_features = resolve_features(config)

    X = build_persona_matrix(rows, features, log_features)
    Xn, means, stds = standardize(X)

    rng = make_rng(seed)
    best = best_of_restarts(Xn, k, settings.clustering_restarts, rng, settings.kmeans_max_iter)

    centroids = denormalize_centroids(best.centroids, means, stds, features, log_features)
    personas = [
        DEFAULT_PERSONAS[template].model_copy(update={"id": c})
        for c, template in enumerate(interpret_clusters(centroids, features))
    ]

    distances = np.linalg.norm(Xn - best.centroids[best.labels], axis=1)
    edge_threshold = distances.mean() + settings.edge_case_sigma * distances.std()

    assignments = []
    for row, label, dist in zip(rows, best.labels, distances):
        persona = personas[int(label)]
        assignments.append(PersonaAssignment(
            user_id=row.user_id,
            persona_id=int(label),
            persona_name=persona.name,
            distance_to_centroid=float(dist),
            is_edge_case=bool(dist > edge_threshold),
            recommended_onboarding_type=persona.onboardingType,
            features=row,
        ))

    sizes = np.bincount(best.labels, minlength=k)
    logger.info(
        f"Clustered {len(rows)} users into k={k} over {len(features)} features: "
        f"inertia={best.inertia:.2f}, iterations={best.iterations}, sizes={sizes.tolist()}"
    )

    return ClusteringResult(
        centroids=centroids.tolist(),
        assignments=assignments,
        personas=personas,
        inertia=best.inertia,
        iterations=best.iterations,
        k=k,
        featureNames=features,
    )


def compute_elbow_data(
    rows: Sequence[PersonaFeatureRow],
    k_range: Optional[Sequence[int]] = None,
    config: Optional[ClusterConfig] = None,
    seed: Optional[int] = None,
) -> List[ElbowPoint]:
    """
    Inertia and silhouette of the best clustering for each k.

    k values below 1 or above the number of rows are skipped with a warning.

    Raises:
        EmptyDatasetError: If rows is empty
        InvalidConfigError: If a feature name is unknown
    """
    if not rows:
        raise EmptyDatasetError("Cannot sweep k over an empty set of persona rows")

    settings = get_settings()
    features, log_features = resolve_features(config)
    Xn, _, _ = standardize(build_persona_matrix(rows, features, log_features))
    rng = make_rng(seed)

    points: List[ElbowPoint] = []
    for k in (k_range if k_range is not None else DEFAULT_ELBOW_K_RANGE):
        if k < 1 or k > len(rows):
            logger.warning(f"Skipping k={k}: must lie in [1, {len(rows)}]")
            continue
        run = best_of_restarts(Xn, k, settings.elbow_restarts, rng, settings.kmeans_max_iter)
        silhouette = silhouette_score(Xn, run.labels, settings.silhouette_sample_size, rng)
        points.append(ElbowPoint(k=k, inertia=run.inertia, silhouette=silhouette))
        logger.debug(f"Elbow k={k}: inertia={run.inertia:.2f}, silhouette={silhouette:.3f}")

    return points


def infer_persona(row: PersonaFeatureRow, result: ClusteringResult) -> PersonaAssignment:
    """
    Place a new user in an existing clustering by nearest centroid.

    Distances are taken in original units against the denormalized centroids,
    over the clustering's own feature list.

    Raises:
        InvalidConfigError: If the clustering result is malformed
    """
    check_clustering_result(result)
    vector = np.array([float(getattr(row, name)) for name in result.featureNames])
    centroids = np.asarray(result.centroids, dtype=np.float64)
    distances = np.linalg.norm(centroids - vector, axis=1)
    cluster = int(np.argmin(distances))
    persona = next(p for p in result.personas if p.id == cluster)
    return PersonaAssignment(
        user_id=row.user_id,
        persona_id=cluster,
        persona_name=persona.name,
        distance_to_centroid=float(distances[cluster]),
        recommended_onboarding_type=persona.onboardingType,
        features=row,
    )
