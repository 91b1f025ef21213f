"""
Model diagnosis for persona clustering.

Combines four analyses into a priority-ordered list of recommendations:

1. Feature importance by silhouette probes
   - leave-one-out for selected features (delta = baseline - without)
   - add-one-in for unselected features, with their recommended log transform
     (delta = with - baseline)
   Verdicts: critical > 0.05, helpful > 0.01, harmful < -0.03, else neutral.

2. Alternative feature subsets (all features, ratios only, behavioral only,
   volume only), each silhouette-scored and ranked.

3. Cluster profiles: each centroid value is placed within the range spanned by
   all centroids (> 0.7 high, < 0.3 low) and summarized as text.

4. The elbow sweep: best k, and whether every k is weak (< 0.5).

Probes reuse the clustering pipeline with a fixed seed per probe, so deltas
compare like with like. Nothing here mutates the clustering result.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ml_engine.core.config import get_settings
from ml_engine.models.enums import (
    FeatureLevel,
    FeatureVerdict,
    PersonaFeatureKind,
    QualityTier,
    RecommendationPriority,
    RecommendationType,
)
from ml_engine.models.schemas import (
    ClusterConfig,
    ClusteringResult,
    ClusterProfile,
    DominantFeature,
    ElbowPoint,
    FeatureComboSuggestion,
    FeatureImportanceResult,
    ModelDiagnosis,
    PersonaFeatureRow,
    Recommendation,
)
from ml_engine.services.clustering import (
    best_of_restarts,
    build_persona_matrix,
    check_clustering_result,
    check_feature_names,
    silhouette_score,
)
from ml_engine.services.numeric import make_rng, standardize
from ml_engine.services.persona_features import (
    META_BY_NAME,
    PERSONA_FEATURE_META,
    PERSONA_FEATURE_NAMES,
    feature_label,
    recommended_log_features,
)


logger = logging.getLogger(__name__)


# Verdict thresholds on silhouette delta
CRITICAL_DELTA: float = 0.05
HELPFUL_DELTA: float = 0.01
HARMFUL_DELTA: float = -0.03

# Quality tiers on silhouette
GOOD_SILHOUETTE: float = 0.5
WEAK_SILHOUETTE: float = 0.25

# An alternative (k or combo) must beat the current silhouette by this much
MATERIAL_IMPROVEMENT: float = 0.02

# Normalized centroid position bounds for high / low levels
HIGH_LEVEL: float = 0.7
LOW_LEVEL: float = 0.3

PRIORITY_ORDER = {
    RecommendationPriority.HIGH: 0,
    RecommendationPriority.MEDIUM: 1,
    RecommendationPriority.LOW: 2,
}

BEHAVIORAL_FEATURES = [
    "realtime_ratio",
    "repeat_view_ratio",
    "navigation_entropy",
    "active_hour_std",
    "mobile_ratio",
]

VOLUME_FEATURES = ["total_events_30d", "unique_dashboards_viewed", "games_touched"]


# =============================================================================
# Silhouette Probe
# =============================================================================


def quick_silhouette(
    rows: Sequence[PersonaFeatureRow],
    k: int,
    features: Sequence[str],
    log_transforms: Sequence[str],
    seed: Optional[int] = None,
) -> float:
    """
    Silhouette of a short clustering run over a feature subset.

    Returns -1.0 when fewer than two features are given.
    """
    if len(features) < 2:
        return -1.0
    settings = get_settings()
    Xn, _, _ = standardize(build_persona_matrix(rows, features, log_transforms))
    rng = make_rng(seed)
    run = best_of_restarts(Xn, k, settings.diagnosis_restarts, rng, settings.diagnosis_max_iter)
    return silhouette_score(Xn, run.labels, settings.silhouette_sample_size, rng)


def _verdict(delta: float) -> FeatureVerdict:
    if delta > CRITICAL_DELTA:
        return FeatureVerdict.CRITICAL
    if delta > HELPFUL_DELTA:
        return FeatureVerdict.HELPFUL
    if delta < HARMFUL_DELTA:
        return FeatureVerdict.HARMFUL
    return FeatureVerdict.NEUTRAL


# =============================================================================
# Feature Importance
# =============================================================================


def analyze_feature_importance(
    rows: Sequence[PersonaFeatureRow],
    k: int,
    current_features: Sequence[str],
    log_transforms: Sequence[str],
    seed: Optional[int] = None,
) -> List[FeatureImportanceResult]:
    """
    Silhouette impact of removing each selected feature and adding each unselected one.

    Leave-one-out needs at least three selected features (removing one must leave
    two); with two selected only add-one-in runs, with fewer nothing does.
    Results are sorted by |delta|, largest first.
    """
    if len(current_features) < 2:
        return []

    baseline = quick_silhouette(rows, k, current_features, log_transforms, seed)
    results: List[FeatureImportanceResult] = []

    if len(current_features) > 2:
        for feature in current_features:
            without = [f for f in current_features if f != feature]
            silhouette = quick_silhouette(rows, k, without, log_transforms, seed)
            delta = baseline - silhouette
            results.append(FeatureImportanceResult(
                feature=feature,
                label=feature_label(feature),
                selected=True,
                baselineSilhouette=baseline,
                silhouetteWithout=silhouette,
                delta=delta,
                verdict=_verdict(delta),
            ))

    for feature in PERSONA_FEATURE_NAMES:
        if feature in current_features:
            continue
        logs = list(log_transforms)
        if META_BY_NAME[feature].recommendLog and feature not in logs:
            logs.append(feature)
        silhouette = quick_silhouette(rows, k, [*current_features, feature], logs, seed)
        delta = silhouette - baseline
        results.append(FeatureImportanceResult(
            feature=feature,
            label=feature_label(feature),
            selected=False,
            baselineSilhouette=baseline,
            silhouetteWithout=silhouette,
            delta=delta,
            verdict=_verdict(delta),
        ))

    results.sort(key=lambda r: abs(r.delta), reverse=True)
    return results


# =============================================================================
# Alternative Feature Combos
# =============================================================================


def _candidate_combos() -> List[Tuple[List[str], List[str], str]]:
    recommended_logs = recommended_log_features()
    non_count = [
        m.name for m in PERSONA_FEATURE_META
        if m.type in (PersonaFeatureKind.RATIO, PersonaFeatureKind.ENTROPY, PersonaFeatureKind.STD)
    ]
    volume_logs = [name for name in VOLUME_FEATURES if name in recommended_logs]
    return [
        (list(PERSONA_FEATURE_NAMES), recommended_logs, "All features: maximum information"),
        (non_count, [], "Ratios + entropy + std only: removes count-dominated variance"),
        (list(BEHAVIORAL_FEATURES), [], "Behavioral signals only: focused on usage patterns, not volume"),
        (list(VOLUME_FEATURES), volume_logs, "Volume & diversity only: separates power users from casual"),
    ]


def suggest_feature_combos(
    rows: Sequence[PersonaFeatureRow],
    k: int,
    current_features: Sequence[str],
    log_transforms: Sequence[str],
    seed: Optional[int] = None,
) -> List[FeatureComboSuggestion]:
    """
    Score the canned feature subsets against the current selection.

    A subset equal to the current selection (order ignored) is skipped.
    Suggestions are sorted by silhouette, best first.
    """
    baseline = quick_silhouette(rows, k, current_features, log_transforms, seed)
    current = sorted(current_features)

    suggestions: List[FeatureComboSuggestion] = []
    for features, logs, reason in _candidate_combos():
        if sorted(features) == current:
            continue
        silhouette = quick_silhouette(rows, k, features, logs, seed)
        suggestions.append(FeatureComboSuggestion(
            features=features,
            logTransforms=logs,
            silhouette=silhouette,
            delta=silhouette - baseline,
            reason=reason,
        ))

    suggestions.sort(key=lambda s: s.silhouette, reverse=True)
    return suggestions


# =============================================================================
# Cluster Profiles
# =============================================================================


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def interpret_cluster_profiles(result: ClusteringResult) -> List[ClusterProfile]:
    """Business-readable profile of every cluster in a clustering result."""
    centroids = np.asarray(result.centroids, dtype=np.float64)
    total_users = len(result.assignments)
    lows, highs = centroids.min(axis=0), centroids.max(axis=0)

    profiles: List[ClusterProfile] = []
    for persona in result.personas:
        centroid = centroids[persona.id]
        dominant: List[DominantFeature] = []
        for j, name in enumerate(result.featureNames):
            span = highs[j] - lows[j]
            level = FeatureLevel.MEDIUM
            if span > 0:
                position = (centroid[j] - lows[j]) / span
                if position > HIGH_LEVEL:
                    level = FeatureLevel.HIGH
                elif position < LOW_LEVEL:
                    level = FeatureLevel.LOW
            dominant.append(DominantFeature(feature=name, value=float(centroid[j]), level=level))

        high_names = [d.feature.replace("_", " ") for d in dominant if d.level == FeatureLevel.HIGH]
        low_names = [d.feature.replace("_", " ") for d in dominant if d.level == FeatureLevel.LOW]
        parts = []
        if high_names:
            parts.append(f"High {', '.join(high_names)}")
        if low_names:
            parts.append(f"Low {', '.join(low_names)}")
        description = "; ".join(parts) or "Average across all features"

        user_count = sum(1 for a in result.assignments if a.persona_id == persona.id)
        percent = _round_half_up(100.0 * user_count / total_users) if total_users else 0

        profiles.append(ClusterProfile(
            clusterId=persona.id,
            suggestedName=persona.name,
            description=description,
            dominantFeatures=dominant,
            userCount=user_count,
            percentOfTotal=percent,
        ))
    return profiles


# =============================================================================
# Full Diagnosis
# =============================================================================


def quality_tier(silhouette: float) -> QualityTier:
    if silhouette >= GOOD_SILHOUETTE:
        return QualityTier.GOOD
    if silhouette >= WEAK_SILHOUETTE:
        return QualityTier.WEAK
    return QualityTier.POOR


def diagnose_model(
    rows: Sequence[PersonaFeatureRow],
    result: ClusteringResult,
    elbow: Sequence[ElbowPoint],
    config: Optional[ClusterConfig] = None,
    seed: Optional[int] = None,
) -> ModelDiagnosis:
    """
    Diagnose a persona clustering and recommend what to change.

    Args:
        rows: Persona rows the clustering was computed from
        result: The clustering to diagnose
        elbow: Elbow sweep over k (may be empty)
        config: Feature selection of the run; defaults to result.featureNames, no logs
        seed: Seed for every silhouette probe

    Returns:
        ModelDiagnosis with importance verdicts, combos, profiles and recommendations
        ordered by priority (stable within a priority)

    Raises:
        InvalidConfigError: If the clustering result or the feature selection is malformed
    """
    check_clustering_result(result)
    if config is not None and config.selectedFeatures is not None:
        current_features = list(config.selectedFeatures)
    else:
        current_features = list(result.featureNames)
    log_transforms = list(config.logTransformFeatures) if config else []
    check_feature_names(current_features, log_transforms)

    current_point = next((p for p in elbow if p.k == result.k), None)
    if current_point is not None:
        silhouette = current_point.silhouette
    else:
        silhouette = quick_silhouette(rows, result.k, current_features, log_transforms, seed)

    sweep = list(elbow) or [ElbowPoint(k=result.k, inertia=result.inertia, silhouette=max(silhouette, -1.0))]
    best_point = sweep[0]
    for point in sweep[1:]:
        if point.silhouette > best_point.silhouette:
            best_point = point
    all_k_weak = all(p.silhouette < GOOD_SILHOUETTE for p in sweep)

    quality = quality_tier(silhouette)
    importance = analyze_feature_importance(rows, result.k, current_features, log_transforms, seed)
    combos = suggest_feature_combos(rows, result.k, current_features, log_transforms, seed)
    profiles = interpret_cluster_profiles(result)

    recommendations: List[Recommendation] = []

    if best_point.k != result.k and best_point.silhouette > silhouette + MATERIAL_IMPROVEMENT:
        recommendations.append(Recommendation(
            action=(
                f"Switch to K={best_point.k} (silhouette {best_point.silhouette:.3f} "
                f"vs current {silhouette:.3f})"
            ),
            type=RecommendationType.K,
            priority=RecommendationPriority.HIGH,
        ))

    for item in importance:
        if item.selected and item.verdict == FeatureVerdict.HARMFUL:
            recommendations.append(Recommendation(
                action=f"Drop {item.label}: removing it improves silhouette by {abs(item.delta):.3f}",
                type=RecommendationType.FEATURE,
                priority=RecommendationPriority.HIGH,
            ))

    for item in importance:
        if not item.selected and item.verdict in (FeatureVerdict.CRITICAL, FeatureVerdict.HELPFUL):
            recommendations.append(Recommendation(
                action=f"Add {item.label}: expected to improve silhouette by {item.delta:.3f}",
                type=RecommendationType.FEATURE,
                priority=(
                    RecommendationPriority.HIGH
                    if item.verdict == FeatureVerdict.CRITICAL
                    else RecommendationPriority.MEDIUM
                ),
            ))

    best_combo = next((c for c in combos if c.silhouette > silhouette + MATERIAL_IMPROVEMENT), None)
    if best_combo is not None:
        recommendations.append(Recommendation(
            action=f'Try "{best_combo.reason}" combo (expected silhouette {best_combo.silhouette:.3f})',
            type=RecommendationType.FEATURE,
            priority=RecommendationPriority.MEDIUM,
        ))

    if all_k_weak:
        recommendations.append(Recommendation(
            action="Consider soft clustering (GMM): no K produces strong clusters with current features",
            type=RecommendationType.ALGO,
            priority=RecommendationPriority.MEDIUM,
        ))

    if quality == QualityTier.GOOD or (quality == QualityTier.WEAK and not recommendations):
        recommendations.append(Recommendation(
            action="Proceed to cluster interpretation: inspect centroid profiles and map to business personas",
            type=RecommendationType.ACCEPT,
            priority=(
                RecommendationPriority.HIGH
                if quality == QualityTier.GOOD
                else RecommendationPriority.MEDIUM
            ),
        ))

    recommendations.sort(key=lambda r: PRIORITY_ORDER[r.priority])

    logger.info(
        f"Diagnosed k={result.k}: silhouette={silhouette:.3f} ({quality.value}), "
        f"best k={best_point.k}, {len(recommendations)} recommendations"
    )

    return ModelDiagnosis(
        overallQuality=quality,
        silhouette=silhouette,
        bestK=best_point.k,
        bestKSilhouette=best_point.silhouette,
        isKOptimal=best_point.k == result.k,
        allKWeak=all_k_weak,
        featureImportance=importance,
        suggestedCombos=combos,
        clusterProfiles=profiles,
        recommendations=recommendations,
    )
