"""
Persona feature pipeline: raw logs -> cleaned events -> behavioral signals per user.

The eight persona features describe how a user works with the dashboards rather than
what they produce:

| Feature                   | Kind    | Log-transform |
|---------------------------|---------|---------------|
| total_events_30d          | count   | recommended   |
| unique_dashboards_viewed  | count   | recommended   |
| mobile_ratio              | ratio   |               |
| realtime_ratio            | ratio   |               |
| repeat_view_ratio         | ratio   |               |
| games_touched             | count   | recommended   |
| navigation_entropy        | entropy |               |
| active_hour_std           | std     |               |

Count features are heavy-tailed, so the clustering layer applies log1p to them when
asked; ratios are already bounded to [0, 1].
"""

import logging
import re
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd

from ml_engine.core.exceptions import EmptyDatasetError
from ml_engine.models.enums import PersonaFeatureKind
from ml_engine.models.schemas import CleanedLog, PersonaFeatureMeta, PersonaFeatureRow, RawLogEntry
from ml_engine.services.feature_builder import DEFAULT_ACTIVE_HOUR, logs_to_frame


logger = logging.getLogger(__name__)


# Leading code prefixes such as "A49 - " or "661 - " on resource names
RESOURCE_PREFIX_PATTERN = re.compile(r"^[A-Z0-9,]+\s*-\s*")

DASHBOARD_RESOURCE_TYPES = ("dashboard", "realtime")
GAME_RESOURCE_TYPES = ("game", "tableau")


# =============================================================================
# Feature Catalog
# =============================================================================


PERSONA_FEATURE_META: List[PersonaFeatureMeta] = [
    PersonaFeatureMeta(
        name="total_events_30d",
        label="Total Events (30d)",
        type=PersonaFeatureKind.COUNT,
        recommendLog=True,
        description="Raw event count per user over 30 days. Heavy-tailed; power users dominate.",
    ),
    PersonaFeatureMeta(
        name="unique_dashboards_viewed",
        label="Unique Dashboards Viewed",
        type=PersonaFeatureKind.COUNT,
        recommendLog=True,
        description="Distinct dashboard and realtime resources viewed. Measures breadth of exploration.",
    ),
    PersonaFeatureMeta(
        name="mobile_ratio",
        label="Mobile Ratio",
        type=PersonaFeatureKind.RATIO,
        recommendLog=False,
        description="Fraction of events from mobile devices. High values indicate mobile-first users.",
    ),
    PersonaFeatureMeta(
        name="realtime_ratio",
        label="Realtime Dashboard Ratio",
        type=PersonaFeatureKind.RATIO,
        recommendLog=False,
        description="Fraction of views on realtime dashboards used to monitor live game health.",
    ),
    PersonaFeatureMeta(
        name="repeat_view_ratio",
        label="Repeat View Ratio",
        type=PersonaFeatureKind.RATIO,
        recommendLog=False,
        description="1 - unique resources / events. High values mean the same dashboards are revisited.",
    ),
    PersonaFeatureMeta(
        name="games_touched",
        label="Games Touched",
        type=PersonaFeatureKind.COUNT,
        recommendLog=True,
        description="Distinct game and tableau resources interacted with. Measures cross-game exploration.",
    ),
    PersonaFeatureMeta(
        name="navigation_entropy",
        label="Navigation Entropy",
        type=PersonaFeatureKind.ENTROPY,
        recommendLog=False,
        description="Shannon entropy (base 2) of the resource visit distribution. High = exploratory.",
    ),
    PersonaFeatureMeta(
        name="active_hour_std",
        label="Active Hour Std Dev",
        type=PersonaFeatureKind.STD,
        recommendLog=False,
        description="Population std of the active hour of day. Low = consistent schedule.",
    ),
]

PERSONA_FEATURE_NAMES: List[str] = [meta.name for meta in PERSONA_FEATURE_META]

META_BY_NAME: Dict[str, PersonaFeatureMeta] = {meta.name: meta for meta in PERSONA_FEATURE_META}


def feature_label(name: str) -> str:
    """Human-readable label of a persona feature, falling back to its name."""
    meta = META_BY_NAME.get(name)
    return meta.label if meta else name


def recommended_log_features() -> List[str]:
    return [meta.name for meta in PERSONA_FEATURE_META if meta.recommendLog]


# =============================================================================
# Cleaning
# =============================================================================


def clean_logs(raw_logs: Sequence[RawLogEntry]) -> List[CleanedLog]:
    """
    Normalize raw log entries for persona aggregation.

    - Strips leading code prefixes from resource names ("A49 - Live KPIs" -> "Live KPIs")
    - Derives the hour of day, 12 when the timestamp does not parse
    - Defaults device and source to "unknown"

    Expects entries whose metadata was already decoded by parse_raw_logs.
    """
    if not raw_logs:
        return []

    frame = logs_to_frame(raw_logs)
    hours = frame["ts"].dt.hour

    cleaned: List[CleanedLog] = []
    for log, hour in zip(raw_logs, hours):
        cleaned.append(CleanedLog(
            user_id=log.user_id,
            resource_type=log.resource_type,
            resource_name=RESOURCE_PREFIX_PATTERN.sub("", log.resource_name or ""),
            hour=int(DEFAULT_ACTIVE_HOUR) if pd.isna(hour) else int(hour),
            device=log.device_type or "unknown",
            source=log.source_item or "unknown",
        ))
    return cleaned


# =============================================================================
# Aggregation
# =============================================================================


def _shannon_entropy(counts: pd.Series) -> float:
    p = counts.to_numpy(dtype=np.float64) / counts.sum()
    p = p[p > 0]
    return float(-np.sum(p * np.log2(p)))


def _persona_row(user_id: str, events: pd.DataFrame) -> PersonaFeatureRow:
    total = len(events)
    resource_types = events["resource_type"]
    names = events["resource_name"]

    dashboards = names[resource_types.isin(DASHBOARD_RESOURCE_TYPES)].nunique()
    games = names[resource_types.isin(GAME_RESOURCE_TYPES)].nunique()
    repeat_ratio = round(1.0 - names.nunique() / total, 3) if total > 1 else 0.0
    hour_std = float(events["hour"].std(ddof=0)) if total > 1 else 0.0

    return PersonaFeatureRow(
        user_id=user_id,
        total_events_30d=float(total),
        unique_dashboards_viewed=float(dashboards),
        mobile_ratio=round(float((events["device"] == "mobile").sum()) / total, 3),
        realtime_ratio=round(float((resource_types == "realtime").sum()) / total, 3),
        repeat_view_ratio=repeat_ratio,
        games_touched=float(games),
        navigation_entropy=round(_shannon_entropy(names.value_counts()), 3),
        active_hour_std=round(hour_std, 2),
    )


def aggregate_to_persona_features(cleaned: Sequence[CleanedLog]) -> List[PersonaFeatureRow]:
    """
    Aggregate cleaned events into one PersonaFeatureRow per user.

    Users appear in order of their first event. Ratios and entropy are rounded
    to 3 decimals, hour std to 2.

    Raises:
        EmptyDatasetError: If no events are supplied
    """
    if not cleaned:
        raise EmptyDatasetError("Cannot aggregate persona features from an empty log set")

    frame = pd.DataFrame([log.model_dump() for log in cleaned])
    rows = [
        _persona_row(str(user_id), events)
        for user_id, events in frame.groupby("user_id", sort=False)
    ]
    logger.info(f"Aggregated {len(cleaned)} events into {len(rows)} persona feature rows")
    return rows
