"""
Feature builder: raw dashboard event logs -> one engineered row per user.

Two passes over the data:
1. Per-user aggregation of event counts, resource diversity, device/resource ratios,
   category counts, folder diversity, active-hour mean and activity span, plus the
   most visited resource type.
2. Dataset-wide labeling. Binary targets use the 75th percentile of the relevant
   column across all users (linear interpolation), so label balance scales with
   dataset size instead of depending on hardcoded cutoffs.

Feature Rows:
    Rows are FeatureRow records (user_id + column -> numeric/categorical value).
    build_feature_matrix validates column types once for a whole batch and returns
    the dense matrix the trainer consumes.

Usage:
    from ml_engine.services.feature_builder import compute_user_features, parse_raw_logs

    rows = compute_user_features(parse_raw_logs(raw_logs))
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd

from ml_engine.core.exceptions import EmptyDatasetError, InvalidConfigError
from ml_engine.models.enums import FeatureSource, FeatureType
from ml_engine.models.schemas import (
    FeatureDefinition,
    FeatureRow,
    FeatureStats,
    RawLogEntry,
)
from ml_engine.services.numeric import percentile


logger = logging.getLogger(__name__)


# Percentile used to draw the binary target cutoffs
TARGET_PERCENTILE: float = 75.0

# Hour reported for users without a single parseable timestamp
DEFAULT_ACTIVE_HOUR: float = 12.0


# =============================================================================
# Feature Catalog
# =============================================================================


def _numeric(feature_id: str, name: str, description: str) -> FeatureDefinition:
    return FeatureDefinition(
        id=feature_id,
        name=name,
        description=description,
        type=FeatureType.NUMERIC,
        source=FeatureSource.ENGINEERED,
    )


DEFAULT_FEATURES: List[FeatureDefinition] = [
    _numeric("session_count", "Session Count", "Total number of page visits per user"),
    _numeric("unique_resource_types", "Unique Resource Types", "Number of distinct resource_type values visited"),
    _numeric("unique_resources", "Unique Resources", "Number of distinct resource_name values viewed"),
    _numeric("mobile_ratio", "Mobile Usage Ratio", "Fraction of visits from mobile devices"),
    _numeric("realtime_ratio", "Realtime Dashboard Ratio", "Fraction of visits to realtime dashboards"),
    _numeric("tableau_count", "Tableau Views", "Number of tableau dashboard visits"),
    _numeric("export_count", "Export Count", "Number of export actions performed"),
    _numeric("search_count", "Search Count", "Number of search actions performed"),
    _numeric("unique_games", "Unique Games", "Number of distinct game folders accessed"),
    _numeric("home_visit_ratio", "Home Visit Ratio", "Fraction of visits to the home page"),
    _numeric("avg_hour", "Average Active Hour", "Average hour of the day (0-23) when user is active"),
    _numeric("activity_span_hours", "Activity Span (hours)", "Time between first and last activity in hours"),
]

TARGET_VARIABLES: List[FeatureDefinition] = [
    FeatureDefinition(
        id="is_power_user",
        name="Is Power User",
        description=(
            "Binary: user is in the top 25% for BOTH session count AND resource type "
            "diversity (scales with dataset size)"
        ),
        type=FeatureType.CATEGORICAL,
        source=FeatureSource.ENGINEERED,
    ),
    FeatureDefinition(
        id="will_export",
        name="Will Export",
        description="Binary: user is in the top 25% for export actions (any export when most users have none)",
        type=FeatureType.CATEGORICAL,
        source=FeatureSource.ENGINEERED,
    ),
    FeatureDefinition(
        id="primary_resource",
        name="Primary Resource Type",
        description="Multi-class: the resource type the user visits most",
        type=FeatureType.CATEGORICAL,
        source=FeatureSource.ENGINEERED,
    ),
]


# =============================================================================
# Raw Log Parsing
# =============================================================================


def parse_raw_logs(rows: Sequence[RawLogEntry]) -> List[RawLogEntry]:
    """
    Decode each row's metadata blob into device_type, source_item and folder.

    Malformed or missing metadata yields empty strings rather than an error.

    Args:
        rows: Raw log entries as delivered by the upload layer

    Returns:
        New entries with the parsed fields populated
    """
    parsed: List[RawLogEntry] = []
    malformed = 0
    for row in rows:
        try:
            meta = json.loads(row.metadata or "{}")
            if not isinstance(meta, dict):
                raise ValueError("metadata is not an object")
        except ValueError:
            malformed += 1
            meta = {}
        parsed.append(row.model_copy(update={
            "device_type": str(meta.get("device_type") or ""),
            "source_item": str(meta.get("source_item") or ""),
            "folder": str(meta.get("folder") or ""),
        }))
    if malformed:
        logger.warning(f"{malformed} of {len(rows)} log rows had unparseable metadata")
    return parsed


def logs_to_frame(logs: Sequence[RawLogEntry]) -> pd.DataFrame:
    """
    Tabulate log entries and parse their timestamps.

    Adds a tz-aware `ts` column (NaT where the timestamp does not parse); naive
    timestamps are read as UTC.
    """
    frame = pd.DataFrame([log.model_dump() for log in logs])
    frame["ts"] = pd.to_datetime(frame["timestamp"], errors="coerce", utc=True, format="ISO8601")
    return frame


# =============================================================================
# User Feature Computation
# =============================================================================


def _ratio(count: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(count / total, 3)


def _user_features(user_logs: pd.DataFrame) -> dict:
    """First-pass features for one user's events."""
    session_count = len(user_logs)
    resource_types = user_logs["resource_type"]

    valid_ts = user_logs["ts"].dropna().sort_values()
    if len(valid_ts) > 0:
        avg_hour = round(float(valid_ts.dt.hour.mean()), 1)
    else:
        avg_hour = DEFAULT_ACTIVE_HOUR
    if len(valid_ts) > 1:
        span = (valid_ts.iloc[-1] - valid_ts.iloc[0]).total_seconds() / 3600.0
        activity_span = round(span, 1)
    else:
        activity_span = 0.0

    # Counter keeps insertion order, so most_common breaks ties by first occurrence
    primary_resource = Counter(resource_types.tolist()).most_common(1)[0][0]

    folders = user_logs.loc[user_logs["folder"] != "", "folder"]

    return {
        "session_count": session_count,
        "unique_resource_types": int(resource_types.nunique()),
        "unique_resources": int(user_logs["resource_name"].nunique()),
        "mobile_ratio": _ratio(int((user_logs["device_type"] == "mobile").sum()), session_count),
        "realtime_ratio": _ratio(int((resource_types == "realtime").sum()), session_count),
        "tableau_count": int((resource_types == "tableau").sum()),
        "export_count": int((resource_types == "export").sum()),
        "search_count": int((resource_types == "search").sum()),
        "unique_games": int(folders.nunique()),
        "home_visit_ratio": _ratio(int((resource_types == "home").sum()), session_count),
        "avg_hour": avg_hour,
        "activity_span_hours": activity_span,
        "primary_resource": primary_resource,
    }


def compute_user_features(logs: Sequence[RawLogEntry]) -> List[FeatureRow]:
    """
    Aggregate parsed logs into one feature row per user.

    Users appear in the order of their first event. Binary targets are assigned
    in a second pass from dataset-wide 75th percentiles:
    - is_power_user: session_count >= P75 AND unique_resource_types >= P75
    - will_export: export_count >= P75, or export_count > 0 when P75 is 0

    Args:
        logs: Log entries, ideally already passed through parse_raw_logs

    Returns:
        One FeatureRow per distinct user_id

    Raises:
        EmptyDatasetError: If no log rows are supplied
    """
    if not logs:
        raise EmptyDatasetError("Cannot build features from an empty log set")

    frame = logs_to_frame(logs)

    per_user = [
        (str(user_id), _user_features(user_logs))
        for user_id, user_logs in frame.groupby("user_id", sort=False)
    ]

    sessions = [values["session_count"] for _, values in per_user]
    resource_types = [values["unique_resource_types"] for _, values in per_user]
    exports = [values["export_count"] for _, values in per_user]

    session_p75 = percentile(sessions, TARGET_PERCENTILE)
    resource_types_p75 = percentile(resource_types, TARGET_PERCENTILE)
    export_p75 = percentile(exports, TARGET_PERCENTILE)

    rows: List[FeatureRow] = []
    for user_id, values in per_user:
        is_power_user = (
            values["session_count"] >= session_p75
            and values["unique_resource_types"] >= resource_types_p75
        )
        if export_p75 > 0:
            will_export = values["export_count"] >= export_p75
        else:
            will_export = values["export_count"] > 0
        values["is_power_user"] = "yes" if is_power_user else "no"
        values["will_export"] = "yes" if will_export else "no"
        rows.append(FeatureRow(user_id=user_id, values=values))

    logger.info(
        f"Built {len(rows)} user feature rows from {len(logs)} log rows "
        f"(P75 sessions={session_p75:.2f}, resource types={resource_types_p75:.2f}, exports={export_p75:.2f})"
    )
    return rows


# =============================================================================
# Feature Matrix
# =============================================================================


@dataclass
class FeatureMatrix:
    """Dense, schema-checked training input."""

    X: np.ndarray
    y: List[str]
    user_ids: List[str]
    feature_names: List[str]
    target: str


def feature_rows_to_frame(rows: Sequence[FeatureRow]) -> pd.DataFrame:
    """Tabulate feature rows, one column per feature, indexed by user_id."""
    frame = pd.DataFrame([row.values for row in rows])
    frame.index = pd.Index([row.user_id for row in rows], name="user_id")
    return frame


def _is_numeric_column(column: pd.Series) -> bool:
    return pd.api.types.is_numeric_dtype(column) and not pd.api.types.is_bool_dtype(column)


def build_feature_matrix(
    rows: Sequence[FeatureRow],
    features: Sequence[str],
    target: str,
) -> FeatureMatrix:
    """
    Validate feature rows once and extract the numeric matrix plus target labels.

    Every selected feature must be present in every row and numeric across all
    rows; the target must be present in every row. Target values are used as
    string labels.

    Raises:
        EmptyDatasetError: If rows is empty
        InvalidConfigError: On empty or overlapping feature lists, absent columns,
            or feature columns that are not homogeneously numeric
    """
    if not rows:
        raise EmptyDatasetError("Cannot build a feature matrix from zero rows")
    if not features:
        raise InvalidConfigError("At least one feature column is required")
    if target in features:
        raise InvalidConfigError(f"Target column '{target}' cannot also be a feature")
    if len(set(features)) != len(features):
        raise InvalidConfigError("Feature columns must be unique")

    frame = feature_rows_to_frame(rows)

    missing = [col for col in [*features, target] if col not in frame.columns]
    if missing:
        raise InvalidConfigError(f"Columns absent from data: {missing}")

    for col in [*features, target]:
        if frame[col].isna().any():
            raise InvalidConfigError(f"Column '{col}' is missing for some rows")

    for col in features:
        if not _is_numeric_column(frame[col]):
            raise InvalidConfigError(f"Feature column '{col}' is not numeric across all rows")

    target_column = frame[target]
    if target_column.map(type).nunique() > 1:
        raise InvalidConfigError(f"Target column '{target}' mixes value types")

    return FeatureMatrix(
        X=frame[list(features)].to_numpy(dtype=np.float64),
        y=[_label(v) for v in target_column.tolist()],
        user_ids=list(frame.index),
        feature_names=list(features),
        target=target,
    )


def _label(value) -> str:
    # 1.0 and 1 are the same class
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# =============================================================================
# Feature Statistics
# =============================================================================


def get_feature_stats(rows: Sequence[FeatureRow], feature_name: str) -> FeatureStats:
    """
    Summary statistics for one numeric column.

    Non-numeric cells are ignored; a column with no numeric cells reports zeros.
    """
    values = [
        float(row.values[feature_name])
        for row in rows
        if isinstance(row.values.get(feature_name), (int, float))
    ]
    if not values:
        return FeatureStats(min=0.0, max=0.0, mean=0.0, median=0.0, std=0.0)

    arr = np.asarray(values, dtype=np.float64)
    return FeatureStats(
        min=round(float(arr.min()), 2),
        max=round(float(arr.max()), 2),
        mean=round(float(arr.mean()), 2),
        median=round(float(np.median(arr)), 2),
        std=round(float(arr.std()), 2),
    )
