"""
Pytest Configuration and Shared Fixtures for ML Engine Tests.

Provides:
- Custom markers (slow, parity)
- A settings-cache reset around every test so environment overrides apply
- Seeded synthetic datasets:
  - raw dashboard logs with known per-user features
  - linearly separable binary and three-class feature rows
  - three well-separated persona blobs (casual / LiveOps / analyst)
  - the same blobs with one feature replaced by pure noise

All random data uses np.random.seed(42) so every run sees the same values.
"""

import json
from typing import Dict, List

import numpy as np
import pytest

from ml_engine.core.config import get_settings
from ml_engine.models import FeatureRow, PersonaFeatureRow, RawLogEntry


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: re-clusters many times (diagnosis probes, elbow sweeps)
    - parity: checks a metric against an independent reference implementation
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'parity: marks tests comparing against a reference implementation'
    )


# ============================================================
# SETTINGS
# ============================================================

@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Clear the cached Settings before and after each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================
# RAW LOG FIXTURES
# ============================================================

def make_log(
    user_id: str,
    resource_type: str,
    resource_name: str,
    timestamp: str,
    device_type: str = "",
    folder: str = "",
    source_item: str = "",
    metadata: str = None,
) -> RawLogEntry:
    """Build a raw log entry with a JSON metadata blob."""
    if metadata is None:
        metadata = json.dumps({
            "device_type": device_type,
            "folder": folder,
            "source_item": source_item,
        })
    return RawLogEntry(
        user_id=user_id,
        resource_type=resource_type,
        resource_name=resource_name,
        timestamp=timestamp,
        metadata=metadata,
    )


@pytest.fixture
def raw_logs() -> List[RawLogEntry]:
    """
    Four users with hand-checkable features.

    u1: 4 events (home, realtime, export x2), half mobile, folders g1/g2, 09:00-14:00
    u2: 2 events (tableau, search), desktop, folder g1, 08:00-08:30
    u3: 1 event with malformed metadata and an unparseable timestamp
    u4: 3 realtime events on one dashboard, mobile, folder g3, 20:00-22:00
    """
    return [
        make_log("u1", "home", "Home", "2025-03-02T09:00:00Z", "mobile", "g1", "nav"),
        make_log("u2", "tableau", "661 - Retention", "2025-03-02T08:00:00Z", "desktop", "g1"),
        make_log("u1", "realtime", "A49 - Live KPIs", "2025-03-02T10:00:00Z", "mobile", "g1"),
        make_log("u3", "home", "Home", "garbage", metadata="not json"),
        make_log("u1", "export", "Revenue CSV", "2025-03-02T11:00:00Z", "desktop", "g2"),
        make_log("u4", "realtime", "A49 - Live KPIs", "2025-03-02T20:00:00Z", "mobile", "g3"),
        make_log("u2", "search", "Search", "2025-03-02T08:30:00Z", "desktop", ""),
        make_log("u4", "realtime", "A49 - Live KPIs", "2025-03-02T21:00:00Z", "mobile", "g3"),
        make_log("u1", "export", "Revenue CSV", "2025-03-02T14:00:00Z", "desktop", "g2"),
        make_log("u4", "realtime", "A49 - Live KPIs", "2025-03-02T22:00:00Z", "mobile", "g3"),
    ]


# ============================================================
# SUPERVISED TRAINING FIXTURES
# ============================================================

@pytest.fixture
def separable_rows() -> List[FeatureRow]:
    """
    80 users whose binary target is decided by signal > 0.

    Columns:
        signal: N(+-2, 0.5) by class, fully separable
        noise: N(0, 1), unrelated to the target
        flat: constant 1.0 (zero variance)
        will_export: "yes" when signal > 0, else "no"
    """
    np.random.seed(42)
    rows = []
    for i in range(80):
        positive = i % 2 == 0
        signal = np.random.normal(2.0 if positive else -2.0, 0.5)
        rows.append(FeatureRow(
            user_id=f"user_{i:03d}",
            values={
                "signal": float(signal),
                "noise": float(np.random.normal(0.0, 1.0)),
                "flat": 1.0,
                "will_export": "yes" if positive else "no",
            },
        ))
    return rows


@pytest.fixture
def multiclass_rows() -> List[FeatureRow]:
    """90 users in three classes centred at (0, 0), (6, 0) and (0, 6)."""
    np.random.seed(42)
    centres = {"home": (0.0, 0.0), "realtime": (6.0, 0.0), "tableau": (0.0, 6.0)}
    rows = []
    for i in range(90):
        label = list(centres)[i % 3]
        cx, cy = centres[label]
        rows.append(FeatureRow(
            user_id=f"user_{i:03d}",
            values={
                "x": float(np.random.normal(cx, 0.5)),
                "y": float(np.random.normal(cy, 0.5)),
                "primary_resource": label,
            },
        ))
    return rows


# ============================================================
# PERSONA FIXTURES
# ============================================================

PERSONA_BLOB_CENTRES: Dict[str, Dict[str, float]] = {
    "casual": {
        "total_events_30d": 5.0,
        "unique_dashboards_viewed": 1.5,
        "mobile_ratio": 0.8,
        "realtime_ratio": 0.05,
        "repeat_view_ratio": 0.3,
        "games_touched": 1.0,
        "navigation_entropy": 0.8,
        "active_hour_std": 6.0,
    },
    "liveops": {
        "total_events_30d": 60.0,
        "unique_dashboards_viewed": 3.0,
        "mobile_ratio": 0.2,
        "realtime_ratio": 0.85,
        "repeat_view_ratio": 0.9,
        "games_touched": 1.0,
        "navigation_entropy": 1.0,
        "active_hour_std": 1.0,
    },
    "analyst": {
        "total_events_30d": 40.0,
        "unique_dashboards_viewed": 20.0,
        "mobile_ratio": 0.05,
        "realtime_ratio": 0.1,
        "repeat_view_ratio": 0.2,
        "games_touched": 8.0,
        "navigation_entropy": 4.0,
        "active_hour_std": 3.0,
    },
}

# Relative spread of each blob around its centre
BLOB_SPREAD: float = 0.05

RATIO_FEATURES = ("mobile_ratio", "realtime_ratio", "repeat_view_ratio")


def make_persona_blobs(per_blob: int = 30) -> List[PersonaFeatureRow]:
    """Three tight blobs; user ids are prefixed with the blob name."""
    np.random.seed(42)
    rows = []
    for blob, centre in PERSONA_BLOB_CENTRES.items():
        for i in range(per_blob):
            values = {}
            for name, mean in centre.items():
                value = np.random.normal(mean, max(mean * BLOB_SPREAD, 0.01))
                upper = 1.0 if name in RATIO_FEATURES else np.inf
                values[name] = float(np.clip(value, 0.0, upper))
            rows.append(PersonaFeatureRow(user_id=f"{blob}_{i:02d}", **values))
    return rows


@pytest.fixture
def persona_blobs() -> List[PersonaFeatureRow]:
    """90 persona rows in three well-separated archetype blobs."""
    return make_persona_blobs()


@pytest.fixture
def persona_blobs_with_noise() -> List[PersonaFeatureRow]:
    """The persona blobs with active_hour_std replaced by U(0, 6) noise."""
    rows = make_persona_blobs()
    noise = np.random.default_rng(7).uniform(0.0, 6.0, len(rows))
    return [
        row.model_copy(update={"active_hour_std": float(n)})
        for row, n in zip(rows, noise)
    ]


def blob_of(user_id: str) -> str:
    return user_id.split("_")[0]
