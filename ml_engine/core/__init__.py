"""
Core infrastructure package for the ML engine.

Provides:
- Configuration management via pydantic-settings
- The engine's exception hierarchy
- FastAPI dependency injection utilities

Re-exports key components so callers can write:

    from ml_engine.core import get_settings, InvalidConfigError, SettingsDep
"""

# =============================================================================
# Re-exports from ml_engine.core.config
# =============================================================================
from ml_engine.core.config import Settings, get_settings

# =============================================================================
# Re-exports from ml_engine.core.exceptions
# =============================================================================
from ml_engine.core.exceptions import (
    EngineError,
    EmptyDatasetError,
    InvalidConfigError,
    DegenerateSplitError,
    ModelNotLoadedError,
)

# =============================================================================
# Re-exports from ml_engine.core.dependencies
# =============================================================================
from ml_engine.core.dependencies import (
    get_settings_dependency,
    SettingsDep,
    run_with_deadline,
)


__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Errors (from exceptions.py)
    'EngineError',
    'EmptyDatasetError',
    'InvalidConfigError',
    'DegenerateSplitError',
    'ModelNotLoadedError',
    # FastAPI dependency injection (from dependencies.py)
    'get_settings_dependency',
    'SettingsDep',
    'run_with_deadline',
]
