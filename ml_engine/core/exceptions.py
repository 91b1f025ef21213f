"""
Error taxonomy for the ML engine.

The engine advises rather than gatekeeps: only structurally unusable input raises.
Quality problems (weak silhouette, heavy confusion) are reported as data.

- EmptyDatasetError: zero rows supplied to feature building, training or clustering
- InvalidConfigError: configuration that cannot be honored (empty feature list,
  target column absent, held-out fraction outside (0, 1), k out of range)
- DegenerateSplitError: no threshold reduces impurity; raised inside tree growth
  and handled there by emitting a majority-vote leaf
- ModelNotLoadedError: prediction requested without a trained model handle
"""


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class EmptyDatasetError(EngineError):
    """Raised when an operation receives no rows."""


class InvalidConfigError(EngineError, ValueError):
    """Raised when a configuration or input schema cannot be honored."""


class DegenerateSplitError(EngineError):
    """Raised when no candidate threshold lowers the node's Gini impurity."""


class ModelNotLoadedError(EngineError):
    """Raised when prediction is requested with no model handle."""
