"""
ML Engine Package.

Feature engineering, supervised training and persona clustering for dashboard
usage logs, implemented on numpy and pandas without a modeling library.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, errors and dependencies
    - models: Pydantic schemas and enums
    - services: Feature builders, trainer, predictor, clustering and diagnosis
"""

__version__ = "1.0.0"
