"""
API package initialization.

This package contains FastAPI router modules for the ML engine:
- training: Feature building, training, prediction and feature statistics
- personas: Persona features, clustering, elbow sweep, diagnosis and inference
"""

from fastapi import APIRouter

# Import router modules
from ml_engine.api.training import router as training_router
from ml_engine.api.personas import router as personas_router

# Create main API router
api_router = APIRouter()

# Both routers carry their own prefix
api_router.include_router(training_router)
api_router.include_router(personas_router)

__all__ = [
    "api_router",
    "training_router",
    "personas_router",
]
