"""
FastAPI application entry point for the ML engine API.

A thin, stateless HTTP wrapper over the engine: feature building, supervised
training and prediction, persona clustering and diagnosis. It configures
logging and CORS, registers the routers and starts the ASGI server.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ml_engine import __version__
from ml_engine.api import api_router
from ml_engine.core.config import get_settings


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Create FastAPI application
app = FastAPI(
    title="ML Engine API",
    version=__version__,
    description=(
        "Feature engineering, logistic regression and decision tree training, "
        "K-Means persona clustering and clustering diagnosis."
    ),
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers (each has its own prefix)
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    """
    Root endpoint providing API information.

    Returns:
        Dict with API name and version
    """
    return {
        "name": "ML Engine API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ml_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
