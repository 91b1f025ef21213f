"""
FastAPI dependency injection module for the ML engine HTTP layer.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- SettingsDep: Type alias for injecting Settings into endpoints
- run_with_deadline: Runs a blocking engine call in the threadpool under the
  configured compute deadline

Every engine entry point is a pure, CPU-bound, blocking call. Endpoints hand
them to the threadpool so the event loop stays responsive, and bound each
call with settings.compute_timeout_seconds.

Usage Examples:
    @router.post("/train")
    async def train(request: TrainRequest, settings: SettingsDep) -> TrainingResult:
        return await run_with_deadline(
            settings, train_model, request.rows, request.config, request.seed
        )

    # In tests
    app.dependency_overrides[get_settings_dependency] = lambda: Settings(random_seed=7)
"""

import asyncio
import logging
from typing import Annotated, Any, Callable, TypeVar

from fastapi import Depends, HTTPException, status
from starlette.concurrency import run_in_threadpool

from ml_engine.core.config import Settings, get_settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can swap configuration with
    app.dependency_overrides[get_settings_dependency].
    """
    return get_settings()


# Usage: async def endpoint(settings: SettingsDep)
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# =============================================================================
# Compute Deadline
# =============================================================================

async def run_with_deadline(
    settings: Settings,
    func: Callable[..., T],
    *args: Any,
) -> T:
    """
    Run a blocking engine call in the threadpool, bounded by the compute deadline.

    Args:
        settings: Settings carrying compute_timeout_seconds
        func: Engine entry point
        *args: Positional arguments for func

    Returns:
        Whatever func returns

    Raises:
        HTTPException: 504 when the deadline expires. Worker threads cannot be
            interrupted, so the late result is discarded.
    """
    try:
        return await asyncio.wait_for(
            run_in_threadpool(func, *args),
            timeout=settings.compute_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(
            f"{func.__name__} exceeded the {settings.compute_timeout_seconds}s compute deadline"
        )
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Computation exceeded {settings.compute_timeout_seconds}s deadline",
        )
