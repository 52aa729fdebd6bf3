# src/decayfarm/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from decayfarm.api.routes_public_parts.clock import router as clock_router
from decayfarm.api.routes_public_parts.health import router as health_router
from decayfarm.api.routes_public_parts.periods import router as periods_router
from decayfarm.api.routes_public_parts.pools import router as pools_router

public_router = APIRouter()

# Read-only query surface. Mutations enter through RewardService, never HTTP.
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(clock_router, prefix="/v1", tags=["clock"])
public_router.include_router(periods_router, prefix="/v1", tags=["periods"])
public_router.include_router(pools_router, prefix="/v1", tags=["pools"])
