"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from renderbridge.api.v1.health import router as health_router
from renderbridge.api.v1.renders import router as renders_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(renders_router, tags=["renders"])
