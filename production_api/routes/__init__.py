"""Versioned API routers."""
from fastapi import APIRouter

from production_api.routes import inventory, jobs, qc, returns, rework

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(jobs.router)
api_router.include_router(qc.router)
api_router.include_router(rework.router)
api_router.include_router(returns.router)
api_router.include_router(inventory.router)
