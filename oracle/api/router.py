from fastapi import APIRouter

from .routes import admin, health, jobs

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(jobs.router)
api_router.include_router(admin.router)
