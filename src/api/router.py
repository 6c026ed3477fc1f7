"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from src.api.webhooks import router as webhooks_router
from src.api.subscriptions import router as subscriptions_router
from src.api.jobs import router as jobs_router
from src.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(subscriptions_router)
api_router.include_router(jobs_router)
api_router.include_router(health_router)
