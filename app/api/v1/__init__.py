from fastapi import APIRouter

from app.api.v1.routers import finance, health, proposals, webhooks

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(finance.router)
api_router.include_router(finance.lenders_router)
api_router.include_router(proposals.router)

webhook_router = webhooks.router

__all__ = ["api_router", "webhook_router"]
