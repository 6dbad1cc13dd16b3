from fastapi import APIRouter

from app.api.v1.routers import (
    assignment_requests,
    auth,
    health,
    loans,
    reports,
    settings,
    sync,
    users,
    webhook,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(loans.router)
api_router.include_router(assignment_requests.router)
api_router.include_router(settings.router)
api_router.include_router(users.router)
api_router.include_router(sync.router)
api_router.include_router(webhook.router)
api_router.include_router(reports.router)

__all__ = ["api_router"]
