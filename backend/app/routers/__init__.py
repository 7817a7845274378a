"""Report Workflow - API Routers"""
from .reports import router as reports_router
from .auth import router as auth_router

__all__ = [
    "reports_router",
    "auth_router",
]
