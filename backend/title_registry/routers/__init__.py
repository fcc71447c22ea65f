"""Title Registry - API Routers"""
from .applications import router as applications_router
from .admin import router as admin_router
from .disputes import router as disputes_router
from .court import router as court_router
from .public import router as public_router
from .registrar import router as registrar_router
from .citizen import router as citizen_router

__all__ = [
    "applications_router",
    "admin_router",
    "disputes_router",
    "court_router",
    "public_router",
    "registrar_router",
    "citizen_router",
]
