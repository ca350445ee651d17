"""Complaint Portal - API Routers"""
from .auth import router as auth_router
from .profiles import router as profiles_router
from .complaints import router as complaints_router
from .admin import router as admin_router
from .storage import router as storage_router

__all__ = [
    "auth_router",
    "profiles_router",
    "complaints_router",
    "admin_router",
    "storage_router",
]
