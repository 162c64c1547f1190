"""HTTP route modules."""

from .admin import create_admin_router

__all__ = ["create_admin_router"]
