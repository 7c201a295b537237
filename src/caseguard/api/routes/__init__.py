"""
API route modules.
"""

from caseguard.api.routes.admin import router as admin_router
from caseguard.api.routes.audit import router as audit_router
from caseguard.api.routes.cases import router as cases_router

__all__ = [
    "admin_router",
    "audit_router",
    "cases_router",
]
