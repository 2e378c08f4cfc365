"""
API routes package.

Contains the registration/verification and payment routers.
"""

from src.api.routes.auth import router as auth_router
from src.api.routes.payment import router as payment_router

__all__ = ["auth_router", "payment_router"]
