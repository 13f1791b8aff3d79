"""API package exports."""

from reminder_engine.api.middleware import CorrelationIdMiddleware
from reminder_engine.api.routes import router
from reminder_engine.api.users import router as users_router

__all__ = ["router", "users_router", "CorrelationIdMiddleware"]
