"""FastAPI dependencies."""

from fastapi import HTTPException, Request, status

from reminder_engine.services.engine import ReminderEngine


def get_engine(request: Request) -> ReminderEngine:
    """Return the engine created by the application lifespan.

    Raises:
        HTTPException 503: If the engine has not been started
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reminder engine is not running",
        )
    return engine
