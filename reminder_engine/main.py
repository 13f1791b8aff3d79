"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reminder_engine import __version__
from reminder_engine.api.middleware import CorrelationIdMiddleware
from reminder_engine.api.routes import router
from reminder_engine.api.users import router as users_router
from reminder_engine.config import get_settings
from reminder_engine.errors import ValidationFailure
from reminder_engine.services.engine import ReminderEngine
from reminder_engine.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and start one engine for the application's lifetime."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    logger = get_logger("main")

    app.state.engine = ReminderEngine(settings)
    logger.info(
        "application_started",
        version=__version__,
        timezone=settings.timezone,
        log_level=settings.log_level,
    )

    yield

    app.state.engine = None
    logger.info("application_shutdown")


app = FastAPI(
    title="Reminder Timing Engine",
    description="Context-aware reminder timing and behavior learning",
    version=__version__,
    lifespan=lifespan,
)


def _error_response(request: Request, detail: str, errors: list | None = None) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    structlog.get_logger().warning(
        "validation_error",
        correlation_id=correlation_id,
        detail=detail,
        errors=errors,
    )
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation error",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report the first invalid field with a 400 response."""
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"
    return _error_response(request, detail, errors)


@app.exception_handler(ValidationFailure)
async def engine_validation_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
    """Malformed feedback, context or strategy updates rejected by the engine."""
    return _error_response(request, str(exc))


# CORS middleware for browser clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(CorrelationIdMiddleware)

app.include_router(router)
app.include_router(users_router)
