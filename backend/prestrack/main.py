"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from prestrack.config import settings
from prestrack.database import engine
from prestrack.errors import PrestrackError
from prestrack.schemas import ErrorResponse
from prestrack.routes import (
    consent,
    conversations,
    escalations,
    ingestion,
    patients,
    provider_agent,
    providers,
    visitors,
    webhooks,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "Prestrack API"
APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events for startup/shutdown."""
    logger.info("%s %s starting", APP_NAME, APP_VERSION)
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set - answers fall back to source lists")
    if settings.retrieval_chatbot_id:
        logger.info("Answers are delegated to hosted chatbot %s", settings.retrieval_chatbot_id)

    yield  # Application runs here

    await engine.dispose()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=()"
        )
        return response


app = FastAPI(
    title="Prestrack",
    description="Conversation orchestration for WhatsApp-based antenatal care",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(PrestrackError)
async def prestrack_error_handler(request: Request, exc: PrestrackError) -> JSONResponse:
    """Render domain errors as ``{"error": code, "detail": message}``."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query params are plain 400s."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    message = first.get("msg", "invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "detail": f"{field}: {message}" if field else message},
    )


# Security headers middleware (applied to all responses)
app.add_middleware(SecurityHeadersMiddleware)

# CORS middleware for the dashboard
_cors_origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)

# Include API routers; JSON routers document the error envelope
ERROR_RESPONSES = {status: {"model": ErrorResponse} for status in (400, 403, 404, 409, 500)}

app.include_router(webhooks.router, prefix="/api")
app.include_router(consent.router, prefix="/api")
app.include_router(provider_agent.router, prefix="/api", responses=ERROR_RESPONSES)
app.include_router(escalations.router, prefix="/api", responses=ERROR_RESPONSES)
app.include_router(ingestion.router, prefix="/api", responses=ERROR_RESPONSES)
app.include_router(conversations.router, prefix="/api", responses=ERROR_RESPONSES)
app.include_router(patients.router, prefix="/api", responses=ERROR_RESPONSES)
app.include_router(visitors.router, prefix="/api", responses=ERROR_RESPONSES)
app.include_router(providers.router, prefix="/api", responses=ERROR_RESPONSES)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root() -> dict:
    """Root endpoint with API info."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "docs": "/docs",
    }
