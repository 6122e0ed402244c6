"""
PhoneBridge - OpenPhone to SalesNexus relay and phone directory
FastAPI Application Entry Point

Run with:

    uvicorn api.main:app --host 0.0.0.0 --port 8000
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.routes import mappings, webhook
from api.services.resilience import PhoneBridgeError, user_friendly_error
from config.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    if not settings.fallback_contact_id.strip():
        logger.error("FALLBACK_CONTACT_ID is not set; webhook deliveries will be rejected")
    if not settings.crm_configured:
        logger.warning("SALESNEXUS_API_KEY is not set; CRM calls will fail and fall back")

    # Startup: drop call details that outlived their retention window
    try:
        from api.services.directory_store import get_directory_store
        purged = get_directory_store().purge_expired_call_contexts()
        if purged:
            logger.info(f"Purged {purged} expired call details")
    except PhoneBridgeError as e:
        logger.error(f"Failed to purge expired call details: {e}")

    logger.info(f"PhoneBridge started ({settings.site_url})")

    yield  # Application runs here

    logger.info("PhoneBridge stopped")


app = FastAPI(
    title="PhoneBridge",
    description="Phone directory API and OpenPhone webhook relay into SalesNexus notes",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(mappings.router)
app.include_router(webhook.router)


@app.exception_handler(PhoneBridgeError)
async def phonebridge_exception_handler(request: Request, exc: PhoneBridgeError):
    """Map service errors to their status code with an {error, message?} body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Keep 404/405 and other HTTP errors in the same JSON shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    errors = exc.errors()

    messages = []
    for error in errors:
        loc = ".".join(str(part) for part in error.get("loc", []) if part != "body")
        messages.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "message": "; ".join(messages)}
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal error", "message": user_friendly_error(exc)}
    )


@app.get("/health")
async def health_check():
    """Health check endpoint that verifies critical configuration."""
    checks = {
        "crm_configured": settings.crm_configured,
        "fallback_contact_configured": bool(settings.fallback_contact_id.strip()),
    }

    all_healthy = all(checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "service": "phonebridge",
        "checks": checks,
    }


@app.get("/health/services")
async def service_health_check():
    """
    Status of the directory store, CRM, call details and resolution.

    Returns:
    - overall_status: healthy/degraded/critical
    - services: per-service status, last change and last error
    - recent_fallbacks: the latest fallbacks taken (last 24h)
    - critical_issues: unavailable critical services
    """
    from api.services.service_health import get_service_health
    return get_service_health().get_summary()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host=settings.host, port=settings.port)
