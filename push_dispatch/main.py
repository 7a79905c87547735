"""
FastAPI application entry point for the push dispatch service

Initializes the FastAPI app, registers routers, and sets up startup/shutdown events.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from push_dispatch import __version__ as APP_VERSION
from push_dispatch.core.config import settings
from push_dispatch.core.logging_config import setup_logging, get_logger
from push_dispatch.core.metrics import init_metrics, get_metrics, get_content_type
from push_dispatch.middleware.logging_middleware import RequestLoggingMiddleware
from push_dispatch.api.v1.push import router as push_router
from push_dispatch.services.push.device_registry import shutdown_device_registry
from push_dispatch.services.push.dispatch_service import shutdown_push_dispatch_service

# Initialize structured JSON logging
setup_logging(app_version=APP_VERSION)
logger = get_logger(__name__)

# Initialize Prometheus metrics
init_metrics(version=APP_VERSION)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: report provider readiness, close HTTP clients on exit."""
    logger.info(
        "Application startup",
        extra={
            "event_type": "app_startup",
            "version": APP_VERSION,
            "registry_ready": settings.registry_ready,
            "apns_ready": settings.apns_ready,
            "fcm_ready": settings.fcm_ready,
            "audit_enabled": settings.audit_enabled,
        }
    )
    if not settings.registry_ready:
        logger.warning(
            "SUPABASE_URL or service role key not set; dispatch requests will be rejected",
            extra={"event_type": "registry_not_configured"}
        )

    yield

    try:
        await shutdown_push_dispatch_service()
        await shutdown_device_registry()
    except Exception as e:
        logger.error(
            f"Error closing push clients: {e}",
            extra={"event_type": "push_shutdown_error", "error": str(e)}
        )

    logger.info(
        "Application shutdown complete",
        extra={"event_type": "app_shutdown_complete", "version": APP_VERSION}
    )


# Create FastAPI app
app = FastAPI(
    title="Push Dispatch API",
    description="Fan-out of push notifications to APNS and FCM device endpoints",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Render routing errors in the service's {"error": code} shape.

    405 keeps the method_not_allowed code clients depend on; other HTTP
    errors keep FastAPI's detail field.
    """
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={"error": "method_not_allowed"},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# Register API routers
app.include_router(push_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    """Root endpoint - API status check"""
    return {
        "name": "Push Dispatch API",
        "version": APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint reporting which providers are configured"""
    return {
        "status": "healthy" if settings.registry_ready else "degraded",
        "registry_configured": settings.registry_ready,
        "apns_configured": settings.apns_ready,
        "fcm_configured": settings.fcm_ready,
    }


@app.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint

    Returns Prometheus-compatible metrics for scraping.
    """
    return Response(
        content=get_metrics(),
        media_type=get_content_type()
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "push_dispatch.main:app",
        host="0.0.0.0",
        port=8000,
        log_config=None,
    )
