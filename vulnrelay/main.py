"""VulnRelay - container image vulnerability exporter for Prometheus."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import REGISTRY

from vulnrelay import __version__
from vulnrelay.config import Settings
from vulnrelay.services.collection_engine import CollectionEngine
from vulnrelay.services.metrics import create_snapshot_registry, get_content_type, get_metrics
from vulnrelay.services.providers.factory import (
    create_image_source,
    create_vulnerability_source,
)
from vulnrelay.services.result_cache import ResultCache
from vulnrelay.services.scheduler import SchedulerService
from vulnrelay.utils.security import sanitize_log_message

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "HEAD")
SHUTDOWN_TIMEOUT = 30.0


# Filter to exclude health check endpoints from access logs
class EndpointFilter(logging.Filter):
    """Filter to exclude specific endpoints from Granian access logs."""

    def __init__(self, excluded_paths: list[str]) -> None:
        super().__init__()
        self.excluded_paths = excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False if the log record is for an excluded endpoint."""
        message = record.getMessage()
        return not any(path in message for path in self.excluded_paths)


logging.getLogger("granian.access").addFilter(EndpointFilter(["/health"]))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting VulnRelay {__version__}...")

    settings = Settings.from_env()
    logging.getLogger().setLevel(settings.log_level)
    settings.log_summary()

    image_source = create_image_source(settings)
    vulnerability_source = create_vulnerability_source(settings)

    cache = ResultCache(ttl=settings.cache_ttl)
    engine = CollectionEngine(
        image_source,
        vulnerability_source,
        poll_interval=settings.scrape_interval,
        fetch_concurrency=settings.fetch_concurrency,
        cache=cache,
    )
    scheduler = SchedulerService(cache, cleanup_interval=settings.cache_cleanup_interval)

    app.state.settings = settings
    app.state.engine = engine
    app.state.scheduler = scheduler
    app.state.metrics_registry = create_snapshot_registry(
        engine, vulnerability_source.parse_image_uri
    )

    await scheduler.start()
    engine_task = asyncio.create_task(engine.start(), name="vulnrelay-engine")
    logger.info(
        f"Vulnerability engine started ({image_source.name} -> {vulnerability_source.name})"
    )

    yield

    logger.info("Shutting down VulnRelay...")
    engine.stop()
    try:
        # An in-flight cycle finishes before the loop observes the stop signal
        await asyncio.wait_for(engine_task, timeout=SHUTDOWN_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning(f"Vulnerability engine did not stop within {SHUTDOWN_TIMEOUT:.0f}s")
    except Exception as e:
        logger.error(f"Vulnerability engine exited with error: {e}", exc_info=True)

    await scheduler.stop()
    await image_source.close()
    await vulnerability_source.close()
    logger.info("VulnRelay stopped")


# Create FastAPI app
app = FastAPI(
    title="VulnRelay",
    description="Container image vulnerability exporter for Prometheus",
    version=__version__,
    lifespan=lifespan,
)


# Security Headers Middleware
@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    """Restrict methods to GET/HEAD and add security headers to all responses.

    Headers added:
    - X-Content-Type-Options: nosniff (prevents MIME sniffing)
    - X-Frame-Options: DENY (prevents clickjacking)
    - X-XSS-Protection: 1; mode=block (legacy XSS protection)
    - Referrer-Policy: strict-origin-when-cross-origin
    - Content-Security-Policy: nothing may be loaded, the API serves no pages
    """
    if request.method not in ALLOWED_METHODS:
        logger.warning(
            f"Rejected {sanitize_log_message(request.method)} request to "
            f"{sanitize_log_message(request.url.path)}"
        )
        response = PlainTextResponse("Method not allowed", status_code=405)
        response.headers["Allow"] = ", ".join(ALLOWED_METHODS)
    else:
        response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = (
        "default-src 'none'; script-src 'none'; object-src 'none'; frame-ancestors 'none'"
    )

    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Generic exception handler to prevent stack trace exposure.

    In DEBUG mode (VULNRELAY_DEBUG=true), detailed errors are shown for development.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {sanitize_log_message(str(exc))}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
            "client": request.client.host if request.client else "unknown",
        },
    )

    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.debug:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__, "debug": True},
        )

    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred."},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "vulnrelay"}


# Prometheus metrics endpoint
@app.get("/metrics")
async def metrics(request: Request):
    """Prometheus metrics endpoint.

    Vulnerability gauges are rendered from the current snapshot, followed
    by the process and engine metrics of the default registry.
    """
    registries = [REGISTRY]
    snapshot_registry = getattr(request.app.state, "metrics_registry", None)
    if snapshot_registry is not None:
        registries.insert(0, snapshot_registry)

    return Response(content=get_metrics(*registries), media_type=get_content_type())


# API routes
from vulnrelay.routes import api_router  # noqa: E402

app.include_router(api_router)
