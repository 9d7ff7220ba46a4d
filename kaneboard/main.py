"""
Kaneboard - Main Application Entry Point

FastAPI application serving the ticket board, timers and project health.
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import settings
from . import __version__
from .cache import close_redis, stats as cache_stats
from .database import init_database, close_database, get_database
from .database.exceptions import DatabaseError
from .services.exceptions import KaneboardError
from .utils.datetime_utils import get_local_now

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

# Error kind -> HTTP status
STATUS_BY_KIND = {
    "validation": 422,
    "business_rule": 422,
    "authorization": 403,
    "not_found": 404,
    "soft": 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info("Starting Kaneboard...")

    try:
        if await init_database():
            logger.info("Database initialized")
        else:
            logger.warning("Database not configured or failed to initialize")
    except Exception as e:
        logger.warning(f"Database init failed: {e}")

    yield

    logger.info("Shutting down...")

    try:
        await close_redis()
    except Exception as e:
        logger.warning(f"Failed to close Redis during shutdown: {e}")

    try:
        await close_database()
    except Exception as e:
        logger.warning(f"Failed to close database during shutdown: {e}")

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Kanban tickets, per-user timers and project schedule health",
    version=__version__,
    lifespan=lifespan
)

from .web.routes import router as api_router
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Liveness plus database status."""
    db_health = {"status": "not_configured"}
    try:
        db_health = await get_database().health_check()
    except Exception as e:
        db_health = {"status": "error", "error": str(e)}

    return {
        "status": "healthy",
        "timestamp": get_local_now().isoformat(),
        "version": __version__,
        "services": {
            "database": db_health.get("status", "unknown"),
            "redis": bool(settings.redis_url),
        },
        "cache": cache_stats.get_summary(),
    }


# Error handlers
@app.exception_handler(KaneboardError)
async def domain_exception_handler(request: Request, exc: KaneboardError):
    status_code = STATUS_BY_KIND.get(exc.kind, 400)
    logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(DatabaseError)
async def database_exception_handler(request: Request, exc: DatabaseError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "database_error", "message": str(exc), "field": None}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Internal server error", "field": None}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "kaneboard.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
