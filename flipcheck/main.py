"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from flipcheck.config import settings
from flipcheck.database import Base, SessionLocal, engine
from flipcheck.errors import AppError, ErrorCode
from flipcheck.pipeline.aggregator import CompsAggregator
from flipcheck.pipeline.cache import CacheLayer, MemoryCacheStore, SqlCacheStore
from flipcheck.routes.comps import router as comps_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "FlipCheck"
VERSION = "1.0.0"


def build_cache() -> CacheLayer:
    if settings.persist_last_known_good:
        # Create tables (for development; use Alembic migrations in production)
        if settings.environment == "development":
            Base.metadata.create_all(bind=engine)
        return CacheLayer(last_known_good=SqlCacheStore(SessionLocal))
    return CacheLayer(last_known_good=MemoryCacheStore())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {APP_NAME}...")
    logger.info(f"Environment: {settings.environment}")

    cache = build_cache()
    app.state.cache = cache
    app.state.aggregator = CompsAggregator.from_settings(cache)
    cache.start_sweeper()

    yield

    # Shutdown
    await cache.stop_sweeper()
    logger.info(f"Shutting down {APP_NAME}...")


# Create FastAPI app
app = FastAPI(
    title=APP_NAME,
    description="Sold-comps pricing and flip/skip margin decisions for resellers",
    version=VERSION,
    lifespan=lifespan,
)

# Include routes
app.include_router(comps_router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.warning(f"{exc.code.value} on {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.url.path}", exc_info=exc)
    error = AppError(ErrorCode.DATABASE_QUERY_FAILED, str(exc))
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}", exc_info=exc)
    error = AppError(ErrorCode.INTERNAL_ERROR, str(exc))
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": APP_NAME,
        "version": VERSION,
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "environment": settings.environment,
        "sources": {
            "pricecharting": bool(settings.pricecharting_api_key),
            "ebay_finding": bool(settings.ebay_app_id),
            "serpapi": bool(settings.serpapi_api_key),
            "ebay_browse": bool(settings.ebay_app_id and settings.ebay_cert_id),
        },
        "persist_last_known_good": settings.persist_last_known_good,
    }
