from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from app.config import settings, setup_logging
from app.services.scheduler_service import cache_scheduler

from app.routers import main_router


setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("Starting EPG Merge Service...")

    try:
        logger.info("Starting scheduler...")
        cache_scheduler.start()
        logger.info(
            "EPG Merge Service started with %s source(s)",
            len(settings.epg_sources or []),
        )
    except Exception as e:
        logger.error(f"Failed to start EPG Merge Service: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down EPG Merge Service...")

    try:
        cache_scheduler.shutdown()
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}", exc_info=True)

    logger.info("EPG Merge Service stopped")


app = FastAPI(
    title="EPG Merge Service",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(main_router)

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors and answer with a plain-text 500"""
    logger.error(
        f"Unhandled error for {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    return PlainTextResponse(f"Worker error: {exc}", status_code=500)
