import logging

from fastapi import APIRouter, Query, Response
from fastapi.responses import PlainTextResponse

from app.config import settings
from app.schemas import HealthResponse, StatusResponse
from app.services import (
    FeedBuildError,
    cache_scheduler,
    get_feed_cache,
    get_last_run,
    get_merged_feed,
)
from app.services.fetch_types import OutputFormat


logger = logging.getLogger(__name__)

main_router = APIRouter()


def parse_ttl(raw: str | None, default: int) -> int:
    """Parse the ttl query value; absent, non-numeric or non-positive falls back to default."""
    if raw is None:
        return default
    try:
        ttl = int(raw.strip())
    except ValueError:
        return default
    return ttl if ttl > 0 else default


@main_router.get("/")
async def merged_epg(
    gzip: str | None = Query(None, description="'1' selects gzip-compressed output"),
    ttl: str | None = Query(None, description="Cache staleness window in seconds"),
) -> Response:
    """
    Serve the merged XMLTV feed

    Builds the feed from all configured sources on a cache miss.
    """
    output_format = OutputFormat.GZIP if gzip == "1" else OutputFormat.PLAIN
    ttl_seconds = parse_ttl(ttl, settings.default_ttl_sec)

    try:
        entry = await get_merged_feed(output_format, ttl_seconds)
    except FeedBuildError as exc:
        logger.error("Merged feed request failed: %s", exc)
        return PlainTextResponse(f"Worker error: {exc}", status_code=500)

    headers = {"Cache-Control": f"max-age={ttl_seconds}"}
    if entry.content_encoding:
        headers["Content-Encoding"] = entry.content_encoding

    return Response(content=entry.payload, media_type=entry.content_type, headers=headers)


@main_router.get("/health", response_model=HealthResponse)
async def health_check() -> dict:
    """Health check endpoint"""
    next_run = cache_scheduler.get_next_run_time()
    return {
        "status": "ok",
        "sources_configured": len(settings.epg_sources or []),
        "scheduler_running": cache_scheduler.scheduler.running if cache_scheduler.scheduler else False,
        "next_cache_purge": next_run.isoformat() if next_run else None,
        "cache": get_feed_cache().stats(),
    }


@main_router.get("/status", response_model=StatusResponse)
async def pipeline_status() -> dict:
    """Summary of the most recent merge pipeline run"""
    last_run = get_last_run()
    return {"last_run": last_run.to_dict() if last_run else None}
