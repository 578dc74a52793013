"""
EPG Fetching Service

Serves merged feeds from the cache and, on a miss, coordinates the fetch,
merge, render and compression stages that rebuild them.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from app.config import settings
from app.services.cache_service import FeedCache, get_feed_cache
from app.services.epg_downloader_service import fetch_all_sources
from app.services.epg_merge_service import merge_documents, render_feed
from app.services.fetch_coordinator import FetchCoordinator, get_fetch_coordinator
from app.services.fetch_types import (
    GZIP_CONTENT_TYPE,
    PLAIN_CONTENT_TYPE,
    CacheEntry,
    CacheKey,
    MergedFeed,
    OutputFormat,
    SourceSummary,
)
from app.utils.compression import gzip_text
from app.utils.logging_helpers import (
    log_fetch_summary,
    log_pipeline_end,
    log_pipeline_start,
)


logger = logging.getLogger(__name__)


class FeedBuildError(RuntimeError):
    """Merging, rendering or compressing the feed failed."""


@dataclass(slots=True)
class PipelineRun:
    """Diagnostics for the most recent pipeline run."""
    cache_key: CacheKey
    started_at: datetime
    completed_at: datetime | None = None
    status: str = "running"
    channels: int = 0
    programmes: int = 0
    payload_bytes: int = 0
    error: str | None = None
    sources: list[SourceSummary] = field(default_factory=list)

    def to_dict(self) -> dict:
        payload = {
            "status": self.status,
            "format": self.cache_key.output_format.value,
            "ttl_seconds": self.cache_key.ttl_seconds,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "sources_processed": len(self.sources),
            "sources_succeeded": sum(1 for s in self.sources if s.status == "success"),
            "sources_failed": sum(1 for s in self.sources if s.status == "failed"),
            "channels": self.channels,
            "programmes": self.programmes,
            "payload_bytes": self.payload_bytes,
            "source_details": [summary.to_dict() for summary in self.sources],
        }
        if self.error:
            payload["error"] = self.error
        return payload


_last_run: PipelineRun | None = None


def get_last_run() -> PipelineRun | None:
    return _last_run


class EPGFetchPipeline:
    """Coordinates download, merge and encoding stages for one cache key."""

    def __init__(
        self,
        sources: Sequence[str],
        *,
        timeout_seconds: float | None = None,
        max_concurrency: int | None = None,
        max_retries: int | None = None,
        backoff_factor: float | None = None,
        generator_name: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.sources = [source for source in sources if source]
        self.total_sources = len(self.sources)
        self._timeout = timeout_seconds or settings.epg_fetch_timeout_sec
        self._concurrency = max(1, max_concurrency or settings.epg_fetch_max_concurrency)
        self._max_retries = max_retries or settings.epg_fetch_max_retries
        self._backoff_factor = backoff_factor or settings.epg_fetch_backoff_factor
        self._generator_name = generator_name or settings.generator_info_name
        self._transport = transport

    async def collect_sources(self) -> list[SourceSummary]:
        """Fetch all sources; returns once every fetch has settled."""
        if not self.sources:
            logger.warning("No EPG sources configured - merged feed will be empty")
            return []

        # Client timeouts match the per-source budget so wait_for stays the binding limit
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
            headers={"User-Agent": settings.epg_user_agent},
            transport=self._transport,
        ) as client:
            summaries = await fetch_all_sources(
                client,
                self.sources,
                timeout_seconds=self._timeout,
                max_concurrency=self._concurrency,
                max_retries=self._max_retries,
                backoff_factor=self._backoff_factor,
            )

        succeeded = sum(1 for summary in summaries if summary.status == "success")
        log_fetch_summary(logger, succeeded, len(summaries) - succeeded)
        return summaries

    async def build(self, output_format: OutputFormat) -> tuple[MergedFeed, bytes, list[SourceSummary]]:
        """
        Run the whole pipeline and return the feed with its encoded payload.

        Raises:
            FeedBuildError: If merging, rendering or compression fails
        """
        summaries = await self.collect_sources()
        documents = [summary.document for summary in summaries]
        for summary in summaries:
            summary.document = None

        loop = asyncio.get_running_loop()
        logger.debug("Offloading merge and encoding to thread pool executor...")
        try:
            feed, payload = await loop.run_in_executor(
                None,
                _merge_and_encode,
                documents,
                output_format,
                self._generator_name,
            )
        except Exception as exc:
            logger.error("Merge pipeline failed: %s", exc, exc_info=True)
            raise FeedBuildError(str(exc)) from exc

        return feed, payload, summaries


def _merge_and_encode(
    documents: list[str | None],
    output_format: OutputFormat,
    generator_name: str,
) -> tuple[MergedFeed, bytes]:
    feed = merge_documents(documents, generator_name=generator_name)
    text = render_feed(feed)
    if output_format is OutputFormat.GZIP:
        return feed, gzip_text(text)
    return feed, text.encode("utf-8")


def build_cache_entry(output_format: OutputFormat, ttl: int, payload: bytes, created_at: float) -> CacheEntry:
    if output_format is OutputFormat.GZIP:
        return CacheEntry(
            payload=payload,
            content_type=GZIP_CONTENT_TYPE,
            content_encoding="gzip",
            created_at=created_at,
            ttl_seconds=ttl,
        )
    return CacheEntry(
        payload=payload,
        content_type=PLAIN_CONTENT_TYPE,
        content_encoding=None,
        created_at=created_at,
        ttl_seconds=ttl,
    )


async def get_merged_feed(
    output_format: OutputFormat,
    ttl: int,
    *,
    cache: FeedCache | None = None,
    coordinator: FetchCoordinator | None = None,
    pipeline: EPGFetchPipeline | None = None,
) -> CacheEntry:
    """
    Return the merged feed for a format and staleness window.

    Serves the cached entry while it is fresh. Concurrent misses for the same
    key share one pipeline run.

    Args:
        output_format: Plain XML or gzip
        ttl: Staleness window in seconds (part of the cache key)

    Returns:
        CacheEntry with payload and content headers

    Raises:
        FeedBuildError: If the feed could not be built
    """
    if cache is None:
        cache = get_feed_cache()
    if coordinator is None:
        coordinator = get_fetch_coordinator()
    key = CacheKey(output_format=output_format, ttl_seconds=ttl)

    cached = cache.get(key)
    if cached is not None:
        logger.debug("Serving cached feed for %s", key)
        return cached

    async def rebuild() -> CacheEntry:
        # A run that finished just before this one was scheduled may have filled the key
        fresh = cache.get(key)
        if fresh is not None:
            return fresh

        active = pipeline or EPGFetchPipeline(settings.epg_sources or [])
        return await _run_pipeline(active, key, cache)

    return await coordinator.execute(key, rebuild)


async def _run_pipeline(pipeline: EPGFetchPipeline, key: CacheKey, cache: FeedCache) -> CacheEntry:
    global _last_run

    run = PipelineRun(cache_key=key, started_at=datetime.now(timezone.utc))
    _last_run = run
    log_pipeline_start(logger, f"{key.output_format.value}/{key.ttl_seconds}s", pipeline.total_sources)

    try:
        feed, payload, summaries = await pipeline.build(key.output_format)
    except Exception as exc:
        run.status = "failed"
        run.error = str(exc)
        run.completed_at = datetime.now(timezone.utc)
        if isinstance(exc, FeedBuildError):
            raise
        logger.error("Unexpected error during merge pipeline: %s", exc, exc_info=True)
        raise FeedBuildError(str(exc)) from exc

    entry = build_cache_entry(key.output_format, key.ttl_seconds, payload, cache.now())
    cache.put(key, entry)

    run.status = "success"
    run.completed_at = datetime.now(timezone.utc)
    run.channels = len(feed.channels)
    run.programmes = len(feed.programmes)
    run.payload_bytes = len(payload)
    run.sources = summaries
    log_pipeline_end(logger, f"{key.output_format.value}/{key.ttl_seconds}s", len(payload))

    return entry
