"""
EPG Downloader Service

Handles downloading and decoding EPG documents from multiple sources.
Every failure is absorbed here so one bad source never aborts a merge run.
"""
import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone

import httpx

from app.services.fetch_types import SourceSummary
from app.utils.compression import (
    DecompressionError,
    decode_document,
    decompress_payload,
    is_gzip_payload,
)
from app.utils.http_download import download_bytes, sanitize_url_for_logging


logger = logging.getLogger(__name__)


def _describe_error(exc: BaseException) -> str:
    """Exception type and message; httpx timeouts often carry no message."""
    message = str(exc)
    if message:
        return f"{type(exc).__name__}: {message}"
    return type(exc).__name__


async def fetch_source(
    client: httpx.AsyncClient,
    source_url: str,
    source_index: int,
    *,
    timeout_seconds: float,
    max_retries: int = 1,
    backoff_factor: float = 2.0
) -> SourceSummary:
    """
    Download, decompress and decode a single EPG source

    Args:
        client: Shared HTTP client
        source_url: URL to download from
        source_index: 1-based position of this source in the configuration

    Keyword Args:
        timeout_seconds: Total time budget for the source, retries included
        max_retries: Download attempts before giving up
        backoff_factor: Retry backoff base

    Returns:
        SourceSummary whose ``document`` is the decoded text, or None on failure
    """
    sanitized_url = sanitize_url_for_logging(source_url)
    started_at = datetime.now(timezone.utc)

    def failed(error: str, compressed: bool = False, size: int = 0) -> SourceSummary:
        return SourceSummary(
            index=source_index,
            source_url=source_url,
            sanitized_url=sanitized_url,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            status="failed",
            compressed=compressed,
            bytes_received=size,
            error=error,
        )

    try:
        result = await asyncio.wait_for(
            download_bytes(
                client,
                source_url,
                max_retries=max_retries,
                backoff_factor=backoff_factor,
            ),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("[Source %s] Timed out after %ss: %s", source_index, timeout_seconds, sanitized_url)
        return failed(f"Timed out after {timeout_seconds}s")
    except httpx.HTTPStatusError as exc:
        logger.error("[Source %s] HTTP %s from %s", source_index, exc.response.status_code, sanitized_url)
        return failed(f"HTTP {exc.response.status_code}")
    except Exception as exc:
        logger.error("[Source %s] Failed to download %s: %s", source_index, sanitized_url, _describe_error(exc))
        return failed(_describe_error(exc))

    compressed = is_gzip_payload(
        source_url,
        content_encoding=result.content_encoding,
        content_type=result.content_type,
        data=result.content,
    )
    data = result.content
    if compressed:
        try:
            data = decompress_payload(data)
        except DecompressionError as exc:
            logger.error("[Source %s] %s: %s", source_index, exc, sanitized_url)
            return failed(str(exc), compressed=True, size=len(result.content))

    try:
        document = decode_document(data)
    except Exception as exc:
        logger.error("[Source %s] Could not decode %s: %s", source_index, sanitized_url, _describe_error(exc))
        return failed(_describe_error(exc), compressed=compressed, size=len(result.content))

    logger.info(
        "[Source %s] Fetched %s (%.2f MB%s)",
        source_index,
        sanitized_url,
        len(result.content) / 1024 / 1024,
        ", gzip" if compressed else "",
    )
    return SourceSummary(
        index=source_index,
        source_url=source_url,
        sanitized_url=sanitized_url,
        started_at=started_at,
        completed_at=datetime.now(timezone.utc),
        status="success",
        compressed=compressed,
        bytes_received=len(result.content),
        document=document,
    )


async def fetch_all_sources(
    client: httpx.AsyncClient,
    sources: Sequence[str],
    *,
    timeout_seconds: float,
    max_concurrency: int,
    max_retries: int = 1,
    backoff_factor: float = 2.0
) -> list[SourceSummary]:
    """
    Fetch every source concurrently and wait for all of them to settle

    Concurrency is bounded by ``max_concurrency``. The timeout applies once a
    source holds a worker slot, so queued sources are not penalised.

    Returns:
        Summaries in configuration order
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    total = len(sources)

    async def run(index: int, source_url: str) -> SourceSummary:
        async with semaphore:
            logger.debug("[Source %s/%s] Starting download", index, total)
            return await fetch_source(
                client,
                source_url,
                index,
                timeout_seconds=timeout_seconds,
                max_retries=max_retries,
                backoff_factor=backoff_factor,
            )

    tasks = [
        asyncio.create_task(run(index, source_url))
        for index, source_url in enumerate(sources, start=1)
    ]
    summaries = await asyncio.gather(*tasks)
    summaries.sort(key=lambda summary: summary.index)
    return summaries
