"""
HTTP download utilities

This module handles source downloads with retry logic.
"""
import asyncio
import logging
from dataclasses import dataclass

import httpx


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DownloadResult:
    """Body and the headers needed to interpret it."""
    url: str
    content: bytes
    content_type: str | None
    content_encoding: str | None


async def download_bytes(
    client: httpx.AsyncClient,
    url: str,
    max_retries: int = 3,
    backoff_factor: float = 2.0
) -> DownloadResult:
    """
    Download a URL with exponential backoff retry logic

    Retries on transient network errors (timeouts, connection errors) and
    5xx responses. Does NOT retry on 4xx HTTP errors (client errors).

    Args:
        client: Shared HTTP client (redirect following enabled)
        url: URL to download from
        max_retries: Maximum number of attempts
        backoff_factor: Exponential backoff multiplier (wait = backoff_factor ^ attempt)

    Returns:
        DownloadResult with the response body and compression-related headers

    Raises:
        httpx.HTTPError: If download fails after all retries
    """
    safe_url = sanitize_url_for_logging(url)
    logger.debug(f"Downloading {safe_url}...")

    last_error: Exception | None = None

    for attempt in range(max_retries):
        try:
            response = await client.get(url)
            response.raise_for_status()

            logger.debug(
                f"Downloaded {len(response.content) / (1024 * 1024):.2f} MB from {safe_url}"
            )
            return DownloadResult(
                url=url,
                content=response.content,
                content_type=response.headers.get("content-type"),
                content_encoding=response.headers.get("content-encoding"),
            )

        except (httpx.TimeoutException, httpx.TransportError) as e:
            # Transient network errors - retry
            last_error = e
            if attempt < max_retries - 1:
                wait_time = backoff_factor ** attempt
                logger.warning(
                    f"Download attempt {attempt + 1}/{max_retries} for {safe_url} failed "
                    f"(transient error): {type(e).__name__}. Retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"Download of {safe_url} failed after {max_retries} attempts (transient error)")

        except httpx.HTTPStatusError as e:
            # HTTP errors - don't retry below 5xx (client error, dangling redirect), retry on 5xx
            if e.response.status_code < 500:
                logger.error(f"HTTP {e.response.status_code} (client error) for {safe_url}")
                raise

            last_error = e
            if attempt < max_retries - 1:
                wait_time = backoff_factor ** attempt
                logger.warning(
                    f"Download attempt {attempt + 1}/{max_retries} for {safe_url} failed "
                    f"(HTTP {e.response.status_code} server error). "
                    f"Retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(
                    f"Download of {safe_url} failed after {max_retries} attempts "
                    f"(HTTP {e.response.status_code})"
                )

    # If we exhausted all retries, raise the last error
    if last_error:
        raise last_error

    raise RuntimeError(f"Failed to download {safe_url} after {max_retries} attempts")


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest.split("/", 1)[0]:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url
