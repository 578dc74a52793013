"""
Structured logging helpers for consistent log formatting.

Provides utilities for structured, clean logging without excessive decorative separators.
"""
import logging
from datetime import datetime, timezone


def log_pipeline_start(logger: logging.Logger, cache_key: str, total_sources: int) -> None:
    """
    Log the start of a merge pipeline run.

    Args:
        logger: Logger instance
        cache_key: Cache key the run is building
        total_sources: Number of configured sources
    """
    logger.info(
        f"Merge pipeline for {cache_key} started at {datetime.now(timezone.utc).isoformat()} "
        f"({total_sources} sources)"
    )


def log_pipeline_end(logger: logging.Logger, cache_key: str, payload_size: int) -> None:
    """Log merge pipeline completion."""
    logger.info(
        f"Merge pipeline for {cache_key} completed at {datetime.now(timezone.utc).isoformat()} "
        f"({payload_size / 1024 / 1024:.2f} MB payload)"
    )


def log_fetch_summary(logger: logging.Logger, succeeded: int, failed: int) -> None:
    """Log the outcome of a fan-out fetch."""
    logger.info(f"Fetch summary - Succeeded: {succeeded}, Failed: {failed}")


def log_merge_summary(
    logger: logging.Logger,
    channels_count: int,
    programmes_count: int
) -> None:
    """
    Log merge operation summary.

    Args:
        logger: Logger instance
        channels_count: Number of retained channels
        programmes_count: Number of retained programmes
    """
    logger.info(f"Merge summary - Channels: {channels_count}, Programmes: {programmes_count}")
