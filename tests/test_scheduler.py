"""Tests for the cache maintenance scheduler jobs."""

import asyncio

from app.services import cache_service, scheduler_service
from app.services.cache_service import FeedCache
from app.services.fetch_types import CacheEntry, CacheKey, OutputFormat
from app.services.scheduler_service import CacheScheduler


def test_purge_job_drops_expired_entries(monkeypatch, clock):
    cache = FeedCache(clock=clock)
    cache.put(
        CacheKey(OutputFormat.PLAIN, 5),
        CacheEntry(b"x", "application/xml; charset=utf-8", None, clock(), 5),
    )
    monkeypatch.setattr(cache_service, "_cache", cache)

    clock.advance(10)
    asyncio.run(CacheScheduler()._purge_job())

    assert len(cache) == 0


def test_warm_job_builds_default_plain_feed(monkeypatch):
    requested = []

    async def fake_get_merged_feed(output_format, ttl):
        requested.append((output_format, ttl))

    monkeypatch.setattr(scheduler_service, "get_merged_feed", fake_get_merged_feed)
    monkeypatch.setattr(scheduler_service.settings, "default_ttl_sec", 900)

    asyncio.run(CacheScheduler()._warm_job())

    assert requested == [(OutputFormat.PLAIN, 900)]


def test_next_run_time_is_none_before_start():
    assert CacheScheduler().get_next_run_time() is None
