"""Tests for the cache-backed merge pipeline."""

import asyncio
import gzip

import httpx
import pytest

from app.services import epg_fetch_service
from app.services.cache_service import FeedCache
from app.services.epg_fetch_service import EPGFetchPipeline, FeedBuildError, get_merged_feed
from app.services.fetch_coordinator import FetchCoordinator
from app.services.fetch_types import OutputFormat

from samples import RoutedTransport, channel, gzipped, programme, xmltv


FIRST = "https://one.example/epg.xml"
SECOND = "https://two.example/epg.xml.gz"


def make_pipeline(transport, sources=(FIRST, SECOND)):
    return EPGFetchPipeline(
        list(sources),
        transport=transport,
        timeout_seconds=0.5,
        max_retries=1,
        generator_name="test-merge",
    )


def fetch(output_format, ttl, cache, pipeline, coordinator=None):
    return asyncio.run(get_merged_feed(
        output_format,
        ttl,
        cache=cache,
        coordinator=coordinator or FetchCoordinator(),
        pipeline=pipeline,
    ))


def test_pipeline_merges_sources_in_configuration_order(clock):
    transport = RoutedTransport({
        FIRST: (200, {}, xmltv(channel("A", "from one"), programme("A", "1", "One"))),
        SECOND: (200, {}, gzipped(xmltv(channel("A", "from two"), channel("B"), programme("A", "1", "Two")))),
    })

    entry = fetch(OutputFormat.PLAIN, 60, FeedCache(clock=clock), make_pipeline(transport))
    text = entry.payload.decode("utf-8")

    assert entry.content_type == "application/xml; charset=utf-8"
    assert entry.content_encoding is None
    assert text.count("<channel ") == 2
    assert "from one" in text and "from two" not in text
    assert "One" in text and "Two" not in text
    assert text.index('<channel id="B"') < text.index("<programme ")


def test_gzip_entry_decompresses_to_plain_payload(clock):
    transport = RoutedTransport({FIRST: (200, {}, xmltv(channel("A")))})
    cache = FeedCache(clock=clock)

    plain = fetch(OutputFormat.PLAIN, 60, cache, make_pipeline(transport))
    packed = fetch(OutputFormat.GZIP, 60, cache, make_pipeline(transport))

    assert packed.content_type == "application/gzip"
    assert packed.content_encoding == "gzip"
    assert gzip.decompress(packed.payload) == plain.payload


def test_fresh_entry_is_served_without_fetching(clock):
    transport = RoutedTransport({FIRST: (200, {}, xmltv(channel("A")))})
    cache = FeedCache(clock=clock)

    first = fetch(OutputFormat.PLAIN, 60, cache, make_pipeline(transport))
    calls_after_first = len(transport.calls)
    clock.advance(30)
    second = fetch(OutputFormat.PLAIN, 60, cache, make_pipeline(transport))

    assert second is first
    assert len(transport.calls) == calls_after_first

    clock.advance(31)
    fetch(OutputFormat.PLAIN, 60, cache, make_pipeline(transport))

    assert len(transport.calls) == 2 * calls_after_first


def test_every_source_failing_yields_empty_envelope(clock):
    transport = RoutedTransport({})

    entry = fetch(OutputFormat.PLAIN, 60, FeedCache(clock=clock), make_pipeline(transport))

    assert entry.payload.decode("utf-8") == (
        '<?xml version="1.0" encoding="UTF-8"?>\n<tv generator-info-name="test-merge">\n</tv>'
    )


def test_merge_failure_raises_and_caches_nothing(clock, monkeypatch):
    def explode(*args):
        raise MemoryError("out of memory while rendering")

    monkeypatch.setattr(epg_fetch_service, "_merge_and_encode", explode)
    transport = RoutedTransport({FIRST: (200, {}, xmltv(channel("A")))})
    cache = FeedCache(clock=clock)

    with pytest.raises(FeedBuildError, match="out of memory"):
        fetch(OutputFormat.PLAIN, 60, cache, make_pipeline(transport))

    assert len(cache) == 0
    assert epg_fetch_service.get_last_run().status == "failed"


def test_concurrent_misses_run_the_pipeline_once(clock):
    async def slow(request):
        await asyncio.sleep(0.05)
        return httpx.Response(200, content=xmltv(channel("A")).encode("utf-8"))

    transport = RoutedTransport({FIRST: slow})
    cache = FeedCache(clock=clock)
    coordinator = FetchCoordinator()
    pipeline = make_pipeline(transport, sources=[FIRST])

    async def scenario():
        return await asyncio.gather(*(
            get_merged_feed(OutputFormat.PLAIN, 60, cache=cache, coordinator=coordinator, pipeline=pipeline)
            for _ in range(4)
        ))

    entries = asyncio.run(scenario())

    assert transport.calls == [FIRST]
    assert all(entry is entries[0] for entry in entries)


def test_last_run_records_source_outcomes(clock):
    transport = RoutedTransport({FIRST: (200, {}, xmltv(channel("A"), programme("A", "1", "P")))})

    fetch(OutputFormat.GZIP, 90, FeedCache(clock=clock), make_pipeline(transport))
    status = epg_fetch_service.get_last_run().to_dict()

    assert status["status"] == "success"
    assert status["format"] == "gz"
    assert status["ttl_seconds"] == 90
    assert status["channels"] == 1
    assert status["programmes"] == 1
    assert status["sources_succeeded"] == 1
    assert status["sources_failed"] == 1
    assert status["source_details"][1]["error"] == "HTTP 404"


def test_source_declaring_non_text_encoding_does_not_fail_the_merge(clock):
    transport = RoutedTransport({
        FIRST: (200, {}, xmltv(channel("good"))),
        SECOND: (200, {}, b'<?xml version="1.0" encoding="zip"?>\n<tv><channel id="odd"/></tv>'),
    })

    entry = fetch(OutputFormat.PLAIN, 60, FeedCache(clock=clock), make_pipeline(transport))
    text = entry.payload.decode("utf-8")

    assert '<channel id="good">' in text
    assert '<channel id="odd"/>' in text


def test_client_timeouts_follow_the_per_source_budget(clock):
    seen = []

    async def record(request):
        seen.append(request.extensions["timeout"])
        return httpx.Response(200, content=xmltv(channel("late")).encode("utf-8"))

    transport = RoutedTransport({FIRST: record})
    pipeline = EPGFetchPipeline([FIRST], transport=transport, timeout_seconds=30)

    fetch(OutputFormat.PLAIN, 60, FeedCache(clock=clock), pipeline)

    assert seen == [{"connect": 30, "read": 30, "write": 30, "pool": 30}]
