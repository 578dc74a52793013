"""HTTP-level tests for the merged feed endpoint."""

import asyncio
import gzip

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.main import app
from app.routers import parse_ttl
from app.services import cache_service, epg_fetch_service
from app.services.cache_service import FeedCache

from samples import RoutedTransport, channel, gzipped, programme, xmltv


SLOW = "https://slow.example/epg.xml"
MISSING = "https://missing.example/epg.xml"
GOOD = "https://good.example/epg.xml.gz"

GOOD_DOC = xmltv(channel("good.tv"), programme("good.tv", "20240101060000 +0000", "Morning"))


async def hang(request):
    await asyncio.sleep(5)
    return httpx.Response(200, content=xmltv(channel("slow.tv")).encode("utf-8"))


@pytest.fixture
def upstream(monkeypatch, clock):
    """Route all pipeline traffic to a mock transport with three sources."""
    transport = RoutedTransport({SLOW: hang, GOOD: (200, {}, gzipped(GOOD_DOC))})
    pipeline_class = epg_fetch_service.EPGFetchPipeline

    def make_pipeline(sources):
        return pipeline_class(sources, transport=transport, timeout_seconds=0.2, max_retries=1)

    monkeypatch.setattr(epg_fetch_service, "EPGFetchPipeline", make_pipeline)
    monkeypatch.setattr(settings, "epg_sources", [SLOW, MISSING, GOOD])
    monkeypatch.setattr(cache_service, "_cache", FeedCache(clock=clock))
    return transport


@pytest.fixture
def client():
    return TestClient(app)


def test_plain_response_headers_and_fault_isolation(client, upstream):
    response = client.get("/")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/xml; charset=utf-8"
    assert response.headers["cache-control"] == "max-age=3600"
    assert "content-encoding" not in response.headers
    assert response.text == (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<tv generator-info-name="{settings.generator_info_name}">\n'
        f'{channel("good.tv")}\n'
        f'{programme("good.tv", "20240101060000 +0000", "Morning")}\n'
        "</tv>"
    )


def test_gzip_response_round_trips_to_plain_bytes(client, upstream):
    plain = client.get("/", params={"ttl": "600"})

    with client.stream("GET", "/", params={"gzip": "1", "ttl": "600"}) as response:
        raw = b"".join(response.iter_raw())
        headers = response.headers

    assert headers["content-type"] == "application/gzip"
    assert headers["content-encoding"] == "gzip"
    assert headers["cache-control"] == "max-age=600"
    assert gzip.decompress(raw) == plain.content


def test_repeat_request_within_ttl_is_served_from_cache(client, upstream, clock):
    first = client.get("/", params={"ttl": "120"})
    calls = len(upstream.calls)

    clock.advance(60)
    second = client.get("/", params={"ttl": "120"})

    assert second.content == first.content
    assert len(upstream.calls) == calls

    clock.advance(61)
    client.get("/", params={"ttl": "120"})

    assert len(upstream.calls) == 2 * calls


def test_different_ttl_is_cached_separately(client, upstream):
    client.get("/", params={"ttl": "120"})
    calls = len(upstream.calls)

    client.get("/", params={"ttl": "240"})

    assert len(upstream.calls) == 2 * calls


def test_all_sources_failing_still_returns_envelope(client, upstream, monkeypatch):
    monkeypatch.setattr(settings, "epg_sources", [SLOW, MISSING])

    response = client.get("/")

    assert response.status_code == 200
    assert "<channel" not in response.text
    assert "<programme" not in response.text
    assert response.text.endswith("</tv>")


def test_pipeline_failure_returns_plain_text_500(client, upstream, monkeypatch):
    def explode(*args):
        raise ValueError("render failed")

    monkeypatch.setattr(epg_fetch_service, "_merge_and_encode", explode)

    response = client.get("/")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "Worker error: render failed"
    assert len(cache_service.get_feed_cache()) == 0


@pytest.mark.parametrize(
    "params, expected",
    [
        ({}, "max-age=3600"),
        ({"ttl": "abc"}, "max-age=3600"),
        ({"ttl": "0"}, "max-age=3600"),
        ({"ttl": "-5"}, "max-age=3600"),
        ({"ttl": "45"}, "max-age=45"),
    ],
)
def test_ttl_query_parameter(client, upstream, params, expected):
    response = client.get("/", params=params)

    assert response.headers["cache-control"] == expected


def test_gzip_flag_other_than_one_selects_plain(client, upstream):
    response = client.get("/", params={"gzip": "true"})

    assert response.headers["content-type"] == "application/xml; charset=utf-8"
    assert "content-encoding" not in response.headers


def test_parse_ttl_defaults():
    assert parse_ttl(None, 3600) == 3600
    assert parse_ttl(" 90 ", 3600) == 90
    assert parse_ttl("1.5", 3600) == 3600


def test_health_and_status_endpoints(client, upstream):
    client.get("/", params={"gzip": "1"})

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["sources_configured"] == 3
    assert health["scheduler_running"] is False
    assert health["cache"]["entries"] == 1
    assert health["cache"]["keys"][0]["format"] == "gz"

    status = client.get("/status").json()["last_run"]
    assert status["status"] == "success"
    assert [s["status"] for s in status["source_details"]] == ["failed", "failed", "success"]
