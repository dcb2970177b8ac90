import httpx
import pytest
import respx
from httpx import Response
from stackscraper.core.errors import ParseError, ScrapeError
from stackscraper.discovery import ScrapeAddress, ScrapeTarget
from stackscraper.exposition import MetricType
from stackscraper.scraper import ACCEPT_HEADER, Scraper

PAYLOAD = """\
# HELP http_requests_total Total requests.
# TYPE http_requests_total counter
http_requests_total{code="200"} 1027
# HELP request_duration_seconds Request latency.
# TYPE request_duration_seconds histogram
request_duration_seconds_bucket{le="0.1"} 4
# HELP queue_depth Items waiting in the queue.
# TYPE queue_depth gauge
queue_depth{queue="emails"} 12
worker_busy 1
"""


def make_target(*urls: str) -> ScrapeTarget:
    return ScrapeTarget(
        name="mailer",
        namespace="jobs",
        addresses=[
            ScrapeAddress(name=f"mailer-{i}", node="node-1", zone="us-central1-a", url=url)
            for i, url in enumerate(urls)
        ],
    )


@pytest.mark.asyncio
async def test_scrape_keeps_gauge_and_untyped_metrics():
    scraper = Scraper()
    target = make_target("http://10.0.0.1:9090/metrics")

    with respx.mock:
        route = respx.get("http://10.0.0.1:9090/metrics").mock(return_value=Response(200, text=PAYLOAD))

        results = await scraper.scrape(target)

        assert route.call_count == 1
        assert route.calls.last.request.headers["Accept"] == ACCEPT_HEADER

    assert len(results) == 1
    result = results[0]
    assert result.target == target
    assert result.address == target.addresses[0]
    assert [(m.name, m.type) for m in result.metrics] == [
        ("queue_depth", MetricType.GAUGE),
        ("worker_busy", MetricType.UNTYPED),
    ]
    assert result.metrics[0].labels == {"queue": "emails"}
    assert result.metrics[0].value == 12.0

    await scraper.aclose()


@pytest.mark.asyncio
async def test_scrape_returns_one_result_per_address():
    scraper = Scraper()
    target = make_target("http://10.0.0.1/metrics", "http://10.0.0.2/metrics")

    with respx.mock:
        respx.get("http://10.0.0.1/metrics").mock(return_value=Response(200, text="a 1\n"))
        respx.get("http://10.0.0.2/metrics").mock(return_value=Response(200, text="b 2\n"))

        results = await scraper.scrape(target)

    assert [r.address.name for r in results] == ["mailer-0", "mailer-1"]
    assert [r.metrics[0].name for r in results] == ["a", "b"]


@pytest.mark.asyncio
async def test_target_without_addresses():
    scraper = Scraper()

    assert await scraper.scrape(make_target()) == []


@pytest.mark.asyncio
async def test_non_success_status_raises_scrape_error():
    scraper = Scraper()
    target = make_target("http://10.0.0.1/metrics")

    with respx.mock:
        respx.get("http://10.0.0.1/metrics").mock(return_value=Response(503))

        with pytest.raises(ScrapeError) as exc_info:
            await scraper.scrape(target)

    error = exc_info.value
    assert "jobs/mailer" in error.message
    assert "mailer-0" in error.message
    assert "503 Service Unavailable" in error.message
    assert error.details["url"] == "http://10.0.0.1/metrics"
    assert error.details["status"] == 503


@pytest.mark.asyncio
async def test_first_failing_address_aborts_target():
    scraper = Scraper()
    target = make_target("http://10.0.0.1/metrics", "http://10.0.0.2/metrics")

    with respx.mock(assert_all_called=False) as router:
        first = router.get("http://10.0.0.1/metrics").mock(return_value=Response(500))
        second = router.get("http://10.0.0.2/metrics").mock(return_value=Response(200, text="a 1\n"))

        with pytest.raises(ScrapeError):
            await scraper.scrape(target)

        assert first.call_count == 1
        assert second.call_count == 0


@pytest.mark.asyncio
async def test_transport_error_raises_scrape_error():
    scraper = Scraper()
    target = make_target("http://10.0.0.1/metrics")

    with respx.mock:
        respx.get("http://10.0.0.1/metrics").mock(side_effect=httpx.ConnectError("connection refused"))

        with pytest.raises(ScrapeError) as exc_info:
            await scraper.scrape(target)

    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_malformed_payload_raises_scrape_error():
    scraper = Scraper()
    target = make_target("http://10.0.0.1/metrics")

    with respx.mock:
        respx.get("http://10.0.0.1/metrics").mock(return_value=Response(200, text="ok 1\nbroken{ 2\n"))

        with pytest.raises(ScrapeError) as exc_info:
            await scraper.scrape(target)

    error = exc_info.value
    assert isinstance(error.__cause__, ParseError)
    assert error.details["line_number"] == 2


@pytest.mark.asyncio
async def test_injected_client_is_not_closed():
    async with httpx.AsyncClient() as http:
        scraper = Scraper(http)
        await scraper.aclose()

        assert not http.is_closed
