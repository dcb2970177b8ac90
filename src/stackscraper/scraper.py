"""
Scraping of discovered targets.

Fetches every address of a target over HTTP, parses the exposition payload
and keeps the metrics that can be forwarded as gauges.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog

from stackscraper import __version__
from stackscraper.core.errors import ParseError, ScrapeError
from stackscraper.discovery.models import ScrapeAddress, ScrapeTarget
from stackscraper.exposition import Metric, parse

logger = structlog.get_logger()

DEFAULT_USER_AGENT = f"stackscraper/{__version__}"
# Ask for the classic text format rather than OpenMetrics or protobuf
ACCEPT_HEADER = "text/plain;version=0.0.4;q=1.0,*/*;q=0.1"


@dataclass(frozen=True)
class ScrapeResult:
    """Metrics scraped from one address of a target."""

    target: ScrapeTarget
    address: ScrapeAddress
    metrics: list[Metric] = field(default_factory=list)


def forwardable(metrics: list[Metric]) -> list[Metric]:
    """Keep gauge and untyped metrics.

    Counters, histograms and summaries have cumulative semantics that are
    not published; they are dropped here.
    """
    return [metric for metric in metrics if metric.is_forwardable]


class Scraper:
    """Scrape targets over HTTP."""

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        *,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._owns_client = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._timeout = timeout
        self._user_agent = user_agent

    async def aclose(self) -> None:
        """Close the HTTP client if this scraper created it."""
        if self._owns_client:
            await self._http.aclose()

    async def scrape(self, target: ScrapeTarget) -> list[ScrapeResult]:
        """
        Scrape every address of a target, in order.

        The first failing address aborts the target.

        Raises:
            ScrapeError: on transport errors, non-2xx responses or
                malformed payloads
        """
        results = []
        for address in target.addresses:
            results.append(await self.scrape_address(target, address))
        return results

    async def scrape_address(self, target: ScrapeTarget, address: ScrapeAddress) -> ScrapeResult:
        details = {
            "namespace": target.namespace,
            "target": target.name,
            "address": address.name,
            "url": address.url,
        }

        try:
            response = await self._http.get(
                address.url,
                headers={"User-Agent": self._user_agent, "Accept": ACCEPT_HEADER},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise ScrapeError(f"Failed to fetch {address.url}: {exc}", details=details) from exc

        if not response.is_success:
            raise ScrapeError(
                f"Scraping {target.namespace}/{target.name} address {address.name} failed: "
                f"{response.status_code} {response.reason_phrase}",
                details={**details, "status": response.status_code},
            )

        try:
            metrics = parse(response.text)
        except ParseError as exc:
            raise ScrapeError(
                f"Malformed metrics from {address.url}: {exc}",
                details={**details, **exc.details},
            ) from exc

        kept = forwardable(metrics)
        logger.debug(
            "address_scraped",
            **details,
            parsed=len(metrics),
            forwarded=len(kept),
        )
        return ScrapeResult(target=target, address=address, metrics=kept)
