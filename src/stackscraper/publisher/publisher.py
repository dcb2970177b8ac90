"""
Publishing of scrape results as time series.

Mapping of Prometheus metrics to Cloud Monitoring metrics:

Only instantaneous values are forwarded. Prometheus "gauge" and "untyped"
metrics both map to GAUGE metrics with DOUBLE values; cumulative types are
filtered out before they reach the publisher.

Each metric name gets a custom metric descriptor. Descriptors are created
lazily from the first metric of a name seen by the process, including its
label keys; metrics seen later with additional label keys are not
reconciled against an existing descriptor.

Time series are written in requests of at most MAX_SERIES_PER_REQUEST.
A result larger than that is not atomic: when a later request fails, the
series of earlier requests stay written and the whole result is reported
as a PublishError. Results of up to 200 metrics are written in one call.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from stackscraper.cache import OnceCache
from stackscraper.core.errors import PublishError
from stackscraper.exposition import Metric
from stackscraper.publisher.backend import (
    DescriptorSpec,
    MonitoredResource,
    MonitoringBackend,
    TimeSeriesPoint,
)
from stackscraper.scraper import ScrapeResult

logger = structlog.get_logger()

# All monitored resources are GKE containers
GKE_CONTAINER = "gke_container"
CUSTOM_METRIC_DOMAIN = "custom.googleapis.com"

# CreateTimeSeries accepts at most 200 series per request
MAX_SERIES_PER_REQUEST = 200


def metric_type_for(metric: Metric) -> str:
    return f"{CUSTOM_METRIC_DOMAIN}/{metric.name}"


def descriptor_spec_for(metric: Metric) -> DescriptorSpec:
    return DescriptorSpec(
        type=metric_type_for(metric),
        label_keys=tuple(metric.labels),
        description=metric.help or None,
    )


def _log_pending_descriptor(retry_state: RetryCallState) -> None:
    logger.debug(
        "metric_descriptor_pending",
        metric_type=retry_state.args[0] if retry_state.args else None,
        attempts=retry_state.attempt_number,
    )


class Publisher:
    """Write scrape results to a monitoring backend."""

    def __init__(
        self,
        backend: MonitoringBackend,
        *,
        project_id: str,
        cluster_name: str,
        poll_interval: float = 0.5,
        poll_attempts: int = 120,
        poll_timeout: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._project_id = project_id
        self._cluster_name = cluster_name
        self._poll_interval = poll_interval
        self._poll_attempts = poll_attempts
        self._poll_timeout = poll_timeout
        self._clock = clock
        self._descriptors: OnceCache[str, str] = OnceCache("metric_descriptor")

    @property
    def known_descriptors(self) -> int:
        return len(self._descriptors)

    def monitored_resource(self, result: ScrapeResult) -> MonitoredResource:
        """The gke_container resource a result was scraped from."""
        return MonitoredResource(
            type=GKE_CONTAINER,
            labels={
                "project_id": self._project_id,
                "cluster_name": self._cluster_name,
                "namespace_id": result.target.namespace,
                "container_name": result.target.name,
                "pod_id": result.address.name,
                "instance_id": result.address.node,
                "zone": result.address.zone,
            },
        )

    async def publish(self, result: ScrapeResult) -> None:
        """
        Publish all metrics of a scrape result.

        Descriptors for every metric are ensured first, then all points are
        written with one shared end time.

        Raises:
            PublishError: if any descriptor or time series call fails
        """
        log = logger.bind(
            namespace=result.target.namespace,
            target=result.target.name,
            address=result.address.name,
        )
        if not result.metrics:
            log.debug("publish_skipped_empty")
            return

        end_time = self._clock()
        resource = self.monitored_resource(result)

        try:
            firsts: dict[str, Metric] = {}
            for metric in result.metrics:
                firsts.setdefault(metric_type_for(metric), metric)
            await asyncio.gather(*(self.ensure_descriptor(metric) for metric in firsts.values()))

            series = [
                TimeSeriesPoint(
                    metric_type=metric_type_for(metric),
                    metric_labels=dict(metric.labels),
                    resource=resource,
                    value=metric.value,
                    end_time=end_time,
                )
                for metric in result.metrics
            ]
            for start in range(0, len(series), MAX_SERIES_PER_REQUEST):
                await self._backend.create_time_series(series[start : start + MAX_SERIES_PER_REQUEST])

        except PublishError:
            raise
        except Exception as exc:
            raise PublishError(
                f"Publishing metrics for {result.target.namespace}/{result.target.name} failed: {exc}",
                details={
                    "namespace": result.target.namespace,
                    "target": result.target.name,
                    "address": result.address.name,
                },
            ) from exc

        log.info("metrics_published", count=len(series))

    async def ensure_descriptor(self, metric: Metric) -> str:
        """Return the descriptor name for a metric, creating it on first use."""
        metric_type = metric_type_for(metric)
        return await self._descriptors.get_or_compute(
            metric_type, lambda: self._load_or_create(metric)
        )

    async def _load_or_create(self, metric: Metric) -> str:
        metric_type = metric_type_for(metric)
        name = self._backend.descriptor_name(metric_type)

        logger.debug("metric_descriptor_lookup", descriptor=name)
        if await self._backend.descriptor_exists(metric_type):
            logger.debug("metric_descriptor_found", descriptor=name)
            return name

        created = await self._backend.create_descriptor(descriptor_spec_for(metric))
        await self._await_descriptor(metric_type)
        logger.info("metric_descriptor_created", descriptor=created)
        return created

    async def _await_descriptor(self, metric_type: str) -> None:
        """Poll until a freshly created descriptor becomes visible.

        Descriptor creation propagates asynchronously; writes against a
        descriptor that is not yet visible are rejected.
        """
        retrying = AsyncRetrying(
            retry=retry_if_result(lambda exists: not exists),
            stop=stop_after_attempt(self._poll_attempts) | stop_after_delay(self._poll_timeout),
            wait=wait_fixed(self._poll_interval),
            before_sleep=_log_pending_descriptor,
        )
        try:
            await retrying(self._backend.descriptor_exists, metric_type)
        except RetryError as exc:
            raise PublishError(
                f"Metric descriptor {metric_type} not visible after "
                f"{exc.last_attempt.attempt_number} attempts",
                details={"metric_type": metric_type},
            ) from exc
