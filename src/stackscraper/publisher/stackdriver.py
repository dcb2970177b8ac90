"""
Google Cloud Monitoring (Stackdriver) backend.

Documented resource types: https://cloud.google.com/monitoring/api/resources
Metric kinds: https://cloud.google.com/monitoring/api/ref_v3/rest/v3/projects.metricDescriptors#metrickind
"""

from __future__ import annotations

from typing import Any, Sequence

import google.auth
import structlog
from google.api import label_pb2 as ga_label
from google.api import metric_pb2 as ga_metric
from google.api_core import exceptions as gcp_exceptions
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import monitoring_v3

from stackscraper.core.errors import ConfigurationError, PublishError
from stackscraper.publisher.backend import DescriptorSpec, MonitoringBackend, TimeSeriesPoint

logger = structlog.get_logger()


def discover_project_id(override: str | None = None) -> str:
    """
    Destination project for published metrics.

    The project metrics are published into is not necessarily the one the
    agent runs in, so STACKDRIVER_PROJECT takes precedence over the project
    of the ambient credentials.
    """
    if override:
        return override

    try:
        _, project_id = google.auth.default()
    except DefaultCredentialsError as exc:
        raise ConfigurationError(f"Could not load Google Cloud credentials: {exc}") from exc

    if not project_id:
        raise ConfigurationError(
            "Could not detect the Google Cloud project; set STACKDRIVER_PROJECT"
        )
    return project_id


def build_descriptor(spec: DescriptorSpec) -> ga_metric.MetricDescriptor:
    descriptor = ga_metric.MetricDescriptor()
    descriptor.type = spec.type
    descriptor.metric_kind = ga_metric.MetricDescriptor.MetricKind.GAUGE
    descriptor.value_type = ga_metric.MetricDescriptor.ValueType.DOUBLE
    if spec.description:
        descriptor.description = spec.description

    for key in spec.label_keys:
        label = ga_label.LabelDescriptor()
        label.key = key
        label.value_type = ga_label.LabelDescriptor.ValueType.STRING
        descriptor.labels.append(label)

    return descriptor


def build_time_series(point: TimeSeriesPoint) -> monitoring_v3.TimeSeries:
    seconds = int(point.end_time)
    nanos = int((point.end_time - seconds) * 10**9)
    interval = monitoring_v3.TimeInterval({"end_time": {"seconds": seconds, "nanos": nanos}})
    value = monitoring_v3.Point({"interval": interval, "value": {"double_value": point.value}})

    series = monitoring_v3.TimeSeries()
    series.metric.type = point.metric_type
    for key, label in point.metric_labels.items():
        series.metric.labels[key] = label
    series.resource.type = point.resource.type
    for key, label in point.resource.labels.items():
        series.resource.labels[key] = label
    series.points = [value]
    return series


class StackdriverBackend(MonitoringBackend):
    """Metric backend on the Cloud Monitoring v3 API."""

    def __init__(self, project_id: str, client: Any | None = None) -> None:
        self._project_name = f"projects/{project_id}"
        self._client = client or monitoring_v3.MetricServiceAsyncClient()

    @property
    def project_name(self) -> str:
        return self._project_name

    def descriptor_name(self, metric_type: str) -> str:
        return f"{self._project_name}/metricDescriptors/{metric_type}"

    async def descriptor_exists(self, metric_type: str) -> bool:
        name = self.descriptor_name(metric_type)
        try:
            await self._client.get_metric_descriptor(name=name)
        except gcp_exceptions.NotFound:
            return False
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PublishError(
                f"Failed to look up metric descriptor {name}: {exc}",
                details={"descriptor": name},
            ) from exc
        return True

    async def create_descriptor(self, spec: DescriptorSpec) -> str:
        try:
            created = await self._client.create_metric_descriptor(
                name=self._project_name,
                metric_descriptor=build_descriptor(spec),
            )
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PublishError(
                f"Failed to create metric descriptor {spec.type}: {exc}",
                details={"metric_type": spec.type},
            ) from exc
        return created.name

    async def create_time_series(self, series: Sequence[TimeSeriesPoint]) -> None:
        try:
            await self._client.create_time_series(
                name=self._project_name,
                time_series=[build_time_series(point) for point in series],
            )
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PublishError(
                f"Failed to write {len(series)} time series: {exc}",
                details={"project": self._project_name},
            ) from exc

    async def aclose(self) -> None:
        await self._client.transport.close()
