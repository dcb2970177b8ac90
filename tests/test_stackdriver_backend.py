"""Tests for the Cloud Monitoring backend."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.api import label_pb2 as ga_label
from google.api import metric_pb2 as ga_metric
from google.api_core import exceptions as gcp_exceptions
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import monitoring_v3
from stackscraper.core.errors import ConfigurationError, PublishError
from stackscraper.publisher import DescriptorSpec, MonitoredResource, TimeSeriesPoint
from stackscraper.publisher.stackdriver import (
    StackdriverBackend,
    build_descriptor,
    build_time_series,
    discover_project_id,
)

METRIC_TYPE = "custom.googleapis.com/queue_depth"


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def backend(client):
    return StackdriverBackend("test-project", client=client)


def make_point(value=12.0, end_time=1700000000.25):
    return TimeSeriesPoint(
        metric_type=METRIC_TYPE,
        metric_labels={"queue": "emails"},
        resource=MonitoredResource(type="gke_container", labels={"zone": "us-central1-a"}),
        value=value,
        end_time=end_time,
    )


class TestDiscoverProjectId:
    def test_override_wins(self):
        with patch("google.auth.default") as default:
            assert discover_project_id("metrics-project") == "metrics-project"

        default.assert_not_called()

    def test_detects_from_credentials(self):
        with patch("google.auth.default", return_value=(MagicMock(), "detected-project")):
            assert discover_project_id() == "detected-project"

    def test_missing_project_is_configuration_error(self):
        with patch("google.auth.default", return_value=(MagicMock(), None)):
            with pytest.raises(ConfigurationError, match="STACKDRIVER_PROJECT"):
                discover_project_id()

    def test_missing_credentials_is_configuration_error(self):
        with patch("google.auth.default", side_effect=DefaultCredentialsError("no credentials")):
            with pytest.raises(ConfigurationError):
                discover_project_id()


class TestBuilders:
    def test_build_descriptor(self):
        descriptor = build_descriptor(
            DescriptorSpec(type=METRIC_TYPE, label_keys=("queue", "shard"), description="Items waiting.")
        )

        assert descriptor.type == METRIC_TYPE
        assert descriptor.metric_kind == ga_metric.MetricDescriptor.MetricKind.GAUGE
        assert descriptor.value_type == ga_metric.MetricDescriptor.ValueType.DOUBLE
        assert descriptor.description == "Items waiting."
        assert [label.key for label in descriptor.labels] == ["queue", "shard"]
        assert {label.value_type for label in descriptor.labels} == {
            ga_label.LabelDescriptor.ValueType.STRING
        }

    def test_build_descriptor_without_help(self):
        descriptor = build_descriptor(DescriptorSpec(type=METRIC_TYPE))

        assert descriptor.description == ""
        assert len(descriptor.labels) == 0

    def test_build_time_series(self):
        series = build_time_series(make_point())

        assert series.metric.type == METRIC_TYPE
        assert dict(series.metric.labels) == {"queue": "emails"}
        assert series.resource.type == "gke_container"
        assert dict(series.resource.labels) == {"zone": "us-central1-a"}
        assert len(series.points) == 1
        assert series.points[0].value.double_value == 12.0

        raw = monitoring_v3.TimeSeries.pb(series)
        assert raw.points[0].interval.end_time.seconds == 1700000000
        assert raw.points[0].interval.end_time.nanos == 250000000


class TestStackdriverBackend:
    def test_descriptor_name(self, backend):
        assert backend.project_name == "projects/test-project"
        assert (
            backend.descriptor_name(METRIC_TYPE)
            == "projects/test-project/metricDescriptors/custom.googleapis.com/queue_depth"
        )

    @pytest.mark.asyncio
    async def test_descriptor_exists(self, backend, client):
        client.get_metric_descriptor = AsyncMock(return_value=ga_metric.MetricDescriptor())

        assert await backend.descriptor_exists(METRIC_TYPE) is True
        client.get_metric_descriptor.assert_awaited_once_with(
            name="projects/test-project/metricDescriptors/custom.googleapis.com/queue_depth"
        )

    @pytest.mark.asyncio
    async def test_descriptor_not_found(self, backend, client):
        client.get_metric_descriptor = AsyncMock(side_effect=gcp_exceptions.NotFound("missing"))

        assert await backend.descriptor_exists(METRIC_TYPE) is False

    @pytest.mark.asyncio
    async def test_descriptor_lookup_failure(self, backend, client):
        client.get_metric_descriptor = AsyncMock(side_effect=gcp_exceptions.PermissionDenied("denied"))

        with pytest.raises(PublishError):
            await backend.descriptor_exists(METRIC_TYPE)

    @pytest.mark.asyncio
    async def test_create_descriptor(self, backend, client):
        created = MagicMock()
        created.name = "projects/test-project/metricDescriptors/custom.googleapis.com/queue_depth"
        client.create_metric_descriptor = AsyncMock(return_value=created)

        name = await backend.create_descriptor(DescriptorSpec(type=METRIC_TYPE, label_keys=("queue",)))

        assert name == created.name
        kwargs = client.create_metric_descriptor.await_args.kwargs
        assert kwargs["name"] == "projects/test-project"
        assert kwargs["metric_descriptor"].type == METRIC_TYPE

    @pytest.mark.asyncio
    async def test_create_descriptor_failure(self, backend, client):
        client.create_metric_descriptor = AsyncMock(
            side_effect=gcp_exceptions.ResourceExhausted("quota exceeded")
        )

        with pytest.raises(PublishError) as exc_info:
            await backend.create_descriptor(DescriptorSpec(type=METRIC_TYPE))

        assert exc_info.value.details == {"metric_type": METRIC_TYPE}

    @pytest.mark.asyncio
    async def test_create_time_series(self, backend, client):
        client.create_time_series = AsyncMock()

        await backend.create_time_series([make_point(1.0), make_point(2.0)])

        kwargs = client.create_time_series.await_args.kwargs
        assert kwargs["name"] == "projects/test-project"
        assert [s.points[0].value.double_value for s in kwargs["time_series"]] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_create_time_series_failure(self, backend, client):
        client.create_time_series = AsyncMock(side_effect=gcp_exceptions.InvalidArgument("bad label"))

        with pytest.raises(PublishError, match="Failed to write 1 time series"):
            await backend.create_time_series([make_point()])

    @pytest.mark.asyncio
    async def test_aclose_closes_transport(self, backend, client):
        client.transport.close = AsyncMock()

        await backend.aclose()

        client.transport.close.assert_awaited_once()
