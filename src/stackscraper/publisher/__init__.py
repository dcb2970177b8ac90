"""
Publishing of scraped metrics to Google Cloud Monitoring.
"""

from stackscraper.publisher.backend import (
    DescriptorSpec,
    MonitoredResource,
    MonitoringBackend,
    TimeSeriesPoint,
)
from stackscraper.publisher.publisher import (
    CUSTOM_METRIC_DOMAIN,
    GKE_CONTAINER,
    Publisher,
    metric_type_for,
)
from stackscraper.publisher.stackdriver import StackdriverBackend, discover_project_id

__all__ = [
    # Backend interface
    "DescriptorSpec",
    "MonitoredResource",
    "MonitoringBackend",
    "TimeSeriesPoint",
    # Publisher
    "CUSTOM_METRIC_DOMAIN",
    "GKE_CONTAINER",
    "Publisher",
    "metric_type_for",
    # Stackdriver
    "StackdriverBackend",
    "discover_project_id",
]
