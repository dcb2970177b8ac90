"""
Monitoring backend interface.

The publisher talks to the monitoring service through this narrow
interface; StackdriverBackend is the production implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence


@dataclass(frozen=True)
class DescriptorSpec:
    """Schema registration for a metric type.

    All forwarded metrics are GAUGE/DOUBLE; label descriptors are STRING.
    """

    type: str
    label_keys: tuple[str, ...] = ()
    description: str | None = None


@dataclass(frozen=True)
class MonitoredResource:
    """Where a sample originated."""

    type: str
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One time series entry carrying a single point."""

    metric_type: str
    metric_labels: dict[str, str]
    resource: MonitoredResource
    value: float
    end_time: float


class MonitoringBackend(ABC):
    """
    Abstract base class for metric backends.

    Implementations must raise PublishError for failures other than
    "descriptor does not exist".
    """

    @abstractmethod
    def descriptor_name(self, metric_type: str) -> str:
        """Fully qualified descriptor name for a metric type."""

    @abstractmethod
    async def descriptor_exists(self, metric_type: str) -> bool:
        """Check whether a metric descriptor is visible."""

    @abstractmethod
    async def create_descriptor(self, spec: DescriptorSpec) -> str:
        """
        Create a metric descriptor.

        Returns:
            Name of the created descriptor
        """

    @abstractmethod
    async def create_time_series(self, series: Sequence[TimeSeriesPoint]) -> None:
        """Write a batch of time series in one call."""

    async def aclose(self) -> None:
        """Release transport resources."""
        return None
