"""
Data models for the Prometheus text exposition format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class MetricType(StrEnum):
    """Prometheus metric types as spelled in TYPE lines."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"
    UNTYPED = "untyped"


# Types that can be forwarded as instantaneous (gauge) values.
FORWARDABLE_TYPES = frozenset({MetricType.GAUGE, MetricType.UNTYPED})


@dataclass(frozen=True)
class TypeLine:
    """`# TYPE <name> <type>`"""

    name: str
    type: MetricType


@dataclass(frozen=True)
class HelpLine:
    """`# HELP <name> <text>`"""

    name: str
    help: str


@dataclass(frozen=True)
class MetricLine:
    """A single sample: name, optional labels and value."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0


# Tagged union of the line kinds produced by the line parser.
Line = TypeLine | HelpLine | MetricLine


@dataclass(frozen=True)
class Metric:
    """A sample combined with the HELP/TYPE annotations preceding it."""

    name: str
    type: MetricType
    help: str | None
    labels: dict[str, str]
    value: float

    @property
    def is_forwardable(self) -> bool:
        return self.type in FORWARDABLE_TYPES
