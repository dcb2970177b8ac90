"""
Prometheus text exposition format support.

Parses the payload served by /metrics endpoints into typed Metric records.
"""

from stackscraper.exposition.models import (
    FORWARDABLE_TYPES,
    HelpLine,
    Line,
    Metric,
    MetricLine,
    MetricType,
    TypeLine,
)
from stackscraper.exposition.parser import (
    combine_lines,
    combine_metric,
    parse,
    parse_line,
    parse_lines,
)

__all__ = [
    # Models
    "FORWARDABLE_TYPES",
    "HelpLine",
    "Line",
    "Metric",
    "MetricLine",
    "MetricType",
    "TypeLine",
    # Parser
    "combine_lines",
    "combine_metric",
    "parse",
    "parse_line",
    "parse_lines",
]
