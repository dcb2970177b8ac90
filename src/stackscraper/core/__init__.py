"""Core shared primitives for stackscraper."""

from stackscraper.core.errors import (
    ConfigurationError,
    DiscoveryError,
    ExitCode,
    ParseError,
    PublishError,
    ScrapeError,
    StackscraperError,
)

__all__ = [
    "ConfigurationError",
    "DiscoveryError",
    "ExitCode",
    "ParseError",
    "PublishError",
    "ScrapeError",
    "StackscraperError",
]
