"""
Unified error handling for stackscraper.

Every failure the agent can raise derives from StackscraperError, which
carries a message, a details mapping for structured logging and the exit
code the process terminates with when the error is fatal.

Exit Codes:
- 0: Success / graceful shutdown
- 10: Configuration error
- 11: Discovery error (single-cycle runs only)
- 12: Malformed exposition input
- 20: Fatal scrape-cycle error (scrape or publish failure)
- 127: Unknown/internal error
- 130: Interrupted
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    DISCOVERY_FAILED = 11
    PARSE_ERROR = 12
    SCRAPE_FAILED = 20
    UNKNOWN_ERROR = 127
    INTERRUPTED = 130


class StackscraperError(Exception):
    """Base exception for stackscraper errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(StackscraperError):
    """Raised when required configuration is missing or invalid."""

    exit_code = ExitCode.CONFIG_ERROR


class DiscoveryError(StackscraperError):
    """Raised when the cluster API fails during target discovery.

    Recoverable: the orchestrator logs it and keeps the previous snapshot.
    """

    exit_code = ExitCode.DISCOVERY_FAILED


class ParseError(StackscraperError):
    """Raised for malformed exposition-format input."""

    exit_code = ExitCode.PARSE_ERROR

    def __init__(self, message: str, *, line_number: int | None = None, line: str | None = None):
        details: dict[str, Any] = {}
        if line_number is not None:
            details["line_number"] = line_number
        if line is not None:
            details["line"] = line
        super().__init__(message, details)
        self.line_number = line_number
        self.line = line

    def __str__(self) -> str:
        if self.line_number is None:
            return self.message
        return f"line {self.line_number}: {self.message}"


class ScrapeError(StackscraperError):
    """Raised when an address cannot be scraped or its payload parsed."""

    exit_code = ExitCode.SCRAPE_FAILED


class PublishError(StackscraperError):
    """Raised when descriptors or time series cannot be written."""

    exit_code = ExitCode.SCRAPE_FAILED


F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI commands that converts exceptions into exit codes.

    Exit codes:
        - StackscraperError subclasses: the error's exit_code
        - KeyboardInterrupt: 130
        - Other exceptions: 127
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except StackscraperError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return ExitCode.INTERRUPTED
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: StackscraperError) -> str:
    """Format an error message with its details for display."""
    msg = str(error)
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
