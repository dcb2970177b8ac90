"""
Agent settings using Pydantic.

Settings are read from the process environment (and an optional .env file).
CLUSTER_NAME is the only required variable.
"""

from pydantic import ValidationError
from pydantic_settings import BaseSettings

from stackscraper.core.errors import ConfigurationError


class Settings(BaseSettings):
    """Agent settings."""

    # Destination
    cluster_name: str
    stackdriver_project: str | None = None

    # Scheduling
    discovery_interval_seconds: float = 60.0
    scrape_interval_seconds: float = 15.0

    # Scraping
    scrape_timeout_seconds: float = 10.0
    scrape_concurrency: int = 16
    scrape_namespace: str | None = None

    # Descriptor propagation polling
    descriptor_poll_interval_seconds: float = 0.5
    descriptor_poll_attempts: int = 120
    descriptor_poll_timeout_seconds: float = 60.0

    # Kubernetes client (in-cluster config is tried first)
    kubeconfig: str | None = None
    kube_context: str | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json, console

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = ""
        extra = "ignore"


def load_settings(**overrides: object) -> Settings:
    """Load settings, converting validation failures into ConfigurationError."""
    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        missing = [".".join(str(p) for p in err["loc"]) for err in exc.errors() if err["type"] == "missing"]
        if missing:
            names = ", ".join(name.upper() for name in missing)
            raise ConfigurationError(
                f"Missing environment variable(s): {names}",
                details={"missing": missing},
            ) from exc
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
