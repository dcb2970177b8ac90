"""
Scrape target discovery.

Resolves Kubernetes services annotated for Prometheus scraping into
scrape targets and addresses.
"""

from stackscraper.discovery.kubernetes import (
    NODE_ZONE_LABEL,
    SCRAPE_ENABLED,
    SCRAPE_PATH,
    SCRAPE_PORT,
    KubernetesDiscovery,
)
from stackscraper.discovery.models import ScrapeAddress, ScrapeTarget, TargetSnapshot

__all__ = [
    # Models
    "ScrapeAddress",
    "ScrapeTarget",
    "TargetSnapshot",
    # Kubernetes
    "KubernetesDiscovery",
    "NODE_ZONE_LABEL",
    "SCRAPE_ENABLED",
    "SCRAPE_PATH",
    "SCRAPE_PORT",
]
