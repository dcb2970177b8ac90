"""
Kubernetes scrape target discovery.

Finds services annotated for Prometheus scraping and resolves them into
concrete scrape addresses:
- services are selected by the ``prometheus.io/scrape: "true"`` annotation
- ``prometheus.io/path`` and ``prometheus.io/port`` locate the endpoint
- ready addresses of the matching Endpoints object become scrape addresses
- each address is tagged with the zone of the node hosting it
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import structlog
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from stackscraper.cache import OnceCache
from stackscraper.core.errors import DiscoveryError
from stackscraper.core.tasks import gather_fail_fast
from stackscraper.discovery.models import ScrapeAddress, ScrapeTarget

logger = structlog.get_logger()

SCRAPE_ENABLED = "prometheus.io/scrape"
SCRAPE_PATH = "prometheus.io/path"
SCRAPE_PORT = "prometheus.io/port"

DEFAULT_SCRAPE_PATH = "/metrics"
DEFAULT_SCRAPE_PORT = "80"

NODE_ZONE_LABEL = "failure-domain.beta.kubernetes.io/zone"
# GA replacement for the beta label, set on newer clusters
TOPOLOGY_ZONE_LABEL = "topology.kubernetes.io/zone"
UNKNOWN_ZONE = "unknown"


def _annotations(metadata: Any) -> dict[str, str]:
    return getattr(metadata, "annotations", None) or {}


def is_scrapable(metadata: Any) -> bool:
    """Check whether a service opted in to scraping."""
    return _annotations(metadata).get(SCRAPE_ENABLED) == "true"


def scrape_path(metadata: Any) -> str:
    return _annotations(metadata).get(SCRAPE_PATH) or DEFAULT_SCRAPE_PATH


def scrape_port(metadata: Any) -> str:
    return _annotations(metadata).get(SCRAPE_PORT) or DEFAULT_SCRAPE_PORT


def build_scrape_url(ip: str, port: str, path: str) -> str:
    return f"http://{ip}:{port}{path}"


def zone_from_labels(labels: dict[str, str] | None) -> str:
    labels = labels or {}
    return labels.get(NODE_ZONE_LABEL) or labels.get(TOPOLOGY_ZONE_LABEL) or UNKNOWN_ZONE


@dataclass
class KubernetesDiscovery:
    """
    Resolve scrape targets from the Kubernetes API.

    Configuration:
        namespace: Namespace to search (None = all namespaces)
        kubeconfig: Path to kubeconfig file, used outside the cluster
        context: Kubeconfig context to use (optional)
        timeout: API request timeout in seconds

    Node zones are cached for the lifetime of the instance; concurrent
    lookups of the same node share a single API call.
    """

    namespace: str | None = None
    kubeconfig: str | None = None
    context: str | None = None
    timeout: float = 30.0

    # Internal state
    _api_client: Any = field(default=None, repr=False, compare=False)
    _initialized: bool = field(default=False, repr=False, compare=False)
    _zones: OnceCache[str, str] = field(
        default_factory=lambda: OnceCache("node_zone"), repr=False, compare=False
    )

    def _ensure_initialized(self) -> None:
        """Initialize Kubernetes client if not already done."""
        if self._initialized:
            return

        # Try in-cluster config first, then kubeconfig
        try:
            config.load_incluster_config()
        except config.ConfigException:
            try:
                config.load_kube_config(
                    config_file=self.kubeconfig,
                    context=self.context,
                )
            except config.ConfigException as e:
                raise DiscoveryError(f"Failed to load Kubernetes config: {e}") from e

        self._api_client = client.ApiClient()
        self._initialized = True

    def _get_core_api(self) -> Any:
        """Get CoreV1Api client."""
        self._ensure_initialized()
        return client.CoreV1Api(self._api_client)

    async def _run_sync(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run synchronous kubernetes API call in executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def resolve_targets(self) -> list[ScrapeTarget]:
        """
        Discover all scrape-enabled services and their addresses.

        Raises:
            DiscoveryError: if any cluster API call fails
        """
        try:
            core_api = self._get_core_api()

            if self.namespace:
                svc_list = await self._run_sync(
                    core_api.list_namespaced_service,
                    self.namespace,
                    timeout_seconds=int(self.timeout),
                )
            else:
                svc_list = await self._run_sync(
                    core_api.list_service_for_all_namespaces,
                    timeout_seconds=int(self.timeout),
                )

            services = [svc for svc in svc_list.items if is_scrapable(svc.metadata)]
            targets = await gather_fail_fast(self._prepare_target(core_api, svc) for svc in services)

        except DiscoveryError:
            raise
        except Exception as e:
            raise DiscoveryError(f"Failed to resolve scrape targets: {e}") from e

        logger.debug(
            "targets_resolved",
            targets=len(targets),
            addresses=sum(len(t.addresses) for t in targets),
        )
        return list(targets)

    async def _prepare_target(self, core_api: Any, svc: Any) -> ScrapeTarget:
        meta = svc.metadata
        port = scrape_port(meta)
        path = scrape_path(meta)

        endpoint_addresses = await self._find_ready_addresses(core_api, meta.namespace, meta.name)

        addresses = []
        for address in endpoint_addresses:
            node = address.node_name or ""
            pod = address.target_ref.name if address.target_ref is not None else address.ip
            addresses.append(
                ScrapeAddress(
                    name=pod,
                    node=node,
                    zone=await self.find_node_zone(core_api, node),
                    url=build_scrape_url(address.ip, port, path),
                )
            )

        return ScrapeTarget(
            name=meta.name,
            namespace=meta.namespace,
            labels=dict(meta.labels or {}),
            addresses=addresses,
        )

    async def _find_ready_addresses(self, core_api: Any, namespace: str, name: str) -> list[Any]:
        """Ready addresses of the Endpoints object backing a service."""
        try:
            endpoints = await self._run_sync(
                core_api.read_namespaced_endpoints,
                name,
                namespace,
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug("endpoints_not_found", namespace=namespace, service=name)
                return []
            raise

        addresses: list[Any] = []
        for subset in endpoints.subsets or []:
            addresses.extend(subset.addresses or [])
        return addresses

    async def find_node_zone(self, core_api: Any, node_name: str) -> str:
        """Zone of a node, fetched at most once per node name."""
        if not node_name:
            return UNKNOWN_ZONE

        async def fetch() -> str:
            node = await self._run_sync(core_api.read_node, node_name)
            zone = zone_from_labels(node.metadata.labels)
            logger.debug("node_zone_resolved", node=node_name, zone=zone)
            return zone

        return await self._zones.get_or_compute(node_name, fetch)
