"""
Data models for scrape target discovery.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ScrapeAddress:
    """One reachable endpoint instance (pod) backing a service."""

    name: str
    node: str
    zone: str
    url: str


@dataclass(frozen=True)
class ScrapeTarget:
    """A discovered, scrape-enabled service."""

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    addresses: list[ScrapeAddress] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the target: (namespace, name)."""
        return (self.namespace, self.name)


@dataclass(frozen=True)
class TargetSnapshot:
    """The complete target list produced by one successful discovery cycle.

    Snapshots are never mutated; the orchestrator swaps in a new one.
    """

    targets: tuple[ScrapeTarget, ...] = ()
    taken_at: float = field(default_factory=time.time)

    @classmethod
    def of(cls, targets: list[ScrapeTarget]) -> TargetSnapshot:
        return cls(targets=tuple(targets))

    @property
    def address_count(self) -> int:
        return sum(len(target.addresses) for target in self.targets)

    def __len__(self) -> int:
        return len(self.targets)
