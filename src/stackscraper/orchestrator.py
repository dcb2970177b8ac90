"""
Periodic discover/scrape orchestration.

Two cycles run on independent fixed-rate schedules and share one target
snapshot:

- discover: resolves scrape targets and swaps in a new snapshot. Failures
  are logged and the previous snapshot is kept.
- scrape: starts after the first successful discovery; scrapes every target
  of the current snapshot and, only if all of them succeeded, publishes every
  result. Failures are fatal: the orchestrator stops and the process exits
  non-zero so that the cluster restarts it.

How a failure is treated is decided by TASK_POLICIES, and every cycle
returns a CycleOutcome regardless of success.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import structlog

from stackscraper.core.errors import ExitCode, StackscraperError
from stackscraper.core.tasks import gather_fail_fast
from stackscraper.discovery.models import ScrapeTarget, TargetSnapshot
from stackscraper.scraper import ScrapeResult

logger = structlog.get_logger()

DISCOVER = "discover"
SCRAPE = "scrape"


@dataclass(frozen=True)
class TaskPolicy:
    """Error handling policy of a periodic task."""

    fatal: bool


TASK_POLICIES: Mapping[str, TaskPolicy] = {
    DISCOVER: TaskPolicy(fatal=False),
    SCRAPE: TaskPolicy(fatal=True),
}


@dataclass(frozen=True)
class CycleOutcome:
    """Result of one cycle of a periodic task."""

    task: str
    ok: bool
    fatal: bool = False
    error: BaseException | None = None
    duration_seconds: float = 0.0


class TargetResolver(Protocol):
    async def resolve_targets(self) -> list[ScrapeTarget]: ...


class TargetScraper(Protocol):
    async def scrape(self, target: ScrapeTarget) -> list[ScrapeResult]: ...


class ResultPublisher(Protocol):
    async def publish(self, result: ScrapeResult) -> None: ...


class Orchestrator:
    """Drive the discover and scrape cycles."""

    def __init__(
        self,
        resolver: TargetResolver,
        scraper: TargetScraper,
        publisher: ResultPublisher,
        *,
        discovery_interval: float = 60.0,
        scrape_interval: float = 15.0,
        concurrency: int = 16,
        policies: Mapping[str, TaskPolicy] = TASK_POLICIES,
    ) -> None:
        self._resolver = resolver
        self._scraper = scraper
        self._publisher = publisher
        self._discovery_interval = discovery_interval
        self._scrape_interval = scrape_interval
        self._concurrency = max(1, concurrency)
        self._policies = policies

        self._snapshot: TargetSnapshot | None = None
        self._discovered = asyncio.Event()
        self._stopping = asyncio.Event()
        self._fatal: CycleOutcome | None = None

    @property
    def snapshot(self) -> TargetSnapshot:
        """The current target snapshot (empty before the first discovery)."""
        return self._snapshot or TargetSnapshot()

    @property
    def has_discovered(self) -> bool:
        return self._discovered.is_set()

    @property
    def fatal_outcome(self) -> CycleOutcome | None:
        return self._fatal

    def stop(self) -> None:
        """Stop scheduling new cycles. A cycle in flight runs to completion."""
        if not self._stopping.is_set():
            logger.info("orchestrator_stopping")
        self._stopping.set()

    async def run(self) -> ExitCode:
        """Run both cycles until stopped or a fatal failure occurs."""
        logger.info(
            "orchestrator_started",
            discovery_interval=self._discovery_interval,
            scrape_interval=self._scrape_interval,
        )
        await asyncio.gather(
            self._schedule(DISCOVER, self._discovery_interval),
            self._schedule_scrape(),
        )

        if self._fatal is not None:
            logger.error("orchestrator_aborted", task=self._fatal.task)
            return ExitCode.SCRAPE_FAILED

        logger.info("orchestrator_stopped")
        return ExitCode.SUCCESS

    async def run_once(self) -> list[CycleOutcome]:
        """Run a single discovery followed by a single scrape cycle."""
        discovered = await self.run_cycle(DISCOVER)
        if not discovered.ok:
            return [discovered]
        return [discovered, await self.run_cycle(SCRAPE)]

    async def run_cycle(self, task: str) -> CycleOutcome:
        """Run one cycle of a task and apply its error policy."""
        runners = {DISCOVER: self._discover, SCRAPE: self._scrape}
        policy = self._policies[task]
        started = time.monotonic()

        try:
            await runners[task]()
        except Exception as exc:
            duration = time.monotonic() - started
            details: dict[str, Any] = exc.details if isinstance(exc, StackscraperError) else {}
            log = logger.bind(task=task, fatal=policy.fatal, error_type=type(exc).__name__, **details)
            if policy.fatal:
                log.error("task_failed", error=str(exc), exc_info=exc)
            else:
                log.warning("task_failed", error=str(exc))
            return CycleOutcome(
                task=task,
                ok=False,
                fatal=policy.fatal,
                error=exc,
                duration_seconds=duration,
            )

        return CycleOutcome(task=task, ok=True, duration_seconds=time.monotonic() - started)

    async def _discover(self) -> None:
        targets = await self._resolver.resolve_targets()
        snapshot = TargetSnapshot.of(targets)
        self._snapshot = snapshot
        self._discovered.set()
        logger.info(
            "discovery_completed",
            targets=len(snapshot),
            addresses=snapshot.address_count,
        )

    async def _scrape(self) -> None:
        snapshot = self.snapshot
        logger.info(
            "scrape_cycle_started",
            targets=len(snapshot),
            snapshot_age_seconds=round(time.time() - snapshot.taken_at, 3),
        )
        semaphore = asyncio.Semaphore(self._concurrency)

        async def scrape_target(target: ScrapeTarget) -> list[ScrapeResult]:
            async with semaphore:
                return await self._scraper.scrape(target)

        async def publish_result(result: ScrapeResult) -> None:
            async with semaphore:
                await self._publisher.publish(result)

        scraped = await gather_fail_fast(scrape_target(target) for target in snapshot.targets)
        results = [result for target_results in scraped for result in target_results]

        # Nothing is published unless every target was scraped
        await gather_fail_fast(publish_result(result) for result in results)

        logger.info(
            "scrape_cycle_completed",
            targets=len(snapshot),
            results=len(results),
            metrics=sum(len(result.metrics) for result in results),
        )

    async def _schedule(self, task: str, interval: float) -> None:
        """Run a task at a fixed rate until stopped."""
        loop = asyncio.get_running_loop()
        next_run = loop.time()

        while not self._stopping.is_set():
            outcome = await self.run_cycle(task)
            if outcome.fatal:
                self._fatal = outcome
                self.stop()
                return

            next_run = max(next_run + interval, loop.time())
            await self._sleep_until(next_run)

    async def _schedule_scrape(self) -> None:
        if await self._wait_for_first_discovery():
            await self._schedule(SCRAPE, self._scrape_interval)

    async def _wait_for_first_discovery(self) -> bool:
        """Block until the first successful discovery; False if stopped first."""
        discovered = asyncio.ensure_future(self._discovered.wait())
        stopping = asyncio.ensure_future(self._stopping.wait())
        try:
            await asyncio.wait({discovered, stopping}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            discovered.cancel()
            stopping.cancel()
        return self._discovered.is_set() and not self._stopping.is_set()

    async def _sleep_until(self, deadline: float) -> None:
        """Sleep until a loop time, waking early when stopped."""
        delay = deadline - asyncio.get_running_loop().time()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
