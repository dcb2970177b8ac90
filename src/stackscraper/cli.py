from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Sequence

import structlog

from stackscraper.config import Settings, load_settings
from stackscraper.core.errors import (
    ConfigurationError,
    ExitCode,
    ParseError,
    StackscraperError,
    format_error_message,
    main_with_error_handling,
)
from stackscraper.discovery import KubernetesDiscovery
from stackscraper.exposition import Metric, parse
from stackscraper.logging import configure_logging
from stackscraper.orchestrator import Orchestrator
from stackscraper.publisher import Publisher, StackdriverBackend, discover_project_id
from stackscraper.scraper import Scraper, forwardable

logger = structlog.get_logger()

_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _format_metric(metric: Metric) -> str:
    labels = ",".join(f'{key}="{value}"' for key, value in metric.labels.items())
    sample = f"{metric.name}{{{labels}}}" if labels else metric.name
    return f"{metric.type.value}\t{sample} {metric.value!r}"


def _read_payload(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    try:
        return Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(f"{path} is not valid UTF-8: {exc.reason} at byte {exc.start}") from exc
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read {path}: {exc.strerror or exc}",
            details={"path": path},
        ) from exc


@main_with_error_handling()
def _parse_command(path: str, show_all: bool) -> int:
    try:
        metrics = parse(_read_payload(path))
    except StackscraperError as exc:
        print(f"error: {format_error_message(exc)}", file=sys.stderr)
        return exc.exit_code

    for metric in metrics if show_all else forwardable(metrics):
        print(_format_metric(metric))
    return ExitCode.SUCCESS


def _build_orchestrator(
    settings: Settings, project_id: str
) -> tuple[Orchestrator, Scraper, StackdriverBackend]:
    discovery = KubernetesDiscovery(
        namespace=settings.scrape_namespace,
        kubeconfig=settings.kubeconfig,
        context=settings.kube_context,
    )
    scraper = Scraper(timeout=settings.scrape_timeout_seconds)
    backend = StackdriverBackend(project_id)
    publisher = Publisher(
        backend,
        project_id=project_id,
        cluster_name=settings.cluster_name,
        poll_interval=settings.descriptor_poll_interval_seconds,
        poll_attempts=settings.descriptor_poll_attempts,
        poll_timeout=settings.descriptor_poll_timeout_seconds,
    )
    orchestrator = Orchestrator(
        discovery,
        scraper,
        publisher,
        discovery_interval=settings.discovery_interval_seconds,
        scrape_interval=settings.scrape_interval_seconds,
        concurrency=settings.scrape_concurrency,
    )
    return orchestrator, scraper, backend


def _handle_signal(orchestrator: Orchestrator, sig: signal.Signals) -> None:
    logger.info("shutdown_signal_received", signal=sig.name)
    orchestrator.stop()


async def _run_agent(settings: Settings, *, once: bool) -> int:
    project_id = discover_project_id(settings.stackdriver_project)
    orchestrator, scraper, backend = _build_orchestrator(settings, project_id)
    logger.info(
        "agent_starting",
        cluster=settings.cluster_name,
        project=project_id,
        mode="once" if once else "run",
    )

    try:
        if once:
            for outcome in await orchestrator.run_once():
                if not outcome.ok:
                    error = outcome.error
                    if isinstance(error, StackscraperError):
                        return error.exit_code
                    return ExitCode.UNKNOWN_ERROR
            return ExitCode.SUCCESS

        loop = asyncio.get_running_loop()
        for sig in _SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, _handle_signal, orchestrator, sig)
        try:
            return await orchestrator.run()
        finally:
            for sig in _SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(sig)
    finally:
        await scraper.aclose()
        await backend.aclose()


@main_with_error_handling()
def _agent_command(once: bool) -> int:
    try:
        settings = load_settings()
    except ConfigurationError:
        configure_logging()
        raise

    configure_logging(settings.log_level, settings.log_format)
    return asyncio.run(_run_agent(settings, once=once))


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="stackscraper",
        description="Forward Prometheus metrics from Kubernetes services to Google Cloud Monitoring",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run the agent until terminated (default)")
    subparsers.add_parser("once", help="Run one discovery and one scrape/publish cycle")

    parse_parser = subparsers.add_parser(
        "parse", help="Parse an exposition file and print the metrics that would be forwarded"
    )
    parse_parser.add_argument("file", help="Path to a metrics payload, or - for stdin")
    parse_parser.add_argument(
        "--all", dest="show_all", action="store_true", help="Include counters, histograms and summaries"
    )

    args = parser.parse_args(argv)

    if args.command == "parse":
        return _parse_command(args.file, args.show_all)

    return _agent_command(once=args.command == "once")


if __name__ == "__main__":
    raise SystemExit(main())
