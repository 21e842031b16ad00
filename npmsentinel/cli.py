"""CLI entry point: npmsentinel.

Subcommands:
    npmsentinel discover                  # One discovery run over the change feed
    npmsentinel scan lodash [-V 4.17.21]  # Scan one package on demand
    npmsentinel scan-pending              # Scan everything discovered but not scanned
    npmsentinel status                    # Cursor and set sizes
    npmsentinel run                       # Long-running discovery + scan scheduler
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass

import click
import structlog

from npmsentinel.core.config import Settings
from npmsentinel.core.logging import setup_logging
from npmsentinel.engines.discovery.coordinator import DiscoveryCoordinator
from npmsentinel.engines.discovery.feed_client import ChangesFeedClient
from npmsentinel.engines.discovery.models import DiscoveryResult
from npmsentinel.engines.discovery.registry_client import RegistryClient
from npmsentinel.engines.reporter.github_issues import GitHubIssueReporter
from npmsentinel.engines.scanner.coordinator import ScanCoordinator
from npmsentinel.engines.scanner.pipeline import ScanPipeline
from npmsentinel.exceptions import StateCommitError
from npmsentinel.models.scan import ScanResult
from npmsentinel.scheduler import create_scheduler
from npmsentinel.state.store import DiscoveryStore

log = structlog.get_logger("npmsentinel.cli")


@dataclass
class Runtime:
    settings: Settings
    store: DiscoveryStore
    discovery: DiscoveryCoordinator
    scanner: ScanCoordinator


@asynccontextmanager
async def open_runtime(settings: Settings) -> AsyncIterator[Runtime]:
    """Wire clients and coordinators from *settings*; close clients on exit."""
    async with AsyncExitStack() as stack:
        feed = await stack.enter_async_context(
            ChangesFeedClient(settings.feed_url, timeout=settings.http_timeout)
        )
        registry = await stack.enter_async_context(
            RegistryClient(settings.registry_url, timeout=settings.http_timeout)
        )
        reporter = GitHubIssueReporter.from_settings(
            settings.github_token, settings.github_repository, timeout=settings.http_timeout
        )
        if reporter is not None:
            await stack.enter_async_context(reporter)

        store = DiscoveryStore(settings.state_dir)
        pipeline = ScanPipeline(
            registry,
            settings.work_dir,
            max_tarball_bytes=settings.max_tarball_bytes,
            tool_timeout=settings.tool_timeout,
        )
        yield Runtime(
            settings=settings,
            store=store,
            discovery=DiscoveryCoordinator(
                store,
                feed,
                registry,
                max_packages_per_run=settings.max_packages_per_run,
                feed_page_size=settings.feed_page_size,
            ),
            scanner=ScanCoordinator(
                store,
                pipeline,
                registry,
                reporter=reporter,
                max_packages_per_run=settings.max_packages_per_run,
            ),
        )


def _print_result(result: ScanResult) -> None:
    risk = result.risk_score
    click.echo(f"Package: {result.package.package_id}")
    click.echo(f"Risk: {risk.overall.value} (score {risk.score:g})")
    click.echo(f"  Vulnerabilities: {risk.vulnerabilities}")
    click.echo(f"  Code issues: {risk.code_issues}")
    click.echo(f"  Secrets: {risk.secrets}")
    click.echo(f"  Metadata issues: {risk.metadata_issues}")
    for name, error in sorted(result.detector_errors.items()):
        click.echo(f"  [!] {name} failed: {error}")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """npmsentinel: security scanning for newly published npm packages."""
    setup_logging(verbose=verbose)
    ctx.obj = Settings.from_env()


@main.command("discover")
@click.pass_obj
def discover(settings: Settings) -> None:
    """Discover new packages from the registry change feed."""

    async def _run() -> DiscoveryResult:
        async with open_runtime(settings) as rt:
            result = await rt.discovery.run()
        click.echo(f"Cursor: {result.cursor_before} -> {result.cursor_after}")
        click.echo(f"Entries seen: {result.entries_seen}")
        click.echo(f"Discovered: {len(result.discovered)}")
        for reason, count in sorted(result.skipped.items()):
            click.echo(f"  skipped {reason}: {count}")
        return result

    result = asyncio.run(_run())
    if not result.committed:
        click.echo(f"Error: discovery not committed: {result.errors[-1]}", err=True)
        sys.exit(1)


@main.command("scan")
@click.argument("package")
@click.option("-V", "--version", "version", default=None, help="Expected version (default: latest)")
@click.pass_obj
def scan(settings: Settings, package: str, version: str | None) -> None:
    """Scan one package by name."""

    async def _run() -> ScanResult | None:
        async with open_runtime(settings) as rt:
            return await rt.scanner.scan_one(package, version)

    result = asyncio.run(_run())
    if result is None:
        click.echo(f"Error: could not scan {package}", err=True)
        sys.exit(1)
    _print_result(result)


@main.command("scan-pending")
@click.pass_obj
def scan_pending(settings: Settings) -> None:
    """Scan every discovered package that has not been scanned yet."""

    async def _run():
        async with open_runtime(settings) as rt:
            return await rt.scanner.scan_pending()

    try:
        batch = asyncio.run(_run())
    except StateCommitError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    click.echo(f"Pending: {batch.pending}")
    click.echo(f"Scanned: {len(batch.scanned)}")
    click.echo(f"Reported: {len(batch.reported)}")
    click.echo(f"Failed: {len(batch.failed)}")
    for package_id, error in sorted(batch.failed.items()):
        click.echo(f"  {package_id}: {error}")


@main.command("status")
@click.pass_obj
def status(settings: Settings) -> None:
    """Show the feed cursor and state set sizes."""
    stats = asyncio.run(DiscoveryStore(settings.state_dir).stats())
    cursor = stats.cursor if stats.cursor is not None else "(not initialised)"
    click.echo(f"State dir: {settings.state_dir}")
    click.echo(f"Cursor: {cursor}")
    click.echo(f"Discovered: {stats.discovered}")
    click.echo(f"Scanned: {stats.scanned}")
    click.echo(f"Pending: {stats.pending}")


@main.command("run")
@click.pass_obj
def run(settings: Settings) -> None:
    """Run discovery and scanning on their intervals until interrupted."""

    async def _run() -> None:
        async with open_runtime(settings) as rt:
            scheduler = create_scheduler(
                rt.discovery,
                rt.scanner,
                discover_interval=settings.discover_interval,
                scan_interval=settings.scan_interval,
            )
            await scheduler.run_forever()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        log.info("cli.interrupted")


if __name__ == "__main__":
    main()
