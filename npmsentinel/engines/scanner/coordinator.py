"""ScanCoordinator — scan everything discovered but not yet scanned."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

import httpx
import structlog

from npmsentinel.core.outcome import Fail, Skip
from npmsentinel.core.retry import STATE_COMMIT_RETRY, RetryPolicy
from npmsentinel.engines.discovery.registry_client import RegistryClient
from npmsentinel.engines.risk.scorer import should_report
from npmsentinel.engines.scanner.pipeline import ScanPipeline
from npmsentinel.exceptions import InvalidIdentifierError, NpmSentinelError, StateCommitError
from npmsentinel.models.package import PackageIdentifier, PackageInfo
from npmsentinel.models.scan import ScanResult
from npmsentinel.state.store import DiscoveryStore

log = structlog.get_logger("npmsentinel.scanner")

DEFAULT_MAX_PACKAGES_PER_RUN = 10_000


class IssueReporter(Protocol):
    async def report(self, result: ScanResult) -> str | None: ...


@dataclass
class ScanBatchResult:
    """Summary of one ``scan_pending`` run."""

    pending: int = 0
    scanned: list[str] = field(default_factory=list)
    reported: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    results: list[ScanResult] = field(default_factory=list)


class ScanCoordinator:
    """Drives :class:`ScanPipeline` over pending packages and records progress.

    Packages are scanned one at a time.  A package that fails for any reason
    is left out of the scanned set, so the next run picks it up again; only
    a scanned-set commit that outlives its retries fails the whole run.
    """

    def __init__(
        self,
        store: DiscoveryStore,
        pipeline: ScanPipeline,
        registry: RegistryClient,
        *,
        reporter: IssueReporter | None = None,
        max_packages_per_run: int = DEFAULT_MAX_PACKAGES_PER_RUN,
        commit_retry: RetryPolicy = STATE_COMMIT_RETRY,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._registry = registry
        self._reporter = reporter
        self.max_packages_per_run = max_packages_per_run
        self._commit_retry = commit_retry

    async def pending(self) -> list[PackageInfo]:
        """Discovered minus scanned, sorted, bounded by ``max_packages_per_run``."""
        discovered = await self._store.load_discovered()
        scanned = await self._store.load_scanned()

        packages: list[PackageInfo] = []
        for package_id in sorted(discovered - scanned):
            try:
                ident = PackageIdentifier.parse(package_id)
            except InvalidIdentifierError as exc:
                log.warning("scan.malformed_identifier", id=package_id, error=exc.reason)
                continue
            packages.append(PackageInfo.from_identifier(ident))
            if len(packages) >= self.max_packages_per_run:
                break
        return packages

    async def scan_pending(self) -> ScanBatchResult:
        packages = await self.pending()
        batch = ScanBatchResult(pending=len(packages))
        log.info("scan.batch_started", pending=len(packages))

        for info in packages:
            package_id = info.package_id
            try:
                result = await self._pipeline.scan(info)
                if await self._maybe_report(result):
                    batch.reported.append(package_id)
            except Exception as exc:
                # Left out of the scanned set so it is retried next run.
                batch.failed[package_id] = f"{type(exc).__name__}: {exc}"
                log.error("scan.package_failed", package=package_id, error=str(exc))
                continue
            batch.scanned.append(package_id)
            batch.results.append(result)

        await self.mark_scanned(batch.scanned)
        log.info(
            "scan.batch_complete",
            scanned=len(batch.scanned),
            reported=len(batch.reported),
            failed=len(batch.failed),
        )
        return batch

    async def scan_one(self, name: str, version: str | None = None) -> ScanResult | None:
        """Scan one package on demand; scan state is left untouched.

        Only the version currently tagged ``latest`` can be scanned.  A
        requested version that differs from it yields ``None``, as does a
        download, extraction or reporting failure.
        """
        outcome = await self._registry.resolve(name)
        if isinstance(outcome, Skip):
            log.warning("scan.unresolvable", package=name, reason=outcome.reason)
            return None
        if isinstance(outcome, Fail):
            log.error("scan.lookup_failed", package=name, error=outcome.message)
            return None

        info = outcome.value
        if version is not None and version != info.version:
            log.warning(
                "scan.version_mismatch",
                package=name,
                requested=version,
                latest=info.version,
            )
            return None

        try:
            result = await self._pipeline.scan(info)
            await self._maybe_report(result)
        except (NpmSentinelError, httpx.HTTPError) as exc:
            log.error(
                "scan.package_failed",
                package=info.package_id,
                error=f"{type(exc).__name__}: {exc}",
            )
            return None
        return result

    async def mark_scanned(self, ids: Iterable[str]) -> None:
        """Commit *ids* to the scanned set, raising ``StateCommitError`` on final failure."""
        ids = list(ids)
        if not ids:
            return
        try:
            await self._commit_retry.call(
                self._store.commit_scanned, ids, operation="state.commit_scanned"
            )
        except Exception as exc:
            raise StateCommitError(
                f"could not record {len(ids)} scanned packages: {exc}"
            ) from exc

    async def _maybe_report(self, result: ScanResult) -> bool:
        package_id = result.package.package_id
        if not should_report(result.risk_score):
            log.info(
                "scan.below_report_threshold",
                package=package_id,
                risk=result.risk_score.overall.value,
            )
            return False
        if self._reporter is None:
            log.warning("report.disabled", package=package_id)
            return False
        url = await self._reporter.report(result)
        log.info("report.filed", package=package_id, url=url)
        return True
