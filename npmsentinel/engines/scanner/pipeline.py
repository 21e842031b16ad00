"""ScanPipeline — download, unpack, run detectors and score one package."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from pathlib import Path

import structlog

from npmsentinel.engines.discovery.registry_client import RegistryClient
from npmsentinel.engines.risk import scorer
from npmsentinel.engines.scanner.detectors import (
    SecretsDetector,
    StaticAnalysisDetector,
    VulnerabilityDetector,
    analyze_metadata,
)
from npmsentinel.engines.scanner.detectors.base import Detector
from npmsentinel.engines.scanner.sandbox import PackageSandbox
from npmsentinel.models.package import PackageInfo
from npmsentinel.models.scan import ScanResult

log = structlog.get_logger("npmsentinel.scanner")


def default_detectors() -> list[Detector]:
    return [VulnerabilityDetector(), StaticAnalysisDetector(), SecretsDetector()]


class ScanPipeline:
    """Runs every detector against one package inside a fresh sandbox.

    Download and extraction errors propagate so the coordinator can keep the
    package pending.  A detector that raises contributes no findings; its
    error is recorded on :attr:`ScanResult.detector_errors`.
    """

    def __init__(
        self,
        registry: RegistryClient,
        work_dir: Path,
        *,
        max_tarball_bytes: int = 100 * 1024 * 1024,
        tool_timeout: float = 120.0,
        detectors: Sequence[Detector] | None = None,
    ) -> None:
        self._registry = registry
        self._work_dir = Path(work_dir)
        self._max_tarball_bytes = max_tarball_bytes
        self._tool_timeout = tool_timeout
        self._detectors = list(detectors) if detectors is not None else default_detectors()

    async def scan(self, info: PackageInfo) -> ScanResult:
        log.info("scan.started", package=info.package_id)
        async with PackageSandbox(
            self._registry,
            self._work_dir,
            max_tarball_bytes=self._max_tarball_bytes,
            tool_timeout=self._tool_timeout,
        ) as sandbox:
            extract_dir = await sandbox.prepare(info)
            info = await asyncio.to_thread(_enrich_from_manifest, info, extract_dir)

            results = await asyncio.gather(
                *(d.scan(sandbox, extract_dir) for d in self._detectors),
                return_exceptions=True,
            )

        findings: dict[str, list] = {}
        errors: dict[str, str] = {}
        for detector, outcome in zip(self._detectors, results):
            if isinstance(outcome, BaseException):
                log.error(
                    "scan.detector_failed",
                    package=info.package_id,
                    detector=detector.name,
                    error=f"{type(outcome).__name__}: {outcome}",
                )
                errors[detector.name] = f"{type(outcome).__name__}: {outcome}"
                findings[detector.name] = []
            else:
                findings[detector.name] = outcome

        vulnerabilities = findings.get(VulnerabilityDetector.name, [])
        code_issues = findings.get(StaticAnalysisDetector.name, [])
        secrets = findings.get(SecretsDetector.name, [])
        metadata_issues = analyze_metadata(info)

        risk = scorer.score(vulnerabilities, code_issues, secrets, metadata_issues)
        log.info(
            "scan.completed",
            package=info.package_id,
            risk=risk.overall.value,
            score=risk.score,
            vulnerabilities=risk.vulnerabilities,
            code_issues=risk.code_issues,
            secrets=risk.secrets,
            metadata_issues=risk.metadata_issues,
        )
        return ScanResult(
            package=info,
            vulnerabilities=vulnerabilities,
            code_issues=code_issues,
            secrets=secrets,
            metadata_issues=metadata_issues,
            risk_score=risk,
            detector_errors=errors,
        )


def _enrich_from_manifest(info: PackageInfo, extract_dir: Path) -> PackageInfo:
    """Fill metadata gaps (pending scans carry name and version only)."""
    try:
        manifest = json.loads((extract_dir / "package.json").read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.debug("scan.manifest_unreadable", package=info.package_id, error=str(exc))
        return info
    if not isinstance(manifest, dict):
        return info
    return info.fill_from_manifest(manifest)
