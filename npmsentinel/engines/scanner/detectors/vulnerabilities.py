"""Known-vulnerability detector backed by ``npm audit``.

A lockfile is generated with ``--package-lock-only --ignore-scripts`` so no
package code runs; ``npm audit --json`` then reports advisories for the
dependency tree.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Union

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from npmsentinel.engines.scanner.sandbox import PackageSandbox
from npmsentinel.exceptions import ToolError, ToolUnavailableError
from npmsentinel.models.findings import Vulnerability

log = structlog.get_logger("npmsentinel.detector.vulnerabilities")

_SEVERITY_MAP = {
    "critical": "CRITICAL",
    "high": "HIGH",
    "moderate": "MEDIUM",
    "medium": "MEDIUM",
    "low": "LOW",
    "info": "LOW",
}

_ADVISORY_ID_RE = re.compile(r"(GHSA(?:-[0-9a-z]{4}){3}|CVE-\d{4}-\d+)", re.IGNORECASE)


class _AuditAdvisory(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    url: str | None = None
    severity: str = "low"
    range: str | None = None


class _AuditEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    severity: str = "low"
    range: str | None = None
    via: list[Union[_AuditAdvisory, str]] = []
    fixAvailable: Union[bool, dict[str, Any]] = False


def parse_audit_report(payload: Any) -> list[Vulnerability]:
    """Decode ``npm audit --json`` (lockfile v2+ report format)."""
    if not isinstance(payload, dict):
        return []
    findings: list[Vulnerability] = []
    for key, raw in (payload.get("vulnerabilities") or {}).items():
        try:
            entry = _AuditEntry.model_validate({"name": key, **raw})
        except (ValidationError, TypeError) as exc:
            log.debug("vulnerabilities.entry_rejected", package=key, error=str(exc))
            continue
        severity = _SEVERITY_MAP.get(entry.severity.lower())
        if severity is None:
            continue

        advisories = [v for v in entry.via if isinstance(v, _AuditAdvisory)]
        if not advisories:
            # Purely transitive entry; the advisory is reported on the source package.
            continue

        fixed_version = None
        if isinstance(entry.fixAvailable, dict):
            fixed_version = entry.fixAvailable.get("version")

        for advisory in advisories:
            advisory_id = None
            if advisory.url:
                match = _ADVISORY_ID_RE.search(advisory.url)
                advisory_id = match.group(1) if match else None
            findings.append(
                Vulnerability(
                    severity=_SEVERITY_MAP.get(advisory.severity.lower(), severity),
                    title=advisory.title or f"Vulnerable dependency {entry.name}",
                    description=advisory.url or "",
                    affected_package=f"{entry.name}@{advisory.range or entry.range or '*'}",
                    cve=advisory_id,
                    fixed_version=fixed_version,
                )
            )
    return findings


class VulnerabilityDetector:
    name = "vulnerabilities"

    async def scan(self, sandbox: PackageSandbox, extract_dir: Path) -> list[Vulnerability]:
        try:
            await sandbox.run_tool(
                [
                    "npm",
                    "install",
                    "--package-lock-only",
                    "--ignore-scripts",
                    "--no-audit",
                    "--no-fund",
                ],
                cwd=extract_dir,
            )
            # npm audit exits 1 when it finds anything.
            output = await sandbox.run_tool(
                ["npm", "audit", "--json"], cwd=extract_dir, ok_codes=(0, 1)
            )
        except ToolUnavailableError:
            log.info("vulnerabilities.npm_unavailable")
            return []
        except ToolError as exc:
            log.warning("vulnerabilities.audit_failed", error=str(exc))
            return []

        try:
            payload = json.loads(output) if output.strip() else {}
        except json.JSONDecodeError as exc:
            log.warning("vulnerabilities.unparseable_output", error=str(exc))
            return []
        return parse_audit_report(payload)
