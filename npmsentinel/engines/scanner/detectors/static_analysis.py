"""Static-analysis detector: semgrep when installed, plus built-in patterns."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from npmsentinel.engines.scanner.detectors.base import (
    line_number,
    read_text,
    relative_name,
    walk_files,
)
from npmsentinel.engines.scanner.sandbox import PackageSandbox
from npmsentinel.exceptions import ToolError, ToolUnavailableError
from npmsentinel.models.findings import CodeIssue, Severity

log = structlog.get_logger("npmsentinel.detector.static_analysis")


@dataclass(frozen=True)
class SuspiciousPattern:
    name: str
    pattern: re.Pattern[str]
    severity: Severity
    message: str


SUSPICIOUS_PATTERNS: tuple[SuspiciousPattern, ...] = (
    SuspiciousPattern(
        "eval-usage",
        re.compile(r"eval\s*\(", re.IGNORECASE),
        Severity.HIGH,
        "Direct eval() usage detected - potential code injection risk",
    ),
    SuspiciousPattern(
        "child-process",
        re.compile(r"child_process|exec\s*\(|spawn\s*\(", re.IGNORECASE),
        Severity.HIGH,
        "Child process execution detected - potential command injection",
    ),
    SuspiciousPattern(
        "network-request",
        re.compile(r"https?://[^\s'\"]+|fetch\s*\(|axios|request\s*\(", re.IGNORECASE),
        Severity.MEDIUM,
        "Network request detected - verify destination",
    ),
    SuspiciousPattern(
        "fs-operations",
        re.compile(r"fs\.(write|unlink|rmdir|rename)|rimraf", re.IGNORECASE),
        Severity.MEDIUM,
        "File system write/delete operations detected",
    ),
    SuspiciousPattern(
        "crypto-mining",
        re.compile(r"crypto-?miner|coinhive|cryptonight|monero", re.IGNORECASE),
        Severity.HIGH,
        "Potential cryptocurrency mining code detected",
    ),
    SuspiciousPattern(
        "obfuscation",
        re.compile(r"\\x[0-9a-f]{2}|\\u[0-9a-f]{4}|atob|btoa|Buffer\.from.*base64", re.IGNORECASE),
        Severity.MEDIUM,
        "Potential code obfuscation detected",
    ),
    SuspiciousPattern(
        "install-scripts",
        re.compile(r"\"(pre|post)install\"\s*:", re.IGNORECASE),
        Severity.HIGH,
        "Package install scripts detected - these run automatically",
    ),
    SuspiciousPattern(
        "env-access",
        re.compile(r"process\.env\.|NODE_ENV|npm_config_", re.IGNORECASE),
        Severity.LOW,
        "Environment variable access detected",
    ),
)

SOURCE_SUFFIXES = (".js", ".cjs", ".mjs", ".ts", ".json")


def scan_patterns(root: Path) -> list[CodeIssue]:
    """Match :data:`SUSPICIOUS_PATTERNS` against source files under *root*."""
    issues: list[CodeIssue] = []
    for path in walk_files(root):
        if not path.name.endswith(SOURCE_SUFFIXES):
            continue
        content = read_text(path)
        if content is None:
            continue
        lines = content.split("\n")
        rel = relative_name(path, root)
        for rule in SUSPICIOUS_PATTERNS:
            for match in rule.pattern.finditer(content):
                lineno = line_number(content, match.start())
                issues.append(
                    CodeIssue(
                        severity=rule.severity,
                        rule=rule.name,
                        message=rule.message,
                        file=rel,
                        line=lineno,
                        pattern=lines[lineno - 1].strip()[:200],
                    )
                )
    return issues


# ── semgrep ───────────────────────────────────────────────────────────────


class _SemgrepPosition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    line: int | None = None


class _SemgrepExtra(BaseModel):
    model_config = ConfigDict(extra="ignore")

    severity: str = "INFO"
    message: str | None = None
    lines: str | None = None


class _SemgrepResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    check_id: str
    path: str
    start: _SemgrepPosition = _SemgrepPosition()
    extra: _SemgrepExtra = _SemgrepExtra()


def map_semgrep_severity(severity: str) -> Severity:
    value = severity.upper()
    if value in ("ERROR", "HIGH", "CRITICAL"):
        return Severity.HIGH
    if value in ("WARNING", "MEDIUM"):
        return Severity.MEDIUM
    return Severity.LOW


def parse_semgrep_output(payload: Any, root: Path) -> list[CodeIssue]:
    if not isinstance(payload, dict):
        return []
    issues: list[CodeIssue] = []
    for raw in payload.get("results") or []:
        try:
            result = _SemgrepResult.model_validate(raw)
        except ValidationError as exc:
            log.debug("static_analysis.semgrep_row_rejected", error=str(exc))
            continue
        issues.append(
            CodeIssue(
                severity=map_semgrep_severity(result.extra.severity),
                rule=result.check_id,
                message=result.extra.message or result.check_id,
                file=relative_name(Path(result.path), root),
                line=result.start.line,
                pattern=result.extra.lines,
            )
        )
    return issues


class StaticAnalysisDetector:
    name = "static_analysis"

    async def scan(self, sandbox: PackageSandbox, extract_dir: Path) -> list[CodeIssue]:
        issues = await self._run_semgrep(sandbox, extract_dir)
        issues.extend(await asyncio.to_thread(scan_patterns, extract_dir))
        return issues

    async def _run_semgrep(self, sandbox: PackageSandbox, extract_dir: Path) -> list[CodeIssue]:
        try:
            output = await sandbox.run_tool(
                [
                    "semgrep",
                    "--config=auto",
                    "--json",
                    "--no-git-ignore",
                    "--timeout=120",
                    "--max-memory=1024",
                    "--metrics=off",
                    str(extract_dir),
                ],
                cwd=extract_dir,
                ok_codes=(0, 1),
            )
        except ToolUnavailableError:
            log.info("static_analysis.semgrep_unavailable")
            return []
        except ToolError as exc:
            log.warning("static_analysis.semgrep_failed", error=str(exc))
            return []

        try:
            payload = json.loads(output)
        except json.JSONDecodeError as exc:
            log.warning("static_analysis.unparseable_output", error=str(exc))
            return []
        return parse_semgrep_output(payload, extract_dir)
