"""Secret detector: trufflehog when installed, plus built-in regex patterns."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path

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
from npmsentinel.models.findings import SecretFinding, Severity

log = structlog.get_logger("npmsentinel.detector.secrets")


@dataclass(frozen=True)
class SecretPattern:
    name: str
    pattern: re.Pattern[str]
    confidence: Severity


SECRET_PATTERNS: tuple[SecretPattern, ...] = (
    SecretPattern("AWS Access Key", re.compile(r"AKIA[0-9A-Z]{16}", re.I), Severity.HIGH),
    SecretPattern(
        "GitHub Token", re.compile(r"gh[pousr]_[A-Za-z0-9_]{36,251}", re.I), Severity.HIGH
    ),
    SecretPattern("Google API Key", re.compile(r"AIza[0-9A-Za-z\-_]{35}", re.I), Severity.HIGH),
    SecretPattern(
        "Slack Token", re.compile(r"xox[baprs]-([0-9a-zA-Z]{10,48})", re.I), Severity.HIGH
    ),
    SecretPattern(
        "JWT Token",
        re.compile(r"eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*", re.I),
        Severity.MEDIUM,
    ),
    SecretPattern(
        "Discord Bot Token",
        re.compile(r"[MN][A-Za-z\d]{23}\.[\w-]{6}\.[\w-]{27}", re.I),
        Severity.HIGH,
    ),
    SecretPattern("Stripe Secret Key", re.compile(r"sk_live_[0-9a-zA-Z]{24}", re.I), Severity.HIGH),
    SecretPattern("NPM Token", re.compile(r"npm_[A-Za-z0-9]{36}", re.I), Severity.HIGH),
    SecretPattern(
        "Private Key", re.compile(r"-----BEGIN[A-Z ]+PRIVATE KEY-----", re.I), Severity.HIGH
    ),
    SecretPattern(
        "Database URL",
        re.compile(r"(mongodb|mysql|postgres)://[^\s'\"]+", re.I),
        Severity.MEDIUM,
    ),
    SecretPattern(
        "Generic Secret",
        re.compile(r"(secret|password|key|token)['\"]?\s*[:=]\s*['\"]?[A-Za-z0-9_-]{20,}", re.I),
        Severity.LOW,
    ),
)

FALSE_POSITIVE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"example|sample|test|demo|placeholder|fake|mock", re.I),
    re.compile(r"your_key_here|insert_key|api_key_here", re.I),
    re.compile(r"\$\{.*\}|\{\{.*\}\}|%.*%"),
    re.compile(r"console\.log|logger\.|debug", re.I),
)

TEXT_SUFFIXES = frozenset(
    {".js", ".ts", ".json", ".md", ".txt", ".env", ".yml", ".yaml", ".xml", ".config"}
)
BINARY_SUFFIXES = frozenset({".jpg", ".png", ".gif", ".pdf", ".zip", ".tar", ".gz"})


def should_scan_file(path: Path) -> bool:
    suffix = path.suffix.lower()
    if suffix in BINARY_SUFFIXES:
        return False
    if suffix in TEXT_SUFFIXES:
        return True
    return ".min." not in path.name and ".bundle." not in path.name


def is_false_positive(secret: str, context: str) -> bool:
    text = f"{context} {secret}"
    return any(p.search(text) for p in FALSE_POSITIVE_PATTERNS)


def mask_secret(secret: str) -> str:
    """Keep the first and last four characters; never echo a full secret."""
    if len(secret) <= 8:
        return "*" * len(secret)
    return secret[:4] + "*" * min(len(secret) - 8, 10) + secret[-4:]


def scan_patterns(root: Path) -> list[SecretFinding]:
    findings: list[SecretFinding] = []
    for path in walk_files(root):
        if not should_scan_file(path):
            continue
        content = read_text(path)
        if content is None:
            continue
        lines = content.split("\n")
        rel = relative_name(path, root)
        for rule in SECRET_PATTERNS:
            for match in rule.pattern.finditer(content):
                lineno = line_number(content, match.start())
                context = lines[lineno - 1].strip()
                if is_false_positive(match.group(0), context):
                    continue
                findings.append(
                    SecretFinding(
                        type=rule.name,
                        file=rel,
                        line=lineno,
                        match=mask_secret(match.group(0)),
                        confidence=rule.confidence,
                    )
                )
    return findings


# ── trufflehog ────────────────────────────────────────────────────────────


class _TruffleFilesystem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file: str = "unknown"
    line: int | None = None


class _TruffleRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    DetectorName: str
    Raw: str
    Verified: bool = False
    SourceMetadata: dict = {}

    def filesystem(self) -> _TruffleFilesystem:
        data = self.SourceMetadata.get("Data")
        if not isinstance(data, dict):
            return _TruffleFilesystem()
        data = data.get("Filesystem") or {}
        try:
            return _TruffleFilesystem.model_validate(data)
        except ValidationError:
            return _TruffleFilesystem()


def parse_trufflehog_output(output: str, root: Path) -> list[SecretFinding]:
    """Decode trufflehog's JSON-lines output; bad lines are dropped."""
    findings: list[SecretFinding] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            record = _TruffleRecord.model_validate_json(line)
        except ValidationError as exc:
            log.debug("secrets.trufflehog_line_rejected", error=str(exc))
            continue
        if not record.Raw:
            continue
        fs = record.filesystem()
        findings.append(
            SecretFinding(
                type=record.DetectorName,
                file=relative_name(Path(fs.file), root) if fs.file != "unknown" else fs.file,
                line=fs.line,
                match=mask_secret(record.Raw[:100]),
                confidence=Severity.HIGH if record.Verified else Severity.MEDIUM,
            )
        )
    return findings


class SecretsDetector:
    name = "secrets"

    async def scan(self, sandbox: PackageSandbox, extract_dir: Path) -> list[SecretFinding]:
        findings = await self._run_trufflehog(sandbox, extract_dir)
        findings.extend(await asyncio.to_thread(scan_patterns, extract_dir))
        return findings

    async def _run_trufflehog(
        self, sandbox: PackageSandbox, extract_dir: Path
    ) -> list[SecretFinding]:
        try:
            output = await sandbox.run_tool(
                [
                    "trufflehog",
                    "filesystem",
                    "--json",
                    "--no-update",
                    "--no-verification",
                    str(extract_dir),
                ],
                cwd=extract_dir,
            )
        except ToolUnavailableError:
            log.info("secrets.trufflehog_unavailable")
            return []
        except ToolError as exc:
            log.warning("secrets.trufflehog_failed", error=str(exc))
            return []
        return parse_trufflehog_output(output, extract_dir)
