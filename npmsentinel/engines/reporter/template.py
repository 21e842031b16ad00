"""Markdown rendering of a scan result as a GitHub issue."""

from __future__ import annotations

from npmsentinel.engines.risk.scorer import highest_severity
from npmsentinel.models.findings import Severity, VulnSeverity
from npmsentinel.models.scan import ScanResult

BASE_LABELS = ("security-scan", "auto-generated")

MAX_HIGH_VULNS = 5
MAX_MINOR_VULNS = 10
MAX_OTHER_CODE_ISSUES = 10
MAX_LOW_CONFIDENCE_SECRETS = 5
MAX_CODE_SNIPPET = 100


def issue_title(result: ScanResult) -> str:
    pkg = result.package
    return f"[{result.risk_score.overall.value}] Security scan: {pkg.name}@{pkg.version}"


def issue_labels(result: ScanResult) -> list[str]:
    labels = list(BASE_LABELS)
    labels.append(f"risk-{result.risk_score.overall.value.lower()}")
    if result.vulnerabilities:
        labels.append("vulnerabilities")
    if result.secrets:
        labels.append("secrets")
    if any(c.severity is Severity.HIGH for c in result.code_issues):
        labels.append("code-issues")
    return labels


def _line_suffix(line: int | None) -> str:
    return f" (Line {line})" if line else ""


def issue_body(result: ScanResult) -> str:
    pkg = result.package
    vulns = result.vulnerabilities
    code = result.code_issues
    secrets = result.secrets
    meta = result.metadata_issues

    out: list[str] = ["# Security Scan Report", ""]
    out.append(f"**Package:** `{pkg.name}@{pkg.version}`")
    out.append(f"**Scan Date:** {result.timestamp}")
    out.append(f"**Risk Score:** {result.risk_score.overall.value} ({result.risk_score.score:g})")
    out.append("")
    if pkg.description:
        out += [f"**Description:** {pkg.description}", ""]
    if pkg.repository:
        out += [f"**Repository:** {pkg.repository}", ""]

    out += [
        "## Risk Summary",
        "",
        "| Category | Count | Risk Level |",
        "|----------|-------|------------|",
        f"| Vulnerabilities | {len(vulns)} | {highest_severity(v.severity for v in vulns)} |",
        f"| Code Issues | {len(code)} | {highest_severity(c.severity for c in code)} |",
        f"| Secrets | {len(secrets)} | {highest_severity(s.confidence for s in secrets)} |",
        f"| Metadata Issues | {len(meta)} | {highest_severity(m.severity for m in meta)} |",
        "",
    ]

    if vulns:
        out += [f"## 🔴 Vulnerabilities ({len(vulns)})", ""]
        critical = [v for v in vulns if v.severity is VulnSeverity.CRITICAL]
        high = [v for v in vulns if v.severity is VulnSeverity.HIGH]
        minor = [v for v in vulns if v.severity in (VulnSeverity.MEDIUM, VulnSeverity.LOW)]

        if critical:
            out.append(f"### Critical ({len(critical)})")
            for v in critical:
                out.append(f"- **{v.title}** ({v.cve or 'No CVE'})")
                out.append(f"  - Package: `{v.affected_package}`")
                out.append(f"  - Description: {v.description}")
                if v.fixed_version:
                    out.append(f"  - Fixed in: {v.fixed_version}")
                out.append("")
        if high:
            out.append(f"### High ({len(high)})")
            for v in high[:MAX_HIGH_VULNS]:
                out.append(f"- **{v.title}** ({v.cve or 'No CVE'}) - {v.affected_package}")
            if len(high) > MAX_HIGH_VULNS:
                out.append(
                    f"- ... and {len(high) - MAX_HIGH_VULNS} more high severity issues"
                )
            out.append("")
        if minor:
            out += [
                f"<details><summary>Medium/Low Severity Issues ({len(minor)})</summary>",
                "",
            ]
            for v in minor[:MAX_MINOR_VULNS]:
                out.append(f"- **{v.severity.value}**: {v.title} - {v.affected_package}")
            out += ["", "</details>", ""]

    if code:
        out += [f"## ⚠️ Code Issues ({len(code)})", ""]
        high_issues = [c for c in code if c.severity is Severity.HIGH]
        if high_issues:
            out.append("### High Severity Issues")
            for c in high_issues:
                out.append(f"- **{c.rule}**: {c.message}")
                out.append(f"  - File: `{c.file}`{_line_suffix(c.line)}")
                if c.pattern:
                    out.append(f"  - Code: `{c.pattern[:MAX_CODE_SNIPPET]}`")
                out.append("")
        others = [c for c in code if c.severity is not Severity.HIGH]
        if others:
            out += [f"<details><summary>Other Issues ({len(others)})</summary>", ""]
            for c in others[:MAX_OTHER_CODE_ISSUES]:
                out.append(f"- **{c.severity.value}**: {c.rule} - {c.file}")
            out += ["", "</details>", ""]

    if secrets:
        out += [f"## 🔑 Secrets Found ({len(secrets)})", ""]
        confident = [s for s in secrets if s.confidence is Severity.HIGH]
        if confident:
            out.append("### High Confidence")
            for s in confident:
                out.append(f"- **{s.type}** in `{s.file}`{_line_suffix(s.line)}")
                out.append(f"  - Match: `{s.match}`")
                out.append("")
        rest = [s for s in secrets if s.confidence is not Severity.HIGH]
        if rest:
            out += [f"<details><summary>Lower Confidence Secrets ({len(rest)})</summary>", ""]
            for s in rest[:MAX_LOW_CONFIDENCE_SECRETS]:
                out.append(f"- **{s.confidence.value}**: {s.type} - {s.file}")
            out += ["", "</details>", ""]

    if meta:
        out += [f"## 📊 Metadata Issues ({len(meta)})", ""]
        for m in meta:
            out.append(f"- **{m.severity.value}**: {m.message}")
        out.append("")

    if result.detector_errors:
        out += ["## Detector Errors", ""]
        for name, error in sorted(result.detector_errors.items()):
            out.append(f"- `{name}`: {error}")
        out.append("")

    out += [
        "---",
        "*This issue was automatically generated by npmsentinel*",
        f"*Scan timestamp: {result.timestamp}*",
    ]
    return "\n".join(out)


def render_issue(result: ScanResult) -> tuple[str, str, list[str]]:
    """Return ``(title, body, labels)`` for *result*."""
    return issue_title(result), issue_body(result), issue_labels(result)
