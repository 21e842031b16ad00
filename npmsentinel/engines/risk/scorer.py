"""Risk aggregation — fold four detector outputs into one level and a report decision.

The weights and thresholds below are fixed constants.  Re-scanning an
unchanged package must produce an identical score, so none of them is read
from configuration.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from npmsentinel.models.findings import (
    CodeIssue,
    MetadataIssue,
    SecretFinding,
    Severity,
    Vulnerability,
    VulnSeverity,
)
from npmsentinel.models.scan import RiskLevel, RiskScore

VULNERABILITY_POINTS: dict[VulnSeverity, float] = {
    VulnSeverity.CRITICAL: 40,
    VulnSeverity.HIGH: 20,
    VulnSeverity.MEDIUM: 8,
    VulnSeverity.LOW: 2,
}

CODE_ISSUE_POINTS: dict[Severity, float] = {
    Severity.HIGH: 15,
    Severity.MEDIUM: 5,
    Severity.LOW: 1,
}

SECRET_POINTS: dict[Severity, float] = {
    Severity.HIGH: 25,
    Severity.MEDIUM: 10,
    Severity.LOW: 3,
}

METADATA_POINTS: dict[Severity, float] = {
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 1,
}

# Rule names are matched by substring so namespaced ids (e.g. semgrep's
# ``javascript.lang.security.eval-usage``) still pick up the multiplier.
HIGH_RISK_RULES = ("eval-usage", "child-process", "install-scripts", "crypto-mining")
MEDIUM_RISK_RULES = ("network-request", "fs-operations", "obfuscation")

# Secret types are matched exactly against the detector's type name.
CRITICAL_SECRET_TYPES = frozenset({"AWS Access Key", "Private Key", "NPM Token", "GitHub Token"})
HIGH_RISK_SECRET_TYPES = frozenset(
    {"Google API Key", "Slack Token", "Discord Bot Token", "Stripe Secret Key"}
)

# (minimum score, level), checked top-down.
LEVEL_THRESHOLDS: tuple[tuple[float, RiskLevel], ...] = (
    (80, RiskLevel.CRITICAL),
    (40, RiskLevel.HIGH),
    (15, RiskLevel.MEDIUM),
)

_LEVEL_ORDER = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


def rule_multiplier(rule: str) -> float:
    if any(pattern in rule for pattern in HIGH_RISK_RULES):
        return 2.0
    if any(pattern in rule for pattern in MEDIUM_RISK_RULES):
        return 1.5
    return 1.0


def secret_multiplier(secret_type: str) -> float:
    if secret_type in CRITICAL_SECRET_TYPES:
        return 2.5
    if secret_type in HIGH_RISK_SECRET_TYPES:
        return 2.0
    return 1.0


def score_vulnerabilities(vulns: Iterable[Vulnerability]) -> float:
    return sum(VULNERABILITY_POINTS[v.severity] for v in vulns)


def score_code_issues(issues: Iterable[CodeIssue]) -> float:
    return sum(CODE_ISSUE_POINTS[i.severity] * rule_multiplier(i.rule) for i in issues)


def score_secrets(secrets: Iterable[SecretFinding]) -> float:
    return sum(SECRET_POINTS[s.confidence] * secret_multiplier(s.type) for s in secrets)


def score_metadata_issues(issues: Iterable[MetadataIssue]) -> float:
    return sum(METADATA_POINTS[i.severity] for i in issues)


def level_for(total: float) -> RiskLevel:
    for threshold, level in LEVEL_THRESHOLDS:
        if total >= threshold:
            return level
    return RiskLevel.LOW


def score(
    vulnerabilities: Sequence[Vulnerability],
    code_issues: Sequence[CodeIssue],
    secrets: Sequence[SecretFinding],
    metadata_issues: Sequence[MetadataIssue],
) -> RiskScore:
    """Compute the weighted score and discrete level for one scan.

    Pure: the inputs are not mutated and the result depends only on them.
    """
    total = (
        score_vulnerabilities(vulnerabilities)
        + score_code_issues(code_issues)
        + score_secrets(secrets)
        + score_metadata_issues(metadata_issues)
    )
    return RiskScore(
        overall=level_for(total),
        score=total,
        vulnerabilities=len(vulnerabilities),
        code_issues=len(code_issues),
        secrets=len(secrets),
        metadata_issues=len(metadata_issues),
    )


def should_report(risk: RiskScore) -> bool:
    """Whether a scan result is worth a tracking issue.

    MEDIUM only qualifies when backed by a vulnerability or a secret, which
    keeps purely cosmetic metadata/code-pattern noise out of the tracker.
    """
    if compare_levels(risk.overall, RiskLevel.HIGH) >= 0:
        return True
    if risk.overall is RiskLevel.MEDIUM:
        return risk.vulnerabilities > 0 or risk.secrets > 0
    return False


def compare_levels(a: RiskLevel, b: RiskLevel) -> int:
    """Negative, zero or positive as *a* is lower than, equal to or above *b*."""
    return _LEVEL_ORDER[a] - _LEVEL_ORDER[b]


def highest_severity(values: Iterable[str]) -> str:
    """Highest of CRITICAL/HIGH/MEDIUM/LOW among *values*, or ``NONE``."""
    present = {str(getattr(v, "value", v)) for v in values}
    for candidate in ("CRITICAL", "HIGH", "MEDIUM", "LOW"):
        if candidate in present:
            return candidate
    return "NONE"
