"""Risk score and composed scan result."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from npmsentinel.models.findings import CodeIssue, MetadataIssue, SecretFinding, Vulnerability
from npmsentinel.models.package import PackageInfo


class RiskLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True)
class RiskScore:
    """Derived per scan; never accumulated across scans of the same package."""

    overall: RiskLevel
    score: float
    vulnerabilities: int
    code_issues: int
    secrets: int
    metadata_issues: int


@dataclass
class ScanResult:
    """Everything the reporter needs about one scanned package."""

    package: PackageInfo
    vulnerabilities: list[Vulnerability]
    code_issues: list[CodeIssue]
    secrets: list[SecretFinding]
    metadata_issues: list[MetadataIssue]
    risk_score: RiskScore
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    detector_errors: dict[str, str] = field(default_factory=dict)
