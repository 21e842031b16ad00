"""Domain models — identifiers, package metadata, findings, scan results."""

from npmsentinel.models.findings import (
    CodeIssue,
    MetadataIssue,
    SecretFinding,
    Severity,
    Vulnerability,
    VulnSeverity,
)
from npmsentinel.models.package import (
    PackageIdentifier,
    PackageInfo,
    format_identifier,
    parse_identifier,
)
from npmsentinel.models.scan import RiskLevel, RiskScore, ScanResult

__all__ = [
    "CodeIssue",
    "MetadataIssue",
    "PackageIdentifier",
    "PackageInfo",
    "RiskLevel",
    "RiskScore",
    "ScanResult",
    "SecretFinding",
    "Severity",
    "VulnSeverity",
    "Vulnerability",
    "format_identifier",
    "parse_identifier",
]
