"""Metadata checks over resolved package information. Pure; no I/O."""

from __future__ import annotations

from npmsentinel.models.findings import MetadataIssue, Severity
from npmsentinel.models.package import PackageInfo

MIN_DESCRIPTION_LENGTH = 10
INSTALL_LIFECYCLE_SCRIPTS = ("preinstall", "install", "postinstall")


def analyze_metadata(info: PackageInfo) -> list[MetadataIssue]:
    issues: list[MetadataIssue] = []

    if not info.description or len(info.description) < MIN_DESCRIPTION_LENGTH:
        issues.append(
            MetadataIssue(
                type="missing-description",
                severity=Severity.LOW,
                message="Package has no or minimal description",
            )
        )

    if not info.repository:
        issues.append(
            MetadataIssue(
                type="missing-repository",
                severity=Severity.MEDIUM,
                message="Package has no repository URL",
            )
        )

    hooks = [name for name in INSTALL_LIFECYCLE_SCRIPTS if name in info.scripts]
    if hooks:
        issues.append(
            MetadataIssue(
                type="install-scripts",
                severity=Severity.HIGH,
                message=(
                    "Package declares install scripts that run automatically: "
                    + ", ".join(hooks)
                ),
            )
        )

    return issues
