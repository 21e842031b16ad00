"""Detector finding records.

Every finding kind is a frozen pydantic model so that output decoded from
external tools is validated once, at the boundary.  Severity and confidence
are closed enumerations; strings are matched case-insensitively and anything
outside the enumeration is rejected.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator


class VulnSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Severity(str, Enum):
    """Three-level axis shared by code issues, secret confidence and metadata."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


def _upper(v: object) -> object:
    return v.strip().upper() if isinstance(v, str) else v


class _Finding(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=False)


class Vulnerability(_Finding):
    severity: VulnSeverity
    title: str
    description: str = ""
    affected_package: str
    cve: str | None = None
    fixed_version: str | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, v: object) -> object:
        return _upper(v)


class CodeIssue(_Finding):
    severity: Severity
    rule: str
    message: str
    file: str
    line: int | None = None
    pattern: str | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, v: object) -> object:
        return _upper(v)


class SecretFinding(_Finding):
    type: str
    file: str
    line: int | None = None
    match: str
    confidence: Severity

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalise_confidence(cls, v: object) -> object:
        return _upper(v)


class MetadataIssue(_Finding):
    type: str
    severity: Severity
    message: str

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, v: object) -> object:
        return _upper(v)
