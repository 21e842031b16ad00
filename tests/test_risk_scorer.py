"""Tests for the risk scorer (pure, no I/O)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from npmsentinel.engines.risk.scorer import (
    compare_levels,
    highest_severity,
    level_for,
    rule_multiplier,
    score,
    secret_multiplier,
    should_report,
)
from npmsentinel.models.findings import CodeIssue, MetadataIssue, SecretFinding, Vulnerability
from npmsentinel.models.scan import RiskLevel, RiskScore


def _vuln(severity: str) -> Vulnerability:
    return Vulnerability(
        severity=severity, title="t", affected_package="dep@<1.0.0", description="d"
    )


def _code(severity: str, rule: str) -> CodeIssue:
    return CodeIssue(severity=severity, rule=rule, message="m", file="/index.js", line=1)


def _secret(confidence: str, type_: str) -> SecretFinding:
    return SecretFinding(
        type=type_, file="/index.js", line=1, match="AKIA****1234", confidence=confidence
    )


def _meta(severity: str, type_: str = "missing-repository") -> MetadataIssue:
    return MetadataIssue(type=type_, severity=severity, message="m")


class TestScenarios:
    def test_no_findings_is_low(self):
        risk = score([], [], [], [])
        assert risk.score == 0
        assert risk.overall is RiskLevel.LOW
        assert not should_report(risk)

    def test_single_critical_vulnerability_is_high_and_reported(self):
        risk = score([_vuln("CRITICAL")], [], [], [])
        assert risk.score == 40
        assert risk.overall is RiskLevel.HIGH
        assert should_report(risk)

    def test_eval_usage_plus_aws_key(self):
        # 5 * 2.0 + 25 * 2.5 = 72.5
        risk = score([], [_code("MEDIUM", "eval-usage")], [_secret("HIGH", "AWS Access Key")], [])
        assert risk.score == pytest.approx(72.5)
        assert risk.overall is RiskLevel.HIGH
        assert should_report(risk)

    def test_metadata_only_never_reported(self):
        risk = score(
            [],
            [],
            [],
            [
                _meta("HIGH", "install-scripts"),
                _meta("MEDIUM"),
                _meta("LOW", "missing-description"),
            ],
        )
        assert risk.score == 16
        assert risk.overall is RiskLevel.MEDIUM
        assert not should_report(risk)

    def test_medium_with_secret_is_reported(self):
        risk = score([], [], [_secret("MEDIUM", "JWT Token")], [_meta("MEDIUM")])
        assert risk.score == 15
        assert risk.overall is RiskLevel.MEDIUM
        assert should_report(risk)

    def test_critical_threshold(self):
        risk = score([_vuln("CRITICAL"), _vuln("CRITICAL")], [], [], [])
        assert risk.score == 80
        assert risk.overall is RiskLevel.CRITICAL

    def test_counts(self):
        risk = score(
            [_vuln("LOW")],
            [_code("LOW", "env-access"), _code("HIGH", "crypto-mining")],
            [],
            [_meta("LOW")],
        )
        assert (risk.vulnerabilities, risk.code_issues, risk.secrets, risk.metadata_issues) == (
            1,
            2,
            0,
            1,
        )


class TestProperties:
    def test_deterministic(self):
        args = (
            [_vuln("HIGH")],
            [_code("HIGH", "child-process")],
            [_secret("LOW", "Generic Secret")],
            [_meta("LOW")],
        )
        assert score(*args) == score(*args)

    def test_adding_critical_vulnerability_never_lowers_level(self):
        base_inputs = [
            ([], [], [], []),
            ([_vuln("LOW")], [_code("MEDIUM", "obfuscation")], [], [_meta("MEDIUM")]),
            ([_vuln("CRITICAL")] * 2, [], [], []),
        ]
        for vulns, code, secrets, meta in base_inputs:
            before = score(vulns, code, secrets, meta)
            after = score(vulns + [_vuln("CRITICAL")], code, secrets, meta)
            assert after.score > before.score
            assert compare_levels(after.overall, before.overall) >= 0

    def test_inputs_not_mutated(self):
        vulns = [_vuln("HIGH")]
        score(vulns, [], [], [])
        assert len(vulns) == 1


class TestMultipliers:
    @pytest.mark.parametrize(
        "rule, expected",
        [
            ("eval-usage", 2.0),
            ("javascript.lang.security.child-process-exec", 2.0),
            ("install-scripts", 2.0),
            ("network-request", 1.5),
            ("obfuscation", 1.5),
            ("env-access", 1.0),
            ("something-else", 1.0),
        ],
    )
    def test_rule_multiplier(self, rule, expected):
        assert rule_multiplier(rule) == expected

    @pytest.mark.parametrize(
        "secret_type, expected",
        [
            ("NPM Token", 2.5),
            ("Private Key", 2.5),
            ("Stripe Secret Key", 2.0),
            ("Generic Secret", 1.0),
            ("npm token", 1.0),
        ],
    )
    def test_secret_multiplier_is_exact(self, secret_type, expected):
        assert secret_multiplier(secret_type) == expected


class TestLevels:
    @pytest.mark.parametrize(
        "total, level",
        [
            (0, RiskLevel.LOW),
            (14.9, RiskLevel.LOW),
            (15, RiskLevel.MEDIUM),
            (39.9, RiskLevel.MEDIUM),
            (40, RiskLevel.HIGH),
            (79.9, RiskLevel.HIGH),
            (80, RiskLevel.CRITICAL),
        ],
    )
    def test_level_for(self, total, level):
        assert level_for(total) is level

    def test_should_report_medium_without_backing(self):
        risk = RiskScore(
            overall=RiskLevel.MEDIUM,
            score=20,
            vulnerabilities=0,
            code_issues=4,
            secrets=0,
            metadata_issues=0,
        )
        assert not should_report(risk)


def test_highest_severity():
    assert highest_severity([]) == "NONE"
    assert highest_severity(["LOW", "MEDIUM"]) == "MEDIUM"
    assert highest_severity([_vuln("CRITICAL").severity, "LOW"]) == "CRITICAL"


def test_unknown_severity_rejected():
    with pytest.raises(ValidationError):
        _code("SEVERE", "eval-usage")


def test_severity_is_case_insensitive():
    assert _vuln("critical").severity.value == "CRITICAL"
