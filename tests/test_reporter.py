"""Tests for issue rendering and GitHubIssueReporter (httpx mocked)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from npmsentinel.core.retry import RetryPolicy
from npmsentinel.engines.reporter.github_issues import (
    GitHubIssueReporter,
    GitHubRetryableError,
)
from npmsentinel.engines.reporter.template import issue_labels, issue_title, render_issue
from npmsentinel.engines.risk.scorer import score
from npmsentinel.exceptions import NpmSentinelError
from npmsentinel.models.findings import CodeIssue, MetadataIssue, SecretFinding, Vulnerability
from npmsentinel.models.package import PackageInfo
from npmsentinel.models.scan import ScanResult

API = "https://api.github.com"
FAST_RETRY = RetryPolicy(
    max_attempts=2, base_delay=0, jitter=False, retry_on=(GitHubRetryableError,)
)


def make_result(
    *, vulns=(), code=(), secrets=(), meta=(), errors=None, **pkg
) -> ScanResult:
    vulns, code, secrets, meta = list(vulns), list(code), list(secrets), list(meta)
    pkg.setdefault("name", "left-pad")
    pkg.setdefault("version", "1.3.0")
    info = PackageInfo(**pkg)
    return ScanResult(
        package=info,
        vulnerabilities=vulns,
        code_issues=code,
        secrets=secrets,
        metadata_issues=meta,
        risk_score=score(vulns, code, secrets, meta),
        timestamp="2026-01-01T00:00:00+00:00",
        detector_errors=errors or {},
    )


def vuln(severity: str, title: str = "Prototype pollution") -> Vulnerability:
    return Vulnerability(severity=severity, title=title, affected_package="dep@<1.2.0")


class TestTemplate:
    def test_title(self):
        result = make_result(vulns=[vuln("CRITICAL")], name="@s/pkg", version="2.0.0")
        assert issue_title(result) == "[HIGH] Security scan: @s/pkg@2.0.0"

    def test_labels_reflect_findings(self):
        result = make_result(
            vulns=[vuln("HIGH")],
            code=[CodeIssue(severity="HIGH", rule="eval-usage", message="eval", file="a.js")],
            secrets=[SecretFinding(type="X", file="a.js", match="****", confidence="LOW")],
        )
        assert issue_labels(result) == [
            "security-scan",
            "auto-generated",
            "risk-high",
            "vulnerabilities",
            "secrets",
            "code-issues",
        ]

    def test_code_issues_label_needs_high_severity(self):
        result = make_result(
            code=[CodeIssue(severity="LOW", rule="x", message="m", file="a.js")]
        )
        assert "code-issues" not in issue_labels(result)
        assert issue_labels(result)[2] == "risk-low"

    def test_body_sections_and_caps(self):
        highs = [vuln("HIGH", f"high-{i}") for i in range(7)]
        result = make_result(
            vulns=[vuln("CRITICAL", "RCE"), *highs, vuln("LOW", "minor")],
            secrets=[
                SecretFinding(
                    type="NPM Token", file="/x/.npmrc", line=3, match="npm_****abcd",
                    confidence="HIGH",
                )
            ],
            meta=[MetadataIssue(type="missing-repository", severity="MEDIUM", message="No repo")],
            errors={"static_analysis": "ToolError: semgrep crashed"},
            description="Pads strings",
        )
        _, body, _ = render_issue(result)

        assert "**Package:** `left-pad@1.3.0`" in body
        assert "**Description:** Pads strings" in body
        assert "| Vulnerabilities | 9 | CRITICAL |" in body
        assert "| Code Issues | 0 | NONE |" in body
        assert "### Critical (1)" in body
        assert "**RCE** (No CVE)" in body
        assert "### High (7)" in body
        assert "high-4" in body
        assert "high-5" not in body
        assert "... and 2 more high severity issues" in body
        assert "Medium/Low Severity Issues (1)" in body
        assert "- **NPM Token** in `/x/.npmrc` (Line 3)" in body
        assert "- **MEDIUM**: No repo" in body
        assert "- `static_analysis`: ToolError: semgrep crashed" in body
        assert "Code Issues (" not in body
        assert body.rstrip().endswith("*Scan timestamp: 2026-01-01T00:00:00+00:00*")


class GitHubStub:
    """Minimal issue search/create/update API."""

    def __init__(self, existing: list[dict] | None = None) -> None:
        self.existing = existing or []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/search/issues":
            return httpx.Response(200, json={"items": self.existing})
        if request.method == "POST":
            return httpx.Response(
                201, json={"number": 7, "html_url": "https://github.com/o/r/issues/7"}
            )
        if request.method == "PATCH":
            number = request.url.path.rsplit("/", 1)[-1]
            url = f"https://github.com/o/r/issues/{number}"
            return httpx.Response(200, json={"number": int(number), "html_url": url})
        return httpx.Response(404)


def _reporter(handler) -> GitHubIssueReporter:
    client = httpx.AsyncClient(base_url=API, transport=httpx.MockTransport(handler))
    return GitHubIssueReporter("tok", "o/r", retry=FAST_RETRY, client=client)


class TestGitHubIssueReporter:
    @pytest.mark.asyncio
    async def test_creates_issue_when_none_exists(self):
        stub = GitHubStub()
        async with _reporter(stub) as reporter:
            url = await reporter.report(make_result(vulns=[vuln("CRITICAL")]))

        assert url == "https://github.com/o/r/issues/7"
        search, create = stub.requests
        assert '"left-pad@1.3.0" in:title' in search.url.params["q"]
        assert "repo:o/r is:issue" in search.url.params["q"]
        payload = json.loads(create.content)
        assert create.url.path == "/repos/o/r/issues"
        assert payload["title"] == "[HIGH] Security scan: left-pad@1.3.0"
        assert "risk-high" in payload["labels"]

    @pytest.mark.asyncio
    async def test_updates_existing_issue_body(self):
        stub = GitHubStub(existing=[{"number": 3}])
        async with _reporter(stub) as reporter:
            url = await reporter.report(make_result(vulns=[vuln("CRITICAL")]))

        assert url == "https://github.com/o/r/issues/3"
        update = stub.requests[-1]
        assert update.method == "PATCH"
        assert update.url.path == "/repos/o/r/issues/3"
        assert set(json.loads(update.content)) == {"body"}

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        stub = GitHubStub()
        calls = {"n": 0}

        def flaky(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(502)
            return stub(request)

        async with _reporter(flaky) as reporter:
            url = await reporter.report(make_result(vulns=[vuln("CRITICAL")]))

        assert url.endswith("/issues/7")
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_rate_limit_waits_then_retries(self):
        stub = GitHubStub()
        calls = {"n": 0}

        def limited(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(
                    403, headers={"X-RateLimit-Remaining": "0", "Retry-After": "12"}
                )
            return stub(request)

        sleep = AsyncMock()
        with patch("npmsentinel.engines.reporter.github_issues.asyncio.sleep", sleep):
            async with _reporter(limited) as reporter:
                await reporter.report(make_result(vulns=[vuln("CRITICAL")]))

        sleep.assert_any_await(12)

    @pytest.mark.asyncio
    async def test_persistent_server_error_raises_project_error(self):
        async with _reporter(lambda request: httpx.Response(503)) as reporter:
            with pytest.raises(NpmSentinelError):
                await reporter.find_existing_issue("left-pad", "1.3.0")

    @pytest.mark.asyncio
    async def test_client_error_propagates(self):
        async with _reporter(lambda request: httpx.Response(401)) as reporter:
            with pytest.raises(httpx.HTTPStatusError):
                await reporter.find_existing_issue("left-pad", "1.3.0")


class TestConstruction:
    def test_from_settings_without_credentials(self):
        assert GitHubIssueReporter.from_settings(None, "o/r") is None
        assert GitHubIssueReporter.from_settings("tok", "") is None

    @pytest.mark.parametrize("repository", ["no-slash", "/repo", "owner/"])
    def test_invalid_repository(self, repository):
        with pytest.raises(ValueError):
            GitHubIssueReporter("tok", repository)
