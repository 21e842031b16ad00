"""Reporter — GitHub issues for scan results that pass the report threshold."""

from npmsentinel.engines.reporter.github_issues import GitHubIssueReporter
from npmsentinel.engines.reporter.template import render_issue

__all__ = ["GitHubIssueReporter", "render_issue"]
