"""Custom exceptions for npmsentinel."""


class NpmSentinelError(Exception):
    """Base exception for all npmsentinel errors."""


class FeedError(NpmSentinelError):
    """Raised when the registry change feed cannot be read."""


class InvalidIdentifierError(NpmSentinelError, ValueError):
    """Raised when a ``name@version`` string cannot be parsed."""

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"invalid package identifier {value!r}: {reason}")


class DownloadError(NpmSentinelError):
    """Raised when a package tarball cannot be downloaded."""


class PackageTooLargeError(DownloadError):
    """Raised when a tarball exceeds the configured size limit."""

    def __init__(self, package_id: str, limit: int):
        self.package_id = package_id
        self.limit = limit
        super().__init__(f"tarball for {package_id} exceeds {limit} bytes")


class ExtractionError(NpmSentinelError):
    """Raised when a tarball cannot be unpacked."""


class ToolUnavailableError(NpmSentinelError):
    """Raised when an external scanning tool is not installed."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"{tool} is not available on PATH")


class ToolError(NpmSentinelError):
    """Raised when an external scanning tool fails or times out."""


class StateCommitError(NpmSentinelError):
    """Raised when scan state cannot be persisted after all retries."""
