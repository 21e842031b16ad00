"""Runtime settings, read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_FEED_URL = "https://replicate.npmjs.com/registry/_changes"
DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
USER_AGENT = "npmsentinel/0.1 (+security scanner)"


def _env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


@dataclass(frozen=True)
class Settings:
    """All tunables in one place; scoring constants are deliberately absent."""

    state_dir: Path = Path("data")
    work_dir: Path = Path("temp")
    feed_url: str = DEFAULT_FEED_URL
    registry_url: str = DEFAULT_REGISTRY_URL
    feed_page_size: int = 10_000
    max_packages_per_run: int = 10_000
    max_tarball_bytes: int = 100 * 1024 * 1024
    tool_timeout: float = 120.0
    http_timeout: float = 30.0
    discover_interval: float = 300.0
    scan_interval: float = 1800.0
    github_token: str | None = None
    github_repository: str | None = None

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            state_dir=Path(os.environ.get("NPMSENTINEL_STATE_DIR", "data")),
            work_dir=Path(os.environ.get("NPMSENTINEL_WORK_DIR", "temp")),
            feed_url=os.environ.get("NPMSENTINEL_FEED_URL", DEFAULT_FEED_URL),
            registry_url=os.environ.get("NPMSENTINEL_REGISTRY_URL", DEFAULT_REGISTRY_URL),
            feed_page_size=_env_int("NPMSENTINEL_FEED_PAGE_SIZE", 10_000),
            max_packages_per_run=_env_int("NPMSENTINEL_MAX_PACKAGES_PER_RUN", 10_000),
            max_tarball_bytes=_env_int("NPMSENTINEL_MAX_TARBALL_BYTES", 100 * 1024 * 1024),
            tool_timeout=_env_float("NPMSENTINEL_TOOL_TIMEOUT", 120),
            http_timeout=_env_float("NPMSENTINEL_HTTP_TIMEOUT", 30),
            discover_interval=_env_float("NPMSENTINEL_DISCOVER_INTERVAL", 300),
            scan_interval=_env_float("NPMSENTINEL_SCAN_INTERVAL", 1800),
            github_token=os.environ.get("GITHUB_TOKEN") or None,
            github_repository=os.environ.get("GITHUB_REPOSITORY") or None,
        )
