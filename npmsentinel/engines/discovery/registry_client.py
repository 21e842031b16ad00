"""Async npm registry client — version lookup and tarball download."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import quote

import httpx
import structlog

from npmsentinel.core.config import DEFAULT_REGISTRY_URL
from npmsentinel.core.http import HTTP_RETRY, RetryableHTTPError, build_client, get_with_retry
from npmsentinel.core.outcome import Fail, Outcome, Resolved, Skip
from npmsentinel.core.retry import RetryPolicy
from npmsentinel.exceptions import DownloadError, PackageTooLargeError
from npmsentinel.models.package import PackageInfo, is_valid_version

log = structlog.get_logger("npmsentinel.registry")

_CHUNK_SIZE = 64 * 1024


class RegistryClient:
    """Thin async wrapper around the registry document and tarball endpoints."""

    def __init__(
        self,
        registry_url: str = DEFAULT_REGISTRY_URL,
        *,
        timeout: float = 30.0,
        download_timeout: float = 60.0,
        retry: RetryPolicy = HTTP_RETRY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.registry_url = registry_url.rstrip("/")
        self._retry = retry
        self._download_timeout = download_timeout
        self._client = client or build_client(timeout=timeout)

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── lookup ─────────────────────────────────────────────────────────────

    async def resolve(self, name: str, version: str = "latest") -> Outcome[PackageInfo]:
        """Resolve *name* (and a version or dist-tag) to concrete metadata.

        Returns ``Skip`` for packages the registry no longer serves (404) and
        for documents without a usable version; ``Fail`` for timeouts and
        server errors that outlived the retry policy.
        """
        url = f"{self.registry_url}/{_quote_name(name)}/{quote(version, safe='')}"
        try:
            resp = await get_with_retry(self._client, url, policy=self._retry)
        except (RetryableHTTPError, httpx.HTTPError) as exc:
            return Fail(exc)

        if resp.status_code == 404:
            return Skip(f"not found: {name}@{version}")
        try:
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            return Fail(exc)
        except ValueError:
            return Skip(f"malformed registry document for {name}")

        if not isinstance(data, dict):
            return Skip(f"malformed registry document for {name}")

        info = PackageInfo.from_registry(data)
        if not info.name:
            return Skip(f"registry document for {name} has no name")
        if not is_valid_version(info.version):
            return Skip(f"invalid version for {name}: {info.version!r}")
        return Resolved(info)

    # ── tarballs ───────────────────────────────────────────────────────────

    def tarball_url(self, info: PackageInfo) -> str:
        if info.tarball_url:
            return info.tarball_url
        basename = info.name.rsplit("/", 1)[-1]
        return f"{self.registry_url}/{info.name}/-/{basename}-{info.version}.tgz"

    async def download_tarball(self, info: PackageInfo, dest: Path, max_bytes: int) -> Path:
        """Stream the package tarball to *dest*, enforcing *max_bytes*.

        Raises :class:`PackageTooLargeError` past the limit and
        :class:`DownloadError` for any other failure.  A partial file is
        removed before raising.
        """
        url = self.tarball_url(info)
        written = 0
        try:
            async with self._client.stream("GET", url, timeout=self._download_timeout) as resp:
                resp.raise_for_status()
                declared = resp.headers.get("Content-Length")
                if declared is not None and declared.isdigit() and int(declared) > max_bytes:
                    raise PackageTooLargeError(info.package_id, max_bytes)
                with dest.open("wb") as fh:
                    async for chunk in resp.aiter_bytes(_CHUNK_SIZE):
                        written += len(chunk)
                        if written > max_bytes:
                            raise PackageTooLargeError(info.package_id, max_bytes)
                        fh.write(chunk)
        except PackageTooLargeError:
            dest.unlink(missing_ok=True)
            raise
        except (httpx.HTTPError, OSError) as exc:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"failed to download {info.package_id} from {url}: {exc}") from exc

        log.debug("registry.tarball_downloaded", package=info.package_id, bytes=written)
        return dest


def _quote_name(name: str) -> str:
    # Scoped names keep the leading "@" but the slash must be escaped.
    return quote(name, safe="@")
