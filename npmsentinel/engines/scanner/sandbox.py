"""PackageSandbox — per-package ephemeral working directory.

One sandbox holds one package: its tarball, the extracted tree and whatever
scratch files the detector tools write.  Nothing from the package is ever
executed; tools only read the extracted copy.  The directory is removed on
exit, after permissions are normalised so read-only files cannot block the
removal.
"""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import stat
import tarfile
import uuid
from pathlib import Path, PurePosixPath

import structlog

from npmsentinel.engines.discovery.registry_client import RegistryClient
from npmsentinel.exceptions import ExtractionError, ToolError, ToolUnavailableError
from npmsentinel.models.package import PackageInfo

log = structlog.get_logger("npmsentinel.sandbox")

FORBIDDEN_NAMES = frozenset({".git", "node_modules", ".env", ".npmrc"})
FORBIDDEN_SUFFIXES = (".exe", ".dll", ".so", ".dylib")

_DEFAULT_TOOL_TIMEOUT = 120.0


class PackageSandbox:
    """Async context manager owning one package's working directory."""

    def __init__(
        self,
        registry: RegistryClient,
        work_root: Path,
        *,
        max_tarball_bytes: int = 100 * 1024 * 1024,
        tool_timeout: float = _DEFAULT_TOOL_TIMEOUT,
    ) -> None:
        self._registry = registry
        self.root = Path(work_root) / uuid.uuid4().hex[:16]
        self.max_tarball_bytes = max_tarball_bytes
        # Uncompressed size guard against decompression bombs.
        self.max_extracted_bytes = max_tarball_bytes * 5
        self.tool_timeout = tool_timeout

    async def __aenter__(self) -> PackageSandbox:
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.cleanup()

    @property
    def extract_dir(self) -> Path:
        return self.root / "extracted"

    # ── preparation ────────────────────────────────────────────────────────

    async def prepare(self, info: PackageInfo) -> Path:
        """Download and unpack *info*; return the extracted package root.

        Download and extraction failures propagate: without the artifact no
        detector can run, so the caller aborts this package.
        """
        tarball = self.root / "package.tgz"
        await self._registry.download_tarball(info, tarball, self.max_tarball_bytes)
        await asyncio.to_thread(self._extract_sync, tarball, self.extract_dir)
        await asyncio.to_thread(self._ensure_package_json_sync, info, self.extract_dir)
        return self.extract_dir

    def _extract_sync(self, tarball: Path, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        total = 0
        try:
            with tarfile.open(tarball, "r:gz") as tar:
                for member in tar:
                    rel = _safe_relative_path(member.name)
                    if rel is None or _is_forbidden(rel):
                        continue
                    target = dest.joinpath(*rel.parts)
                    if member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    # Links and device files are never materialised.
                    if not member.isfile():
                        continue
                    total += member.size
                    if total > self.max_extracted_bytes:
                        raise ExtractionError(
                            f"extracted size exceeds {self.max_extracted_bytes} bytes"
                        )
                    source = tar.extractfile(member)
                    if source is None:
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with source, target.open("wb") as out:
                        shutil.copyfileobj(source, out)
                    target.chmod(0o644)
        except (tarfile.TarError, EOFError, OSError) as exc:
            raise ExtractionError(f"failed to extract {tarball.name}: {exc}") from exc

    @staticmethod
    def _ensure_package_json_sync(info: PackageInfo, extract_dir: Path) -> None:
        """Make sure audit tooling finds a manifest naming this package."""
        path = extract_dir / "package.json"
        try:
            manifest = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(manifest, dict):
                raise ValueError("package.json is not an object")
        except (OSError, ValueError):
            manifest = {
                "name": info.name,
                "version": info.version,
                "dependencies": dict(info.dependencies),
                "devDependencies": dict(info.dev_dependencies),
            }
        else:
            manifest.setdefault("name", info.name)
            manifest.setdefault("version", info.version)
        path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")

    # ── tools ──────────────────────────────────────────────────────────────

    async def run_tool(
        self,
        cmd: list[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        ok_codes: tuple[int, ...] = (0,),
    ) -> str:
        """Run an external scanner and return its stdout.

        Raises :class:`ToolUnavailableError` when the binary is not on PATH
        and :class:`ToolError` on timeout or an unexpected exit code.
        """
        if shutil.which(cmd[0]) is None:
            raise ToolUnavailableError(cmd[0])

        env = {
            "PATH": os.environ.get("PATH", ""),
            "HOME": str(self.root),
            "TMPDIR": str(self.root),
        }
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd or self.extract_dir),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        limit = timeout if timeout is not None else self.tool_timeout
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ToolError(f"{cmd[0]} timed out after {limit}s") from None

        if proc.returncode not in ok_codes:
            raise ToolError(
                f"{cmd[0]} failed (exit {proc.returncode}): "
                f"{stderr.decode(errors='replace').strip()[:500]}"
            )
        return stdout.decode(errors="replace")

    # ── teardown ───────────────────────────────────────────────────────────

    async def cleanup(self) -> None:
        try:
            await asyncio.to_thread(_force_remove, self.root)
        except OSError as exc:
            log.error("sandbox.cleanup_failed", path=str(self.root), error=str(exc))


def _safe_relative_path(name: str) -> PurePosixPath | None:
    """Strip the tarball's leading directory; reject absolute or escaping paths."""
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        return None
    parts = [p for p in path.parts if p not in ("", ".")]
    if len(parts) < 2:
        return None
    return PurePosixPath(*parts[1:])


def _is_forbidden(rel: PurePosixPath) -> bool:
    if any(part in FORBIDDEN_NAMES for part in rel.parts):
        return True
    return rel.name.lower().endswith(FORBIDDEN_SUFFIXES)


def _force_remove(root: Path) -> None:
    if not root.exists():
        return
    for dirpath, dirnames, filenames in os.walk(root):
        os.chmod(dirpath, 0o755)
        for name in dirnames:
            full = os.path.join(dirpath, name)
            if not os.path.islink(full):
                os.chmod(full, 0o755)
        for name in filenames:
            full = os.path.join(dirpath, name)
            if not os.path.islink(full):
                os.chmod(full, stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IROTH)
    shutil.rmtree(root)
