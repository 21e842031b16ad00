"""Detector interface and shared file-walking helpers."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path
from typing import Protocol, TypeVar, runtime_checkable

from npmsentinel.engines.scanner.sandbox import PackageSandbox

F = TypeVar("F", covariant=True)

# Files larger than this are skipped by the regex scanners.
MAX_SCAN_FILE_BYTES = 2 * 1024 * 1024


@runtime_checkable
class Detector(Protocol[F]):
    """Interface that every tool-backed detector must satisfy.

    ``scan`` must degrade to an empty list when its tool is missing; only
    unexpected errors may propagate.
    """

    name: str

    async def scan(self, sandbox: PackageSandbox, extract_dir: Path) -> list[F]: ...


def walk_files(root: Path) -> Iterator[Path]:
    """Yield regular files under *root*, skipping dot-dirs and node_modules."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d != "node_modules"
        )
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if path.is_file() and not path.is_symlink():
                yield path


def read_text(path: Path) -> str | None:
    """File contents, or ``None`` when unreadable or too large to scan."""
    try:
        if path.stat().st_size > MAX_SCAN_FILE_BYTES:
            return None
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def line_number(content: str, index: int) -> int:
    """1-based line of character offset *index*."""
    return content.count("\n", 0, index) + 1


def relative_name(path: Path, root: Path) -> str:
    try:
        return "/" + path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()
