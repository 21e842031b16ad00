"""DiscoveryStore — durable cursor plus discovered/scanned identifier sets.

Layout under the state directory::

    last-sequence.txt             bare integer cursor
    discovered-packages.txt       newline-delimited canonical ids (sorted)
    discovered-packages-new.txt   ids added by the most recent commit only
    scanned-packages.txt          newline-delimited canonical ids (sorted)
    scanned-packages-new.txt      ids added by the most recent commit only

Reads union a full list with its delta file, so external tooling may append
to a ``-new`` file instead of rewriting the full list.  Writes go through a
temporary file and ``os.replace`` so a crash never leaves a truncated list.

The discovered and scanned sets live in separate files and are committed
independently; a crash between the two commits cannot corrupt either.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

import structlog

log = structlog.get_logger("npmsentinel.state")

CURSOR_FILE = "last-sequence.txt"
DISCOVERED_FILE = "discovered-packages.txt"
DISCOVERED_NEW_FILE = "discovered-packages-new.txt"
SCANNED_FILE = "scanned-packages.txt"
SCANNED_NEW_FILE = "scanned-packages-new.txt"


@dataclass(frozen=True)
class StoreStats:
    cursor: int | None
    discovered: int
    scanned: int
    pending: int


class DiscoveryStore:
    """File-backed state owned by one coordinator per run."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    # ── paths ──────────────────────────────────────────────────────────────

    @property
    def cursor_path(self) -> Path:
        return self.state_dir / CURSOR_FILE

    @property
    def discovered_path(self) -> Path:
        return self.state_dir / DISCOVERED_FILE

    @property
    def discovered_new_path(self) -> Path:
        return self.state_dir / DISCOVERED_NEW_FILE

    @property
    def scanned_path(self) -> Path:
        return self.state_dir / SCANNED_FILE

    @property
    def scanned_new_path(self) -> Path:
        return self.state_dir / SCANNED_NEW_FILE

    # ── discovery phase ────────────────────────────────────────────────────

    async def load(self, cold_start: Callable[[], Awaitable[int]]) -> tuple[int, set[str]]:
        """Return ``(cursor, discovered)``.

        With no readable cursor on disk the cursor is taken from
        *cold_start* (the feed's current high-water mark) and saved, so a
        first run does not replay the whole feed history.  Read errors are
        logged and treated as "no prior state".
        """
        cursor = await self.read_cursor()
        if cursor is None:
            cursor = await self._cold_start_cursor(cold_start)
        discovered = await self._load_set(self.discovered_path, self.discovered_new_path)
        return cursor, discovered

    async def commit(self, cursor: int, newly_discovered: Iterable[str]) -> None:
        """Persist the advanced cursor and merge *newly_discovered*.

        Idempotent: committing the same identifiers twice leaves one copy.
        The stored cursor never moves backwards.
        """
        ids = set(newly_discovered)
        await asyncio.to_thread(
            self._merge_set_sync, self.discovered_path, self.discovered_new_path, ids
        )
        await asyncio.to_thread(self._write_cursor_sync, cursor)
        log.info("state.discovery_committed", cursor=cursor, added=len(ids))

    async def read_cursor(self) -> int | None:
        """Stored cursor, or ``None`` when absent or unreadable."""
        try:
            text = await asyncio.to_thread(self.cursor_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            log.warning("state.cursor_unreadable", path=str(self.cursor_path), error=str(exc))
            return None
        try:
            return int(text.strip())
        except ValueError:
            log.warning("state.cursor_corrupt", path=str(self.cursor_path), content=text[:40])
            return None

    async def load_discovered(self) -> set[str]:
        return await self._load_set(self.discovered_path, self.discovered_new_path)

    # ── scan phase ─────────────────────────────────────────────────────────

    async def load_scanned(self) -> set[str]:
        return await self._load_set(self.scanned_path, self.scanned_new_path)

    async def commit_scanned(self, ids: Iterable[str]) -> None:
        """Merge *ids* into the scanned set (idempotent)."""
        new_ids = set(ids)
        if not new_ids:
            return
        await asyncio.to_thread(
            self._merge_set_sync, self.scanned_path, self.scanned_new_path, new_ids
        )
        log.info("state.scanned_committed", added=len(new_ids))

    async def stats(self) -> StoreStats:
        cursor = await self.read_cursor()
        discovered = await self.load_discovered()
        scanned = await self.load_scanned()
        return StoreStats(
            cursor=cursor,
            discovered=len(discovered),
            scanned=len(scanned),
            pending=len(discovered - scanned),
        )

    # ── internal ───────────────────────────────────────────────────────────

    async def _cold_start_cursor(self, cold_start: Callable[[], Awaitable[int]]) -> int:
        log.info("state.cold_start", path=str(self.cursor_path))
        try:
            cursor = await cold_start()
        except Exception as exc:
            log.error("state.cold_start_failed", error=str(exc))
            return 0
        try:
            await asyncio.to_thread(self._write_cursor_sync, cursor)
        except OSError as exc:
            log.warning("state.cursor_save_failed", error=str(exc))
        return cursor

    async def _load_set(self, full: Path, delta: Path) -> set[str]:
        try:
            return await asyncio.to_thread(self._read_union_sync, full, delta)
        except OSError as exc:
            log.warning("state.set_unreadable", path=str(full), error=str(exc))
            return set()

    def _read_union_sync(self, full: Path, delta: Path) -> set[str]:
        return _read_lines(full) | _read_lines(delta)

    def _merge_set_sync(self, full: Path, delta: Path, ids: set[str]) -> None:
        # Re-read under the write so a failed load() can never shrink the file.
        existing = self._read_union_sync(full, delta)
        added = ids - existing
        _atomic_write(full, _render_lines(existing | ids))
        _atomic_write(delta, _render_lines(added))

    def _write_cursor_sync(self, cursor: int) -> None:
        try:
            stored = int(self.cursor_path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            stored = None
        if stored is not None and stored > cursor:
            log.warning("state.cursor_regression_ignored", stored=stored, requested=cursor)
            cursor = stored
        _atomic_write(self.cursor_path, f"{cursor}\n")


def _read_lines(path: Path) -> set[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return set()
    return {line.strip() for line in text.splitlines() if line.strip()}


def _render_lines(ids: Iterable[str]) -> str:
    ordered = sorted(ids)
    return "\n".join(ordered) + "\n" if ordered else ""


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
