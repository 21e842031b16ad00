"""Data models for the discovery engine."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from npmsentinel.models.package import PackageInfo

log = structlog.get_logger("npmsentinel.discovery")

# Registry-internal documents (CouchDB design docs) share the feed with packages.
DESIGN_DOC_PREFIX = "_design/"


class FeedEntry(BaseModel):
    """One row of the change feed."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    seq: int
    id: str
    deleted: bool = False

    @property
    def is_design_doc(self) -> bool:
        return self.id.startswith(DESIGN_DOC_PREFIX)


@dataclass
class FeedPage:
    """Decoded feed response; ``last_seq`` is the feed's high-water mark."""

    results: list[FeedEntry]
    last_seq: int | None = None
    rejected: int = 0

    @classmethod
    def parse(cls, payload: Any) -> FeedPage:
        """Decode a raw response body, dropping rows that fail validation."""
        if not isinstance(payload, dict):
            raise ValueError(f"feed response is not an object: {type(payload).__name__}")

        entries: list[FeedEntry] = []
        rejected = 0
        for row in payload.get("results") or []:
            try:
                entries.append(FeedEntry.model_validate(row))
            except ValidationError as exc:
                rejected += 1
                log.warning("discovery.feed_row_rejected", row=str(row)[:200], error=str(exc))

        last_seq = payload.get("last_seq")
        try:
            last_seq = int(last_seq) if last_seq is not None else None
        except (TypeError, ValueError):
            log.warning("discovery.last_seq_unparseable", last_seq=str(last_seq)[:80])
            last_seq = None

        return cls(results=entries, last_seq=last_seq, rejected=rejected)


@dataclass
class DiscoveryResult:
    """Summary of one discovery run."""

    cursor_before: int
    cursor_after: int
    entries_seen: int = 0
    discovered: list[PackageInfo] = field(default_factory=list)
    skipped: Counter[str] = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)
    committed: bool = False

    @property
    def discovered_ids(self) -> list[str]:
        return [p.package_id for p in self.discovered]
