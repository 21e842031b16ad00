"""DiscoveryCoordinator — drain the change feed into the discovered set."""

from __future__ import annotations

import structlog

from npmsentinel.core.outcome import Fail, Skip
from npmsentinel.core.retry import STATE_COMMIT_RETRY, RetryPolicy
from npmsentinel.engines.discovery.feed_client import ChangesFeedClient
from npmsentinel.engines.discovery.models import DiscoveryResult, FeedEntry
from npmsentinel.engines.discovery.registry_client import RegistryClient
from npmsentinel.exceptions import FeedError
from npmsentinel.models.package import PackageInfo, is_valid_version
from npmsentinel.state.store import DiscoveryStore

log = structlog.get_logger("npmsentinel.discovery")

DEFAULT_MAX_PACKAGES_PER_RUN = 10_000
DEFAULT_FEED_PAGE_SIZE = 10_000


class DiscoveryCoordinator:
    """Orchestration layer: feed page → registry lookups → state commit.

    Each run walks exactly one feed page and commits the cursor together
    with the newly discovered identifiers only after the whole page has
    been processed.  A crash mid-page, or a commit that still fails after
    its retries, loses the page's progress and nothing else; the next run
    re-fetches and re-deduplicates it.
    """

    def __init__(
        self,
        store: DiscoveryStore,
        feed: ChangesFeedClient,
        registry: RegistryClient,
        *,
        max_packages_per_run: int = DEFAULT_MAX_PACKAGES_PER_RUN,
        feed_page_size: int = DEFAULT_FEED_PAGE_SIZE,
        commit_retry: RetryPolicy = STATE_COMMIT_RETRY,
    ) -> None:
        self._store = store
        self._feed = feed
        self._registry = registry
        self.max_packages_per_run = max_packages_per_run
        self.feed_page_size = feed_page_size
        self._commit_retry = commit_retry

    async def run(self) -> DiscoveryResult:
        """Discover new ``name@version`` identifiers from one feed page.

        1. Load cursor + discovered set (cold start uses the feed head)
        2. Fetch entries since the cursor
        3. Skip deleted / design docs / unresolvable / malformed / known ids
        4. Advance cursor to ``last_seq`` (or the max ``seq`` seen)
        5. Commit cursor + new ids
        """
        cursor, discovered = await self._store.load(self._feed.current_sequence)
        result = DiscoveryResult(cursor_before=cursor, cursor_after=cursor)

        try:
            page = await self._feed.fetch_page(cursor, self.feed_page_size)
        except FeedError as exc:
            log.error("discovery.feed_failed", cursor=cursor, error=str(exc))
            result.errors.append(str(exc))
            return result

        running_max = cursor
        new_ids: list[str] = []

        for entry in page.results:
            result.entries_seen += 1
            running_max = max(running_max, entry.seq)

            info = await self._admit(entry, result)
            if info is None:
                continue

            package_id = info.package_id
            if package_id in discovered:
                result.skipped["already_discovered"] += 1
                log.debug("discovery.duplicate", package=package_id)
                continue

            discovered.add(package_id)
            new_ids.append(package_id)
            result.discovered.append(info)
            log.info("discovery.new_package", package=package_id, seq=entry.seq)

            if len(new_ids) >= self.max_packages_per_run:
                log.info("discovery.cap_reached", cap=self.max_packages_per_run, seq=entry.seq)
                break

        if page.last_seq is not None:
            new_cursor = max(cursor, page.last_seq)
        else:
            new_cursor = running_max
        result.cursor_after = new_cursor

        try:
            await self._commit_retry.call(
                self._store.commit, new_cursor, new_ids, operation="state.commit_discovered"
            )
        except Exception as exc:
            # The next run re-fetches this page from the old cursor.
            log.error("discovery.commit_failed", cursor=new_cursor, error=str(exc))
            result.cursor_after = cursor
            result.errors.append(f"state commit failed: {type(exc).__name__}: {exc}")
            return result
        result.committed = True

        log.info(
            "discovery.run_complete",
            cursor_before=cursor,
            cursor_after=new_cursor,
            entries=result.entries_seen,
            discovered=len(new_ids),
            skipped=dict(result.skipped),
        )
        return result

    async def _admit(self, entry: FeedEntry, result: DiscoveryResult) -> PackageInfo | None:
        """Return resolved metadata for *entry*, or ``None`` when it is skipped."""
        if entry.deleted:
            result.skipped["deleted"] += 1
            log.debug("discovery.skip_deleted", id=entry.id)
            return None
        if not entry.id or entry.is_design_doc:
            result.skipped["design_doc"] += 1
            log.debug("discovery.skip_design_doc", id=entry.id)
            return None

        outcome = await self._registry.resolve(entry.id)
        if isinstance(outcome, Skip):
            result.skipped["unresolvable"] += 1
            log.info("discovery.skip_unresolvable", id=entry.id, reason=outcome.reason)
            return None
        if isinstance(outcome, Fail):
            result.skipped["lookup_failed"] += 1
            result.errors.append(f"{entry.id}: {outcome.message}")
            log.warning("discovery.lookup_failed", id=entry.id, error=outcome.message)
            return None

        info = outcome.value
        if not is_valid_version(info.version):
            result.skipped["invalid_version"] += 1
            log.warning("discovery.skip_invalid_version", id=entry.id, version=info.version)
            return None
        return info
