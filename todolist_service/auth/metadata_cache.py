"""
Process-wide cache of signing-key metadata with singleflight refresh.

Readers take the current immutable snapshot; a refresh builds a new snapshot
in a single shared task and publishes it with one assignment. No lock is held
while the network call is in flight.
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, Optional

from todolist_service.auth.metadata import MetadataSource, OidcMetadata
from todolist_service.auth.outcome import MetadataUnavailableError
from todolist_service.config import Settings

logger = logging.getLogger(__name__)


class MetadataCache:
    """
    Holds the last fetched ``OidcMetadata`` and refreshes it when stale.

    One instance per service; pass it to whatever needs signing keys.
    """

    def __init__(
        self,
        source: MetadataSource,
        *,
        refresh_interval: float = 86400,
        refresh_retry_interval: float = 30,
        automatic_refresh_interval: float = 300,
        stale_grace: float = 86400,
        fetch_timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.source = source
        self.refresh_interval = refresh_interval
        self.refresh_retry_interval = refresh_retry_interval
        self.automatic_refresh_interval = automatic_refresh_interval
        self.stale_grace = stale_grace
        self.fetch_timeout = fetch_timeout
        self._clock = clock

        self._snapshot: Optional[OidcMetadata] = None
        self._refresh_task: Optional["asyncio.Task[OidcMetadata]"] = None
        self._generation = 0
        self._next_attempt = 0.0
        self._refresh_requested = False
        self._last_requested_refresh: Optional[float] = None

    @classmethod
    def from_settings(cls, source: MetadataSource, settings: Settings) -> "MetadataCache":
        return cls(
            source,
            refresh_interval=settings.metadata_refresh_interval,
            refresh_retry_interval=settings.metadata_refresh_retry_interval,
            automatic_refresh_interval=settings.metadata_automatic_refresh_interval,
            stale_grace=settings.metadata_stale_grace,
            fetch_timeout=settings.metadata_fetch_timeout,
        )

    @property
    def snapshot(self) -> Optional[OidcMetadata]:
        """The currently published metadata, if any."""
        return self._snapshot

    @property
    def refreshing(self) -> bool:
        """Whether a shared fetch is in flight."""
        return self._refresh_task is not None

    def _is_fresh(self, snapshot: OidcMetadata, now: float) -> bool:
        return not self._refresh_requested and now - snapshot.fetched_at <= self.refresh_interval

    def _is_usable(self, snapshot: OidcMetadata, now: float) -> bool:
        return now - snapshot.fetched_at <= self.refresh_interval + self.stale_grace

    async def get_metadata(self, now: Optional[float] = None) -> OidcMetadata:
        """
        Return current metadata, fetching it first if missing or stale.

        Concurrent callers share one fetch. While a stale-but-usable snapshot
        exists, callers that find a refresh already running (or recently
        failed) get that snapshot immediately, unless ``request_refresh()`` is
        pending, in which case they wait for the running fetch.

        Raises:
            MetadataUnavailableError: If nothing usable is cached and the fetch
                fails or does not finish within ``fetch_timeout``
        """
        if now is None:
            now = self._clock()

        snapshot = self._snapshot
        if snapshot is not None and self._is_fresh(snapshot, now):
            return snapshot

        usable = snapshot is not None and self._is_usable(snapshot, now)
        # After request_refresh() callers join the in-flight fetch instead of taking the stale copy
        pending = self._refresh_task is not None and not self._refresh_requested
        if usable and (pending or now < self._next_attempt):
            logger.debug("Serving stale metadata while refresh is pending")
            return snapshot

        task = self._start_refresh()
        try:
            # shield: a cancelled or timed out caller must not cancel the shared fetch
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.fetch_timeout)
        except (MetadataUnavailableError, asyncio.TimeoutError) as e:
            if usable:
                logger.warning(
                    f"Metadata refresh failed ({str(e) or 'timed out'}), "
                    f"serving generation {snapshot.generation} fetched at {snapshot.fetched_at:.0f}"
                )
                return snapshot
            if isinstance(e, MetadataUnavailableError):
                raise
            raise MetadataUnavailableError(
                f"Metadata fetch did not complete within {self.fetch_timeout}s"
            ) from e

    def request_refresh(self, now: Optional[float] = None) -> bool:
        """
        Mark the snapshot stale so the next read refetches.

        Used when a token names a signing key the snapshot does not know about.
        Honoured at most once per ``automatic_refresh_interval``.

        Returns:
            bool: True if the refresh was scheduled
        """
        if now is None:
            now = self._clock()
        last = self._last_requested_refresh
        if last is not None and now - last < self.automatic_refresh_interval:
            return False
        self._last_requested_refresh = now
        self._refresh_requested = True
        self._next_attempt = 0.0
        logger.info("Metadata refresh requested")
        return True

    async def warmup(self) -> None:
        """Eagerly load metadata so the first request does not pay the cost."""
        try:
            await self.get_metadata()
        except MetadataUnavailableError as e:
            logger.warning(f"Metadata warmup failed: {e}")

    async def close(self) -> None:
        """Cancel a pending refresh and release the source's resources."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, MetadataUnavailableError):
                pass
        await self.source.close()

    def _start_refresh(self) -> "asyncio.Task[OidcMetadata]":
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._refresh())
            self._refresh_task.add_done_callback(self._refresh_done)
        return self._refresh_task

    def _refresh_done(self, task: "asyncio.Task[OidcMetadata]") -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the exception retrieved even when every waiter timed out
        if not task.cancelled():
            task.exception()

    async def _refresh(self) -> OidcMetadata:
        try:
            metadata = await self.source.fetch()
        except MetadataUnavailableError:
            self._next_attempt = self._clock() + self.refresh_retry_interval
            raise
        except Exception as e:
            logger.exception("Unexpected error while fetching metadata")
            self._next_attempt = self._clock() + self.refresh_retry_interval
            raise MetadataUnavailableError(f"Metadata fetch failed: {e}") from e

        self._generation += 1
        snapshot = replace(metadata, fetched_at=self._clock(), generation=self._generation)
        self._snapshot = snapshot
        self._refresh_requested = False
        self._next_attempt = 0.0
        logger.info(
            f"Published metadata generation {snapshot.generation} "
            f"({len(snapshot.signing_keys)} signing keys)"
        )
        return snapshot
