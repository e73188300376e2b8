from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from .exceptions import DateParseError, FetchError, StoreError
from .fetcher import fetch_feed
from .models import FeedItem, ParsedFeed
from .normalizer import normalize_date
from .store import Feed, FeedStore, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_PACING = 1.0


class SchedulerState(str, Enum):
    WAITING_FOR_TICK = "waiting_for_tick"
    PROCESSING_BATCH = "processing_batch"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class BatchReport:
    feeds: int = 0
    posts: int = 0
    skipped_items: int = 0
    fetch_failures: int = 0
    store_failures: int = 0


class AggregationScheduler:
    """
    Periodic, bounded, failure-isolated polling of due feeds.

    Each tick processes at most `batch_size` feeds, least recently fetched
    first, pausing `pacing` seconds after every feed. Per-feed and per-item
    failures are logged and skipped; nothing here stops the loop except the
    shutdown event, which is only consulted between batches.
    """

    def __init__(
        self,
        store: FeedStore,
        *,
        fetch: Callable[..., ParsedFeed] = fetch_feed,
        normalize: Callable[[str], datetime] = normalize_date,
        session: Optional[Any] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        pacing: float = DEFAULT_PACING,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.batch_size = batch_size
        self.pacing = pacing
        self.state = SchedulerState.WAITING_FOR_TICK
        self._fetch = fetch
        self._normalize = normalize
        self._session = session
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic

    def run(self, interval: float, shutdown: threading.Event, *, fire_immediately: bool = False) -> int:
        """
        Block until `shutdown` is set, running one batch per tick.

        Ticks keep a fixed cadence; ticks missed while a batch overran are
        dropped rather than queued. Returns the number of batches run.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")

        batches = 0
        next_tick = self._monotonic() + interval
        logger.info("Collecting feeds every %ss", interval)

        if fire_immediately:
            self.state = SchedulerState.PROCESSING_BATCH
            self.run_batch()
            batches += 1

        while True:
            self.state = SchedulerState.WAITING_FOR_TICK
            timeout = max(0.0, next_tick - self._monotonic())
            if shutdown.wait(timeout):
                self.state = SchedulerState.SHUTTING_DOWN
                logger.info("Shutdown requested; stopping after %d batch(es)", batches)
                return batches

            next_tick = self._next_tick(next_tick, interval)
            self.state = SchedulerState.PROCESSING_BATCH
            self.run_batch()
            batches += 1

    def _next_tick(self, previous: float, interval: float) -> float:
        now = self._monotonic()
        nxt = previous + interval
        if nxt <= now:
            nxt += (int((now - nxt) // interval) + 1) * interval
        return nxt

    def run_batch(self) -> BatchReport:
        report = BatchReport()
        started = self._clock()

        for _ in range(self.batch_size):
            try:
                feed = self.store.select_next_due_feed(fetched_before=started)
            except StoreError as e:
                logger.error("Error selecting next feed to fetch: %s", e)
                break
            if feed is None:
                logger.debug("No more feeds due")
                break

            self.process_feed(feed, report)
            report.feeds += 1
            # be polite to remote servers
            self._sleep(self.pacing)

        logger.info(
            "Batch done: %d feed(s), %d post(s), %d item(s) skipped, %d fetch failure(s)",
            report.feeds, report.posts, report.skipped_items, report.fetch_failures,
        )
        return report

    def process_feed(self, feed: Feed, report: Optional[BatchReport] = None) -> BatchReport:
        """Fetch one feed, persist its items and record the attempt."""
        if report is None:
            report = BatchReport()

        logger.info("Fetching feed %s (%s)", feed.name, feed.url)
        try:
            parsed = self._fetch(feed.url, self._session)
        except FetchError as e:
            report.fetch_failures += 1
            logger.warning("Error fetching feed %s: %s", feed.url, e)
        else:
            for item in parsed.items:
                self._store_item(feed, item, report)

        # counts as fetched even on failure so a dead feed cannot hog batches
        try:
            self.store.mark_feed_fetched(feed.id)
        except StoreError as e:
            report.store_failures += 1
            logger.error("Error marking feed %s fetched: %s", feed.url, e)
        return report

    def _store_item(self, feed: Feed, item: FeedItem, report: BatchReport) -> None:
        try:
            published_at = self._normalize(item.published)
        except DateParseError as e:
            report.skipped_items += 1
            logger.warning("Skipping item %r from %s: %s", item.title, feed.url, e)
            return

        try:
            self.store.insert_post(
                feed.id,
                title=item.title,
                url=item.link,
                description=item.description or None,
                published_at=published_at,
            )
        except StoreError as e:
            report.store_failures += 1
            logger.error("Error inserting post %s: %s", item.link, e)
            return

        report.posts += 1
        logger.debug("- %s\n  %s", item.title, item.link)
