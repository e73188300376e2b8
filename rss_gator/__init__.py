"""
rss_gator

A small feed aggregator: polls RSS/Atom feeds on a schedule and stores their
posts in a relational database.

Core ideas:
- Input: feed URLs registered in the store
- Process: select due feed → fetch → parse → normalize dates → persist posts → mark fetched
- Output: Post rows, newest first per user

Example
-------
import threading

from rss_gator import AggregationScheduler, FeedStore

store = FeedStore.from_url("sqlite:///gator.sqlite3")
store.create_schema()

shutdown = threading.Event()
AggregationScheduler(store).run(60, shutdown)
"""
from .exceptions import DateParseError, FetchError, GatorError, StoreError
from .fetcher import fetch_feed
from .models import FeedItem, ParsedFeed
from .normalizer import normalize_date
from .scheduler import AggregationScheduler, BatchReport, SchedulerState
from .store import FeedStore

__all__ = [
    "AggregationScheduler",
    "BatchReport",
    "DateParseError",
    "FeedItem",
    "FeedStore",
    "FetchError",
    "GatorError",
    "ParsedFeed",
    "SchedulerState",
    "StoreError",
    "fetch_feed",
    "normalize_date",
]
