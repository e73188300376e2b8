from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class FeedItem:
    """
    One entry of a fetched feed, as found in the document.

    `published` is the raw publish-date string; it is normalized by
    `rss_gator.normalizer.normalize_date` only when the item is persisted.
    """
    title: str
    link: str
    description: str = ""
    published: str = ""


@dataclass(frozen=True)
class ParsedFeed:
    """
    In-memory result of a single fetch. Never persisted.
    """
    title: str
    link: str
    description: str = ""
    items: Tuple[FeedItem, ...] = field(default_factory=tuple)
