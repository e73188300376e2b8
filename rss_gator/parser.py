from __future__ import annotations

import html
import io
import logging
import re
from typing import Any, Dict, List, Mapping

import feedparser
from feedparser.exceptions import CharacterEncodingOverride

from .exceptions import FeedParseError
from .models import FeedItem, ParsedFeed

logger = logging.getLogger(__name__)


# HTML named references that show up inside otherwise well-formed feeds.
# The strict XML parser rejects undeclared entities, so they are expanded
# to numeric references before parsing.
EXTRA_ENTITIES: Dict[str, str] = {
    "ldquo": "\u201c",
    "rdquo": "\u201d",
    "lsquo": "\u2018",
    "rsquo": "\u2019",
    "ndash": "\u2013",
    "mdash": "\u2014",
    "hellip": "\u2026",
}

_ENTITY_REF = re.compile(rb"&(" + b"|".join(k.encode("ascii") for k in EXTRA_ENTITIES) + rb");")


def _expand_entities(data: bytes) -> bytes:
    def repl(m: "re.Match[bytes]") -> bytes:
        char = EXTRA_ENTITIES[m.group(1).decode("ascii")]
        return b"&#%d;" % ord(char)

    return _ENTITY_REF.sub(repl, data)


def _text(entry: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        val = entry.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _unescape(s: str) -> str:
    # producers commonly double-encode; feedparser only decodes one level
    return html.unescape(s)


def parse_entry(entry: Mapping[str, Any]) -> FeedItem:
    """
    Map a raw feedparser entry to a FeedItem.
    """
    return FeedItem(
        title=_unescape(_text(entry, "title")),
        link=_text(entry, "link", "id"),
        description=_unescape(_text(entry, "summary", "description")),
        published=_text(entry, "published", "updated", "created"),
    )


def parse_document(data: bytes, url: str = "") -> ParsedFeed:
    """
    Parse a downloaded feed document into a ParsedFeed.

    Raises FeedParseError when the document is not well-formed or carries
    no channel. An ill-formed document yields no items at all, even if the
    lenient fallback parser could salvage some.
    """
    # a file object keeps feedparser from treating the body as a URL or path
    parsed = feedparser.parse(io.BytesIO(_expand_entities(data)))

    if getattr(parsed, "bozo", 0):
        exc = getattr(parsed, "bozo_exception", None)
        if isinstance(exc, CharacterEncodingOverride):
            logger.debug("Encoding override while parsing %s: %s", url or "<document>", exc)
        else:
            msg = "invalid feed document"
            if exc:
                msg += f" ({exc})"
            raise FeedParseError(url, msg)

    channel = getattr(parsed, "feed", None)
    if not getattr(parsed, "version", "") or channel is None:
        raise FeedParseError(url, "document has no feed channel")

    items: List[FeedItem] = [parse_entry(e) for e in parsed.entries]

    return ParsedFeed(
        title=_unescape(_text(channel, "title")),
        link=_text(channel, "link"),
        description=_unescape(_text(channel, "subtitle", "description")),
        items=tuple(items),
    )
