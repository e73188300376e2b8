from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional

import requests

from .exceptions import (
    FeedBodyError,
    FeedStatusError,
    FeedTransportError,
    InvalidFeedURL,
)
from .models import ParsedFeed
from .parser import parse_document

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_USER_AGENT = "gator"
CHUNK_SIZE = 64 * 1024


def fetch_feed(
    url: str,
    session: Optional[Any] = None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
    clock: Callable[[], float] = time.monotonic,
) -> ParsedFeed:
    """
    Fetch a single feed URL and return its parsed channel and items.

    `session` is anything with a requests-compatible `get` (normally a
    `requests.Session`); the module-level `requests` API is used otherwise.
    `timeout` bounds the whole exchange, body included, not just each
    socket read.

    Raises a FetchError subclass for each failure mode: InvalidFeedURL,
    FeedTransportError, FeedStatusError (body is never parsed),
    FeedBodyError and FeedParseError. Nothing is retried.
    """
    client = session if session is not None else requests
    headers = {"User-Agent": user_agent}
    deadline = clock() + timeout

    try:
        resp = client.get(url, headers=headers, timeout=timeout, stream=True)
    except (requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
            requests.exceptions.InvalidURL) as e:
        raise InvalidFeedURL(url, f"cannot build request ({e})") from e
    except requests.RequestException as e:
        raise FeedTransportError(url, f"request failed ({e})") from e
    except ValueError as e:
        # urllib3 rejects some hosts (empty or overlong labels) only at connect time
        raise InvalidFeedURL(url, f"cannot build request ({e})") from e

    try:
        if not 200 <= resp.status_code < 300:
            raise FeedStatusError(url, resp.status_code, getattr(resp, "reason", "") or "")
        body = _read_body(resp, url, deadline, timeout, clock)
    finally:
        resp.close()

    logger.debug("Fetched %d bytes from %s", len(body), url)
    return parse_document(body, url)


def _read_body(resp: Any, url: str, deadline: float, timeout: float,
               clock: Callable[[], float]) -> bytes:
    chunks: List[bytes] = []
    try:
        for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
            if clock() > deadline:
                raise FeedTransportError(url, f"response not received within {timeout}s")
            chunks.append(chunk)
    except requests.RequestException as e:
        raise FeedBodyError(url, f"cannot read body ({e})") from e
    return b"".join(chunks)
