from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from .exceptions import DateParseError


# Zone abbreviations accepted in RFC 822 dates. Anything else fails to parse.
NAMED_ZONES: Dict[str, str] = {
    "UT": "+0000",
    "UTC": "+0000",
    "GMT": "+0000",
    "Z": "+0000",
    "EST": "-0500",
    "EDT": "-0400",
    "CST": "-0600",
    "CDT": "-0500",
    "MST": "-0700",
    "MDT": "-0600",
    "PST": "-0800",
    "PDT": "-0700",
}

# Tried in order; the first layout that parses wins.
LAYOUTS: Tuple[str, ...] = (
    # RFC 822 / RFC 1123, with weekday (%d takes "02" and "2")
    "%a, %d %b %Y %H:%M:%S %z",
    "%a, %d %b %Y %H:%M %z",
    "%a, %d %b %y %H:%M:%S %z",
    "%a, %d %b %y %H:%M %z",
    # RFC 822 without weekday
    "%d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M %z",
    "%d %b %y %H:%M:%S %z",
    "%d %b %y %H:%M %z",
    # RFC 3339 / ISO 8601 (%z takes "Z", "+0000" and "+00:00")
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    # space instead of "T"
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S %z",
)

_TRAILING_ZONE = re.compile(r"\s([A-Za-z]{1,4})$")
_LONG_FRACTION = re.compile(r"(\.\d{6})\d+")


def _prepare(value: str) -> str:
    s = value.strip()
    # strptime has no portable support for zone names; swap in the offset
    m = _TRAILING_ZONE.search(s)
    if m:
        offset = NAMED_ZONES.get(m.group(1).upper())
        if offset:
            s = s[: m.start(1)] + offset
    # nanosecond precision is common in Atom feeds; datetime stops at micro
    return _LONG_FRACTION.sub(r"\1", s)


def normalize_date(value: str) -> datetime:
    """
    Parse a feed publish date into a timezone-aware UTC datetime.

    Feeds do not declare which format they use, so the value is matched
    against LAYOUTS in order and the first successful parse wins.

    Raises DateParseError carrying the original value and the last
    underlying ValueError when no layout matches, or the OverflowError
    when a matching value lies outside the datetime range in UTC.
    """
    if not isinstance(value, str) or not value.strip():
        raise DateParseError(value if isinstance(value, str) else repr(value))

    candidate = _prepare(value)
    last_error: Optional[Exception] = None
    for layout in LAYOUTS:
        try:
            parsed = datetime.strptime(candidate, layout)
        except ValueError as e:
            last_error = e
            continue
        try:
            return parsed.astimezone(timezone.utc)
        except (ValueError, OverflowError) as e:
            # near datetime.min/max the offset pushes the instant out of range
            raise DateParseError(value, e) from e

    raise DateParseError(value, last_error)
