from datetime import datetime, timedelta, timezone

import pytest

from rss_gator.store import FeedStore


SAMPLE_RSS = b"""<?xml version="1.0" encoding="UTF-8" ?>
<rss xmlns:atom="http://www.w3.org/2005/Atom" version="2.0">
<channel>
  <title>RSS Feed Example &amp; &ldquo;Quote&rdquo;</title>
  <link>https://www.example.com</link>
  <description>This is an example RSS feed</description>
  <item>
    <title>First Article</title>
    <link>https://www.example.com/article1</link>
    <description>This is the content of the first article.</description>
    <pubDate>Mon, 06 Sep 2021 12:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Second Article</title>
    <link>https://www.example.com/article2</link>
    <description>Here's the content of the second article.</description>
    <pubDate>Tue, 07 Sep 2021 14:30:00 GMT</pubDate>
  </item>
</channel>
</rss>
"""


class Clock:
    """Deterministic clock; every reading is one second after the last."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class FakeResponse:
    def __init__(self, status_code=200, content=b"", reason="OK", read_error=None, chunks=None):
        self.status_code = status_code
        self.reason = reason
        self._chunks = list(chunks) if chunks is not None else [content]
        self._read_error = read_error
        self.content_read = False
        self.closed = False

    def iter_content(self, chunk_size=1):
        self.content_read = True
        for chunk in self._chunks:
            yield chunk
        if self._read_error is not None:
            raise self._read_error

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def naive(dt):
    # SQLite hands timestamps back without tzinfo
    return dt.replace(tzinfo=None) if dt is not None else None


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{(tmp_path / 'gator.sqlite3').as_posix()}"


@pytest.fixture
def store(db_url, clock):
    s = FeedStore.from_url(db_url, clock=clock)
    s.create_schema()
    yield s
    s.close()


@pytest.fixture
def user(store):
    return store.create_user("alice")
