import dataclasses

import pytest
import requests

from conftest import SAMPLE_RSS, FakeResponse, FakeSession
from rss_gator.exceptions import (
    FeedBodyError,
    FeedParseError,
    FeedStatusError,
    FeedTransportError,
    FetchError,
    InvalidFeedURL,
)
from rss_gator.fetcher import fetch_feed
from rss_gator.models import ParsedFeed
from rss_gator.parser import parse_document


URL = "https://www.example.com/rss.xml"


def test_fetch_parses_channel_and_items():
    session = FakeSession(FakeResponse(content=SAMPLE_RSS))
    feed = fetch_feed(URL, session)

    assert feed.title == "RSS Feed Example & \u201cQuote\u201d"
    assert "&amp;" not in feed.title and "&ldquo;" not in feed.title
    assert feed.link == "https://www.example.com"
    assert feed.description == "This is an example RSS feed"
    assert [i.link for i in feed.items] == [
        "https://www.example.com/article1",
        "https://www.example.com/article2",
    ]
    assert feed.items[0].title == "First Article"
    assert feed.items[0].published == "Mon, 06 Sep 2021 12:00:00 GMT"


def test_fetch_sends_user_agent_and_timeout():
    session = FakeSession(FakeResponse(content=SAMPLE_RSS))
    fetch_feed(URL, session)

    url, kwargs = session.calls[0]
    assert url == URL
    assert kwargs["headers"]["User-Agent"] == "gator"
    assert kwargs["timeout"] == 15.0
    assert session.response.closed


def test_non_2xx_fails_without_reading_body():
    response = FakeResponse(status_code=500, reason="Internal Server Error", content=b"server error")
    with pytest.raises(FeedStatusError) as info:
        fetch_feed(URL, FakeSession(response))

    assert info.value.status_code == 500
    assert info.value.url == URL
    assert not response.content_read
    assert response.closed


@pytest.mark.parametrize("error", [
    requests.ConnectionError("dns failure"),
    requests.Timeout("timed out"),
])
def test_transport_failures(error):
    with pytest.raises(FeedTransportError):
        fetch_feed(URL, FakeSession(error=error))


def test_body_read_failure():
    response = FakeResponse(read_error=requests.exceptions.ChunkedEncodingError("cut short"))
    with pytest.raises(FeedBodyError):
        fetch_feed(URL, FakeSession(response))
    assert response.closed


def test_body_is_read_in_chunks():
    half = len(SAMPLE_RSS) // 2
    response = FakeResponse(chunks=[SAMPLE_RSS[:half], SAMPLE_RSS[half:]])
    feed = fetch_feed(URL, FakeSession(response))
    assert len(feed.items) == 2


def test_slow_body_exceeds_timeout():
    # readings: start, after chunk 1, after chunk 2
    readings = iter([100.0, 101.0, 106.0])
    response = FakeResponse(chunks=[b"<rss>", b"<channel>", b"</channel></rss>"])

    with pytest.raises(FeedTransportError) as info:
        fetch_feed(URL, FakeSession(response), timeout=5.0, clock=lambda: next(readings))

    assert "within 5.0s" in str(info.value)
    assert response.closed


@pytest.mark.parametrize("url", ["not a url", "ftp://example.com/feed"])
def test_malformed_url_fails_before_any_request(url):
    with pytest.raises(InvalidFeedURL):
        fetch_feed(url)


@pytest.mark.parametrize("url", [
    "http://a..b/",
    "http://a..b/rss",
    "http://" + "x" * 64 + ".example.com/feed",
])
def test_unencodable_host_is_an_invalid_url(url):
    with requests.Session() as session:
        session.trust_env = False  # no proxy from the environment
        with pytest.raises(InvalidFeedURL) as info:
            fetch_feed(url, session)
    assert info.value.url == url


def test_truncated_document_fails():
    session = FakeSession(FakeResponse(content=b"<rss><channel><title>no close\n"))
    with pytest.raises(FeedParseError):
        fetch_feed(URL, session)


def test_fetch_errors_share_a_base_class():
    with pytest.raises(FetchError):
        fetch_feed(URL, FakeSession(FakeResponse(status_code=404, reason="Not Found")))


def test_parse_unescapes_double_encoded_text():
    doc = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel>
  <title>Tom &amp;amp; Jerry</title>
  <link>https://example.com</link>
  <description>Cartoons</description>
  <item>
    <title>Wait for it&hellip;</title>
    <link>https://example.com/1</link>
    <description>Cat &amp;amp; mouse &ndash; again</description>
    <pubDate>Tue, 07 Sep 2021 14:30:00 GMT</pubDate>
  </item>
</channel></rss>
"""
    feed = parse_document(doc)

    assert feed.title == "Tom & Jerry"
    assert feed.items[0].title == "Wait for it\u2026"
    assert feed.items[0].description == "Cat & mouse \u2013 again"


def test_parse_atom_document():
    doc = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://atom.example.com/"/>
  <updated>2006-01-02T15:04:05Z</updated>
  <id>urn:example:feed</id>
  <entry>
    <title>Entry One</title>
    <link href="https://atom.example.com/one"/>
    <id>urn:example:one</id>
    <updated>2006-01-02T15:04:05Z</updated>
    <summary>First entry</summary>
  </entry>
</feed>
"""
    feed = parse_document(doc)

    assert feed.title == "Atom Example"
    assert len(feed.items) == 1
    assert feed.items[0].link == "https://atom.example.com/one"
    assert feed.items[0].published == "2006-01-02T15:04:05Z"


def test_non_feed_document_fails():
    with pytest.raises(FeedParseError):
        parse_document(b"<html><body><p>hello</p></body></html>")


def test_parsed_feed_keeps_only_channel_fields_and_items():
    feed = parse_document(SAMPLE_RSS)
    assert [f.name for f in dataclasses.fields(ParsedFeed)] == ["title", "link", "description", "items"]
    assert feed == ParsedFeed(
        title=feed.title, link="https://www.example.com",
        description="This is an example RSS feed", items=feed.items,
    )
