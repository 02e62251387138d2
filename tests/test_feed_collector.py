import pytest

from ecowire.collectors.base import ParseError
from ecowire.collectors.feeds import FeedCollector, evaluate_entry
from ecowire.config import load_config
from ecowire.models import ENTITY_CONTENT, Source

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Climate Desk</title>
    <item>
      <title>Solar capacity doubles</title>
      <link>https://News.example.com/solar?utm_source=rss&amp;id=7</link>
      <description>&lt;p&gt;Solar farms across the region doubled their output this year. Analysts expect the growth to continue next year. More soon.&lt;/p&gt;</description>
      <pubDate>Tue, 02 Jan 2024 10:00:00 GMT</pubDate>
      <category>solar</category>
    </item>
    <item>
      <title>No link here</title>
      <description>This entry has no link and cannot be deduplicated.</description>
    </item>
  </channel>
</rss>
"""


def _source():
    return Source(
        id="s1",
        name="Climate Desk",
        url="https://example.com/feed",
        kind="feed",
        category="Climate Science",
        active=True,
        last_fetched=None,
    )


def test_decision_missing_url():
    config = load_config()
    decision, item = evaluate_entry({"title": "No link"}, _source(), config, "2024-01-01T00:00:00+00:00")
    assert decision.decision == "SKIP"
    assert decision.reason == "missing_url"
    assert item is None


def test_collect_maps_entries_and_discards_missing_links():
    config = load_config()
    collector = FeedCollector(config, fetcher=lambda url, http, headers=None: (200, RSS))
    collector.start_pass("2024-05-01T00:00:00+00:00")

    items = collector.collect(_source())

    assert len(items) == 1
    item = items[0]
    assert item.kind == ENTITY_CONTENT
    assert item.source_id == "s1"
    payload = item.payload
    assert payload["source_key"] == "https://news.example.com/solar?id=7"
    assert payload["title"] == "Solar capacity doubles"
    assert payload["category"] == "Climate Science"
    assert payload["author"] == "Climate Desk"
    assert payload["published_at"] == "2024-01-02T10:00:00+00:00"
    assert payload["tags"] == ["solar"]
    assert payload["estimated_read_minutes"] == 1
    assert payload["excerpt"].startswith("Solar farms across the region doubled their output this year")


def test_collect_caps_entries_per_source(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("feeds:\n  max_items_per_source: 1\n", encoding="utf-8")
    config = load_config(str(path))
    entries = "".join(
        f"<item><title>Item {index}</title><link>https://example.com/{index}</link></item>"
        for index in range(5)
    )
    feed = f'<?xml version="1.0"?><rss version="2.0"><channel><title>x</title>{entries}</channel></rss>'
    collector = FeedCollector(config, fetcher=lambda url, http, headers=None: (200, feed.encode()))

    items = collector.collect(_source())

    assert [item.payload["title"] for item in items] == ["Item 0"]


def test_malformed_feed_raises_parse_error():
    config = load_config()
    collector = FeedCollector(
        config, fetcher=lambda url, http, headers=None: (200, b"<html><body>not a feed</rss")
    )
    with pytest.raises(ParseError):
        collector.collect(_source())


def _relative_feed(link):
    return (
        '<?xml version="1.0"?><rss version="2.0"><channel><title>x</title>'
        f"<item><title>Relative</title><link>{link}</link></item>"
        "</channel></rss>"
    ).encode()


def test_relative_links_resolve_against_their_own_source():
    config = load_config()
    collector = FeedCollector(config, fetcher=lambda url, http, headers=None: (200, _relative_feed("/news/1")))
    source_a = Source(
        id="a", name="A Desk", url="https://a.example.com/rss", kind="feed",
        category="Energy", active=True, last_fetched=None,
    )
    source_b = Source(
        id="b", name="B Desk", url="https://b.example.com/rss", kind="feed",
        category="Energy", active=True, last_fetched=None,
    )

    key_a = collector.collect(source_a)[0].payload["source_key"]
    key_b = collector.collect(source_b)[0].payload["source_key"]

    assert key_a == "https://a.example.com/news/1"
    assert key_b == "https://b.example.com/news/1"


def test_decision_unresolvable_url():
    config = load_config()
    decision, item = evaluate_entry(
        {"title": "Mail us", "link": "mailto:desk@example.com"}, _source(), config, "2024-01-01T00:00:00+00:00"
    )
    assert decision.decision == "SKIP"
    assert decision.reason == "unresolvable_url"
    assert item is None
