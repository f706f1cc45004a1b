"""
Feed Reader Module
Turns an RSS, Atom or JSON feed into UrlEntry items.

RSS and Atom are parsed by feedparser, which does not read JSON Feed; JSON
Feed documents (a body starting with "{" or a JSON content type) are decoded
with json instead. Markers per format:
- Atom: `updated`, falling back to `published`
- RSS: `published` (pubDate)
- JSON Feed: `date_modified`, falling back to `date_published`
"""

import json
import logging
import time
from typing import Any, List, Optional

import feedparser

from indexnow_submitter.errors import FeedContentError
from indexnow_submitter.models import UrlEntry
from indexnow_submitter.sitemap_fetcher import SitemapFetcher

logger = logging.getLogger(__name__)

RFC3339_UTC = "%Y-%m-%dT%H:%M:%S+00:00"
JSON_FEED_CONTENT_TYPES = ("application/feed+json", "application/json")


def parse_feed(content: bytes, feed_url: str = "", content_type: str = "") -> List[UrlEntry]:
    """Parse feed bytes into entries, in feed order."""
    if is_json_feed(content, content_type):
        return parse_json_feed(content, feed_url)

    feed = feedparser.parse(content)

    entries = feed.get("entries") or []
    if feed.get("bozo") and not entries:
        bozo_exc = feed.get("bozo_exception")
        raise FeedContentError(feed_url, f"unparseable feed: {bozo_exc}")
    if feed.get("bozo"):
        logger.warning(f"Feed {feed_url} is malformed ({feed.get('bozo_exception')}), using {len(entries)} entries")

    url_entries = []
    for entry in entries:
        url = _entry_url(entry)
        if not url:
            logger.warning(f"Skipping feed entry without a link in {feed_url}: {entry.get('title', '')[:80]}")
            continue
        url_entries.append(UrlEntry(url=url, modified_at=_entry_marker(entry)))

    logger.info(f"Feed {feed_url} ({feed.get('version') or 'unknown format'}): {len(url_entries)} entries")
    return url_entries


def fetch_feed_urls(feed_url: str, fetcher: SitemapFetcher) -> List[UrlEntry]:
    """Fetch a feed (non-2xx raises FetchError) and parse it."""
    content = fetcher.fetch(feed_url)
    return parse_feed(content, feed_url, content_type=fetcher.last_content_type)


# =============================================================================
# JSON FEED
# =============================================================================

def is_json_feed(content: bytes, content_type: str = "") -> bool:
    media_type = (content_type or "").split(";")[0].strip().lower()
    if media_type in JSON_FEED_CONTENT_TYPES:
        return True
    return content.lstrip().startswith(b"{")


def parse_json_feed(content: bytes, feed_url: str = "") -> List[UrlEntry]:
    """
    Parse a JSON Feed (jsonfeed.org 1.0/1.1) document.

    Entry URL: `url`, then `external_url`, then an http(s) `id`.
    Marker: `date_modified`, then `date_published`, kept verbatim (RFC 3339).
    """
    try:
        document = json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FeedContentError(feed_url, f"invalid JSON feed: {e}")

    if not isinstance(document, dict) or not isinstance(document.get("items"), list):
        raise FeedContentError(feed_url, "JSON feed has no items list")

    url_entries = []
    for item in document["items"]:
        if not isinstance(item, dict):
            continue
        url = _json_item_url(item)
        if not url:
            logger.warning(f"Skipping feed item without a URL in {feed_url}: {str(item.get('title') or '')[:80]}")
            continue
        url_entries.append(UrlEntry(url=url, modified_at=_json_item_marker(item)))

    logger.info(f"Feed {feed_url} (json {document.get('version') or 'unknown version'}): {len(url_entries)} entries")
    return url_entries


def _json_item_url(item: dict) -> Optional[str]:
    for key in ("url", "external_url"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    item_id = item.get("id")
    if isinstance(item_id, str) and item_id.strip().startswith(("http://", "https://")):
        return item_id.strip()
    return None


def _json_item_marker(item: dict) -> Optional[str]:
    for key in ("date_modified", "date_published"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _entry_url(entry: Any) -> Optional[str]:
    link = (entry.get("link") or "").strip()
    if link:
        return link

    for link_info in entry.get("links") or []:
        href = (link_info.get("href") or "").strip()
        if href:
            return href

    # Atom ids are frequently the permalink itself
    entry_id = (entry.get("id") or "").strip()
    if entry_id.startswith(("http://", "https://")):
        return entry_id
    return None


def _entry_marker(entry: Any) -> Optional[str]:
    for key in ("updated", "published"):
        parsed = entry.get(f"{key}_parsed")
        if parsed:
            return time.strftime(RFC3339_UTC, parsed)
        raw = (entry.get(key) or "").strip()
        if raw:
            return raw
    return None
