"""
Shared fixtures - no network, no real database file outside tmp_path.
"""

from typing import Dict, List, Union
from unittest.mock import MagicMock

import pytest

from indexnow_submitter.models import Source, SourceKind
from indexnow_submitter.state_store import StateStore


class FakeFetcher:
    """Serves canned bodies by URL; an Exception value is raised instead."""

    def __init__(self, documents: Dict[str, Union[bytes, Exception]]):
        self.documents = documents
        self.requested: List[str] = []
        self.last_content_type = ""

    def fetch(self, url, timeout=None):
        self.requested.append(url)
        body = self.documents[url]
        if isinstance(body, Exception):
            raise body
        return body

    def close(self):
        pass


def make_response(status_code: int, content: bytes = b"", reason: str = "", headers: dict = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    response.reason = reason
    response.headers = headers or {}
    return response


def urlset(*entries) -> bytes:
    """Build a urlset body from (loc, lastmod-or-None) pairs."""
    parts = ['<?xml version="1.0" encoding="UTF-8"?>',
             '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">']
    for loc, lastmod in entries:
        parts.append("<url><loc>%s</loc>%s</url>" % (loc, f"<lastmod>{lastmod}</lastmod>" if lastmod else ""))
    parts.append("</urlset>")
    return "\n".join(parts).encode("utf-8")


def sitemap_index(*children) -> bytes:
    parts = ['<?xml version="1.0" encoding="UTF-8"?>',
             '<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">']
    for child in children:
        parts.append(f"<sitemap><loc>{child}</loc></sitemap>")
    parts.append("</sitemapindex>")
    return "\n".join(parts).encode("utf-8")


@pytest.fixture
def store(tmp_path):
    with StateStore(str(tmp_path / "state" / "indexnow.db")) as state:
        yield state


@pytest.fixture
def sitemap_source(store) -> Source:
    source_id = store.add_source(
        SourceKind.SITEMAP, "https://example.com/sitemap.xml", api_key="abc123def456", host="example.com"
    )
    return store.get_source(source_id)
