"""
1.0 Sitemap Traversal Module
Resolves a sitemap index tree into a flat, deduplicated list of URL entries.

Rules:
- Root reference is depth 0; references deeper than MAX_SITEMAP_DEPTH are
  skipped with a warning and the walk continues
- One seen-URL set spans the whole walk, so a page reachable from several
  branches is kept once, at its first discovery
- A sitemap document is fetched again only when reached at a shallower depth
  than before, so a branch cut at the ceiling can still be walked from a
  shorter path
- Any fetch or parse failure aborts the whole walk (FetchError /
  SitemapContentError propagate)
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from indexnow_submitter.models import UrlEntry
from indexnow_submitter.sitemap_fetcher import SitemapFetcher
from indexnow_submitter.sitemap_parser import SitemapIndex, SitemapParser, UrlSet

logger = logging.getLogger(__name__)

MAX_SITEMAP_DEPTH = 10


@dataclass
class TraversalStats:
    documents_fetched: int = 0
    indexes: int = 0
    url_sets: int = 0
    urls_found: int = 0
    duplicates_skipped: int = 0
    depth_skipped: int = 0
    revisits_skipped: int = 0


class SitemapTraversal:
    """
    2.0 SitemapTraversal Class
    Walks an index-of-indexes tree with an explicit stack.
    """

    def __init__(
        self,
        fetcher: SitemapFetcher,
        parser: Optional[SitemapParser] = None,
        max_depth: int = MAX_SITEMAP_DEPTH,
    ):
        self.fetcher = fetcher
        self.parser = parser or SitemapParser()
        self.max_depth = max_depth
        self.stats = TraversalStats()

    def collect(self, root_url: str) -> List[UrlEntry]:
        """
        2.1 Fetch every sitemap reachable from root_url and return its page URLs.

        Order is first discovery in a depth-first walk with children taken in
        document order, the same order a recursive walk would produce.
        """
        self.stats = TraversalStats()
        entries: List[UrlEntry] = []
        seen_urls: Set[str] = set()
        # sitemap url -> smallest depth it was fetched at
        visited_sitemaps: Dict[str, int] = {}
        stack: List[Tuple[str, int]] = [(root_url, 0)]

        while stack:
            sitemap_url, depth = stack.pop()

            # 2.1.1 Depth ceiling: skip the branch, keep the walk
            if depth > self.max_depth:
                logger.warning(
                    f"Maximum sitemap depth ({self.max_depth}) reached, skipping: {sitemap_url}"
                )
                self.stats.depth_skipped += 1
                continue

            if visited_sitemaps.get(sitemap_url, self.max_depth + 1) <= depth:
                logger.info(f"Sitemap {sitemap_url} already processed. Skipping.")
                self.stats.revisits_skipped += 1
                continue
            visited_sitemaps[sitemap_url] = depth

            # 2.1.2 Fetch and classify (errors propagate and fail the walk)
            body = self.fetcher.fetch(sitemap_url)
            self.stats.documents_fetched += 1
            parsed = self.parser.parse_sitemap(body, sitemap_url=sitemap_url)

            if isinstance(parsed, SitemapIndex):
                self.stats.indexes += 1
                logger.info(
                    f"Sitemap index {sitemap_url} contains {len(parsed.children)} sub-sitemaps."
                )
                # reversed so the first child is popped first
                for child_url in reversed(parsed.children):
                    stack.append((child_url, depth + 1))
            elif isinstance(parsed, UrlSet):
                self.stats.url_sets += 1
                self._add_url_set(sitemap_url, parsed, entries, seen_urls)
            else:
                raise TypeError(f"Unexpected parse result {type(parsed).__name__} for {sitemap_url}")

        logger.info(
            f"Collected {len(entries)} unique URLs from {self.stats.documents_fetched} sitemap(s) "
            f"({self.stats.duplicates_skipped} duplicates skipped)"
        )
        return entries

    def _add_url_set(
        self,
        sitemap_url: str,
        url_set: UrlSet,
        entries: List[UrlEntry],
        seen_urls: Set[str],
    ) -> None:
        """2.2 Append unseen entries; duplicates come from the seen-set size delta."""
        before = len(seen_urls)
        for entry in url_set.entries:
            if entry.url not in seen_urls:
                seen_urls.add(entry.url)
                entries.append(entry)
        added = len(seen_urls) - before
        duplicates = len(url_set.entries) - added

        self.stats.urls_found += len(url_set.entries)
        self.stats.duplicates_skipped += duplicates
        logger.info(
            f"URL set {sitemap_url}: found {len(url_set.entries)} URLs "
            f"(added {added}, {duplicates} duplicates skipped)"
        )
