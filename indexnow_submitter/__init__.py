"""
IndexNow Submitter - Source Package

Modules:
- config: Configuration loading and validation
- models: URL entries, sources and submission reasons
- errors: Exception hierarchy shared by every stage
- sitemap_fetcher: HTTP fetching with retry logic
- sitemap_parser: XML parsing for sitemap indexes and urlsets
- sitemap_traversal: Depth-bounded walk of a sitemap index tree
- feed_reader: RSS/Atom/JSON feed entries via feedparser
- state_store: SQLite storage for sources and submitted URLs
- change_detector: New/modified classification against stored state
- submitter: Batched IndexNow submission with status handling
- change_log: Monthly CSV log of submitted URLs
- main: Pipeline orchestration and command line
"""

__version__ = "1.0.0"
