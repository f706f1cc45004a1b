"""
Data types passed between the fetch, detection and submission stages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

DEFAULT_SEARCHENGINE = "api.indexnow.org"


@dataclass(frozen=True)
class UrlEntry:
    """A URL discovered in a sitemap or feed, with its modification marker."""

    url: str
    modified_at: Optional[str] = None


class SourceKind(str, Enum):
    FEED = "feed"
    SITEMAP = "sitemap"

    def describe(self) -> str:
        if self is SourceKind.SITEMAP:
            return "Sitemap XML"
        return "RSS/Atom/JSON Feed"


@dataclass
class Source:
    """
    A registered feed or sitemap.

    `host` is the site host sent in bulk submissions; `searchengine` is the
    notification endpoint host (e.g. api.indexnow.org, www.bing.com).
    """

    id: int
    kind: SourceKind
    source_url: str
    api_key: str = ""
    host: str = ""
    searchengine: str = DEFAULT_SEARCHENGINE
    first_run_completed: bool = False

    def missing_settings(self) -> list:
        missing = []
        if not self.api_key:
            missing.append("api_key")
        if not self.host:
            missing.append("host")
        if not self.searchengine:
            missing.append("searchengine")
        return missing


@dataclass(frozen=True)
class New:
    """URL has no stored record for its source."""

    def __str__(self) -> str:
        return "new"


@dataclass(frozen=True)
class Modified:
    """URL is stored but its marker changed; `marker` is the fresh one."""

    marker: str

    def __str__(self) -> str:
        return f"modified on {self.marker}"


SubmitReason = Union[New, Modified]


@dataclass(frozen=True)
class SubmitEntry:
    url: str
    reason: SubmitReason = field(default_factory=New)
    fetched_marker: Optional[str] = None

    @property
    def change_type(self) -> str:
        if isinstance(self.reason, Modified):
            return "modified"
        return "new"
