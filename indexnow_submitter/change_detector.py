"""
1.0 Change Detector Module
Classifies freshly fetched entries against the stored markers of a source.

Rules:
- First run: every entry is New and the whole set needs explicit approval
- Later runs: an unknown URL is New; a known URL is Modified only when it
  carries a marker and the stored marker is missing or a different string
- Markers are opaque strings and are never parsed as dates
- The detector reads state only; callers record markers after a successful
  submission using marker_to_persist()
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from indexnow_submitter.models import Modified, New, SubmitEntry, UrlEntry

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    """
    2.0 Result of one classification pass.

    `submissions` keeps fetched order with New and Modified interleaved;
    `unchanged` holds the dropped entries.
    """

    submissions: List[SubmitEntry] = field(default_factory=list)
    unchanged: List[UrlEntry] = field(default_factory=list)
    first_run: bool = False
    previous_markers: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def new(self) -> List[SubmitEntry]:
        return [e for e in self.submissions if isinstance(e.reason, New)]

    @property
    def modified(self) -> List[SubmitEntry]:
        return [e for e in self.submissions if isinstance(e.reason, Modified)]

    @property
    def requires_approval(self) -> bool:
        return self.first_run and bool(self.submissions)

    @property
    def is_empty(self) -> bool:
        return not self.submissions


def dedupe_entries(entries: Iterable[UrlEntry]) -> List[UrlEntry]:
    """3.0 Keep the first occurrence of each URL, preserving order."""
    seen = set()
    unique = []
    for entry in entries:
        if entry.url in seen:
            continue
        seen.add(entry.url)
        unique.append(entry)
    return unique


def classify_entry(entry: UrlEntry, known_markers: Mapping[str, Optional[str]]) -> Optional[SubmitEntry]:
    """
    4.0 Classify one entry on an incremental run.

    Returns a SubmitEntry for New/Modified, None for unchanged.
    """
    if entry.url not in known_markers:
        return SubmitEntry(url=entry.url, reason=New(), fetched_marker=entry.modified_at)

    fresh = entry.modified_at
    if fresh is None:
        return None

    stored = known_markers[entry.url]
    if stored is None or fresh != stored:
        return SubmitEntry(url=entry.url, reason=Modified(marker=fresh), fetched_marker=fresh)
    return None


def detect_changes(
    entries: Iterable[UrlEntry],
    known_markers: Mapping[str, Optional[str]],
    first_run: bool = False,
) -> ChangeSet:
    """
    5.0 Classify fetched entries into New / Modified / unchanged.

    Args:
        entries: Fetched entries, in discovery order
        known_markers: url -> stored marker for the source
        first_run: True while the source's first run is not completed

    Returns:
        ChangeSet; on a first run every entry is New and requires_approval is set
    """
    unique = dedupe_entries(entries)
    changes = ChangeSet(first_run=first_run)

    if first_run:
        changes.submissions = [
            SubmitEntry(url=e.url, reason=New(), fetched_marker=e.modified_at) for e in unique
        ]
        logger.info(f"First run: {len(unique)} URLs, submission needs approval")
        return changes

    for entry in unique:
        submit_entry = classify_entry(entry, known_markers)
        if submit_entry is None:
            changes.unchanged.append(entry)
            continue
        if isinstance(submit_entry.reason, Modified):
            changes.previous_markers[entry.url] = known_markers[entry.url]
        changes.submissions.append(submit_entry)

    logger.info(
        f"Changes: {len(changes.new)} new, {len(changes.modified)} modified, "
        f"{len(changes.unchanged)} unchanged"
    )
    return changes


def marker_to_persist(entry: SubmitEntry) -> Optional[str]:
    """6.0 Marker recorded after a successful submission of entry."""
    reason = entry.reason
    if isinstance(reason, Modified):
        return reason.marker
    if isinstance(reason, New):
        return entry.fetched_marker
    raise TypeError(f"Unknown submission reason: {reason!r}")
