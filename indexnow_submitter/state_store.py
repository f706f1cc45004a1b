"""
1.0 State Store Module
SQLite storage for registered sources and the URLs submitted for each.

Layout:
    sources         one row per feed/sitemap with its IndexNow settings
    submitted_urls  one row per (source_id, url) with the last known marker

Deleting a source removes its URL rows. Every sqlite3 failure is raised as
StateStoreError; nothing here swallows a write error.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from indexnow_submitter.errors import ConfigError, StateStoreError
from indexnow_submitter.models import DEFAULT_SEARCHENGINE, Source, SourceKind

logger = logging.getLogger(__name__)

SOURCE_COLUMNS = "id, source_type, source_url, api_key, host, searchengine, first_run_completed"


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        raise StateStoreError(f"{action} failed: {e}") from e


class StateStore:
    """
    2.0 StateStore Class
    Single handle to persisted state, passed through every pipeline stage.
    """

    SOURCES_DDL = """
    CREATE TABLE IF NOT EXISTS sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_type TEXT NOT NULL,
        source_url TEXT UNIQUE NOT NULL,
        api_key TEXT NOT NULL DEFAULT '',
        host TEXT NOT NULL DEFAULT '',
        searchengine TEXT NOT NULL DEFAULT 'api.indexnow.org',
        first_run_completed INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now'))
    );
    """

    URLS_DDL = """
    CREATE TABLE IF NOT EXISTS submitted_urls (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_id INTEGER NOT NULL,
        url TEXT NOT NULL,
        last_modified TEXT,
        submitted_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now')),
        UNIQUE(source_id, url),
        FOREIGN KEY (source_id) REFERENCES sources(id) ON DELETE CASCADE
    );
    """

    UPSERT_URL = """
    INSERT INTO submitted_urls (source_id, url, last_modified) VALUES (?, ?, ?)
    ON CONFLICT(source_id, url) DO UPDATE SET
        last_modified = excluded.last_modified,
        submitted_at = strftime('%s', 'now')
    """

    def __init__(self, db_path: str):
        """
        2.1 Open (and create if needed) the database at db_path.

        Args:
            db_path: SQLite file path, or ":memory:" for a throwaway store
        """
        self.db_path = db_path
        if db_path != ":memory:":
            parent = os.path.dirname(db_path)
            if parent:
                os.makedirs(parent, exist_ok=True)

        with _translate_errors(f"Opening state database {db_path}"):
            self.conn = sqlite3.connect(db_path)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            with self.conn:
                self.conn.execute(self.SOURCES_DDL)
                self.conn.execute(self.URLS_DDL)
        logger.debug(f"StateStore opened: {db_path}")

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "StateStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # 3.0 SOURCES
    # =========================================================================

    def add_source(
        self,
        kind: SourceKind,
        source_url: str,
        api_key: str = "",
        host: str = "",
        searchengine: str = DEFAULT_SEARCHENGINE,
    ) -> int:
        """3.1 Register a source and return its id."""
        if self.source_exists(source_url):
            raise ConfigError(f"Source already registered: {source_url}")
        with _translate_errors(f"Adding source {source_url}"), self.conn:
            cursor = self.conn.execute(
                "INSERT INTO sources (source_type, source_url, api_key, host, searchengine) "
                "VALUES (?, ?, ?, ?, ?)",
                (SourceKind(kind).value, source_url, api_key, host, searchengine),
            )
        logger.info(f"Registered source {cursor.lastrowid}: {source_url}")
        return cursor.lastrowid

    def update_source(self, source: Source) -> bool:
        """3.2 Persist edited settings of an existing source."""
        with _translate_errors(f"Updating source {source.id}"), self.conn:
            cursor = self.conn.execute(
                "UPDATE sources SET source_type = ?, source_url = ?, api_key = ?, host = ?, searchengine = ? "
                "WHERE id = ?",
                (source.kind.value, source.source_url, source.api_key, source.host, source.searchengine, source.id),
            )
        return cursor.rowcount > 0

    def remove_source(self, source_id: int) -> bool:
        """3.3 Delete a source together with all of its URL records."""
        with _translate_errors(f"Removing source {source_id}"), self.conn:
            self.conn.execute("DELETE FROM submitted_urls WHERE source_id = ?", (source_id,))
            cursor = self.conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        return cursor.rowcount > 0

    def source_exists(self, source_url: str) -> bool:
        with _translate_errors("Looking up source"):
            row = self.conn.execute("SELECT 1 FROM sources WHERE source_url = ?", (source_url,)).fetchone()
        return row is not None

    def get_source(self, source_id: int) -> Optional[Source]:
        with _translate_errors(f"Loading source {source_id}"):
            row = self.conn.execute(
                f"SELECT {SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
            ).fetchone()
        return _row_to_source(row) if row is not None else None

    def list_sources(self, ids: Optional[Sequence[int]] = None) -> List[Source]:
        """3.4 Sources in ascending id order, optionally restricted to ids."""
        with _translate_errors("Listing sources"):
            rows = self.conn.execute(f"SELECT {SOURCE_COLUMNS} FROM sources ORDER BY id").fetchall()
        sources = [_row_to_source(row) for row in rows]
        if ids is not None:
            wanted = set(ids)
            sources = [s for s in sources if s.id in wanted]
        return sources

    # =========================================================================
    # 4.0 FIRST RUN FLAG
    # =========================================================================

    def is_first_run(self, source_id: int) -> bool:
        """4.1 True until the first run of the source has been completed."""
        with _translate_errors(f"Reading first-run flag of source {source_id}"):
            row = self.conn.execute(
                "SELECT first_run_completed FROM sources WHERE id = ?", (source_id,)
            ).fetchone()
        return row is None or row[0] != 1

    def mark_first_run_done(self, source_id: int) -> None:
        with _translate_errors(f"Marking first run of source {source_id}"), self.conn:
            self.conn.execute("UPDATE sources SET first_run_completed = 1 WHERE id = ?", (source_id,))

    # =========================================================================
    # 5.0 URL RECORDS
    # =========================================================================

    def get_known_markers(self, source_id: int) -> Dict[str, Optional[str]]:
        """5.1 Mapping url -> last recorded marker (None when none was recorded)."""
        with _translate_errors(f"Loading URLs of source {source_id}"):
            rows = self.conn.execute(
                "SELECT url, last_modified FROM submitted_urls WHERE source_id = ?", (source_id,)
            ).fetchall()
        return {row["url"]: row["last_modified"] for row in rows}

    def record(self, source_id: int, url: str, marker: Optional[str]) -> None:
        """5.2 Insert or update the record for (source_id, url)."""
        with _translate_errors(f"Recording {url}"), self.conn:
            self.conn.execute(self.UPSERT_URL, (source_id, url, marker))

    def record_many(self, source_id: int, pairs: Iterable[Tuple[str, Optional[str]]]) -> int:
        """5.3 Upsert many (url, marker) pairs in a single transaction."""
        rows = [(source_id, url, marker) for url, marker in pairs]
        if not rows:
            return 0
        with _translate_errors(f"Recording {len(rows)} URLs for source {source_id}"), self.conn:
            self.conn.executemany(self.UPSERT_URL, rows)
        return len(rows)

    def count_urls(self, source_id: int) -> int:
        with _translate_errors(f"Counting URLs of source {source_id}"):
            row = self.conn.execute(
                "SELECT COUNT(*) FROM submitted_urls WHERE source_id = ?", (source_id,)
            ).fetchone()
        return row[0]

    # =========================================================================
    # 6.0 MAINTENANCE
    # =========================================================================

    def clear(self) -> None:
        """6.1 Remove every source and URL; the next run is a first run again."""
        with _translate_errors("Clearing database"), self.conn:
            self.conn.execute("DELETE FROM submitted_urls")
            self.conn.execute("DELETE FROM sources")
        logger.info(f"Cleared state database {self.db_path}")


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        kind=SourceKind(row["source_type"]),
        source_url=row["source_url"],
        api_key=row["api_key"],
        host=row["host"],
        searchengine=row["searchengine"],
        first_run_completed=row["first_run_completed"] == 1,
    )
