"""
1.0 Change Log Module
Monthly CSV audit trail of what was recorded and submitted per source.

Layout (CSV-only):
    data/
        source_1/
            source_1_changes_YYYY-MM.csv   (monthly changes)

The log is informational: the state database stays the source of truth, so
a failed write is logged and does not stop a run.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pandas as pd

from indexnow_submitter.models import Modified, Source, SubmitEntry

logger = logging.getLogger(__name__)

CHANGE_LOG_COLUMNS = [
    'detected_at', 'source_id', 'source_url', 'loc', 'change_type',
    'lastmod', 'lastmod_prev', 'batch', 'status',
]


class ChangeLog:
    """
    2.0 ChangeLog Class
    Appends submission outcomes to per-source monthly CSV files.
    """

    def __init__(self, data_dir: str = "data"):
        self.data_dir = data_dir
        os.makedirs(self.data_dir, exist_ok=True)
        logger.debug(f"ChangeLog initialized with data directory: {data_dir}")

    def _source_dir(self, source_id: int) -> str:
        return os.path.join(self.data_dir, f"source_{source_id}")

    def get_monthly_change_log_path(self, source_id: int, run_ts: datetime) -> str:
        """2.1 Path of the change log for the month of run_ts."""
        month_str = run_ts.strftime("%Y-%m")
        return os.path.join(self._source_dir(source_id), f"source_{source_id}_changes_{month_str}.csv")

    def append(
        self,
        source: Source,
        entries: Sequence[SubmitEntry],
        status: str,
        batch: Optional[int] = None,
        previous_markers: Optional[Dict[str, Optional[str]]] = None,
        run_ts: Optional[datetime] = None,
    ) -> int:
        """
        2.2 Append one row per entry.

        Args:
            source: Source the entries belong to
            entries: Entries recorded or submitted together
            status: 'submitted' or 'recorded'
            batch: Batch number for submitted entries
            previous_markers: url -> stored marker before this run (Modified rows)
            run_ts: Timestamp of the run (defaults to now, UTC)

        Returns:
            Number of rows written
        """
        if not entries:
            return 0

        run_ts = run_ts or datetime.now(timezone.utc)
        previous_markers = previous_markers or {}

        rows: List[Dict] = []
        for entry in entries:
            is_modified = isinstance(entry.reason, Modified)
            rows.append({
                'detected_at': run_ts.isoformat(),
                'source_id': source.id,
                'source_url': source.source_url,
                'loc': entry.url,
                'change_type': entry.change_type,
                'lastmod': entry.reason.marker if is_modified else entry.fetched_marker,
                'lastmod_prev': previous_markers.get(entry.url) if is_modified else None,
                'batch': batch,
                'status': status,
            })

        path = self.get_monthly_change_log_path(source.id, run_ts)
        self._save_change_log(pd.DataFrame(rows), path)
        return len(rows)

    def _save_change_log(self, changes_df: pd.DataFrame, change_log_path: str) -> None:
        """
        2.3 Append detected changes to a monthly CSV log file.

        Handles schema migrations when new columns are added.
        """
        final_df = changes_df.reindex(columns=CHANGE_LOG_COLUMNS)

        try:
            os.makedirs(os.path.dirname(change_log_path), exist_ok=True)

            if not os.path.exists(change_log_path):
                final_df.to_csv(change_log_path, mode='w', header=True, index=False)
                logger.info(f"Created change log with {len(final_df):,} rows at {change_log_path}")
                return

            existing_cols = list(pd.read_csv(change_log_path, nrows=0).columns)
            if existing_cols != CHANGE_LOG_COLUMNS:
                # Schema mismatch - migrate existing data to new schema
                logger.info(f"Migrating {change_log_path} to the current column layout")
                existing_df = pd.read_csv(change_log_path, low_memory=False)
                existing_df = existing_df.reindex(columns=CHANGE_LOG_COLUMNS)
                combined_df = pd.concat([existing_df, final_df], ignore_index=True)
                combined_df.to_csv(change_log_path, mode='w', header=True, index=False)
            else:
                final_df.to_csv(change_log_path, mode='a', header=False, index=False)
            logger.info(f"Appended {len(final_df):,} rows to {change_log_path}")

        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.error(f"Error saving change log {change_log_path}: {e}")

    def load(self, source_id: int, run_ts: Optional[datetime] = None) -> pd.DataFrame:
        """2.4 Read the monthly log of a source (empty frame when absent)."""
        path = self.get_monthly_change_log_path(source_id, run_ts or datetime.now(timezone.utc))
        if not os.path.exists(path):
            return pd.DataFrame(columns=CHANGE_LOG_COLUMNS)
        return pd.read_csv(path)
