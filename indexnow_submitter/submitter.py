"""
1.0 IndexNow Submitter Module
Sends changed URLs to an IndexNow endpoint in batches.

Key features:
- Batches of at most MAX_BATCH_SIZE URLs, New and Modified mixed freely
- One-URL batch: GET /indexnow?url=...&key=...
- Larger batch: POST /indexnow with {"host", "key", "urlList"}
- 200/202 commit the batch; other 2xx also commit, with a warning
- 400/401/403/422/429 raise and stop the run
- Any other status is logged as unexpected, the batch is not committed and
  the next batch is sent
- No automatic retries: a rate-limited run is reported, not repeated
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Type

import requests
from requests.adapters import HTTPAdapter

from indexnow_submitter import __version__
from indexnow_submitter.errors import (
    BadRequestError,
    ForbiddenError,
    RateLimitedError,
    SubmissionError,
    SubmissionTransportError,
    UnauthorizedError,
    UnprocessableEntityError,
)
from indexnow_submitter.models import DEFAULT_SEARCHENGINE, Modified, Source, SubmitEntry

logger = logging.getLogger(__name__)

# IndexNow accepts up to 10,000 URLs per bulk request
MAX_BATCH_SIZE = 10_000

SUCCESS_STATUSES: Dict[int, str] = {
    200: "200 OK - Submission successful.",
    202: "202 Accepted - URL received.",
}

FATAL_STATUSES: Dict[int, Type[SubmissionError]] = {
    400: BadRequestError,
    401: UnauthorizedError,
    403: ForbiddenError,
    422: UnprocessableEntityError,
    429: RateLimitedError,
}

BatchCallback = Callable[[List[SubmitEntry], int], None]


@dataclass
class BatchResult:
    index: int
    size: int
    status: int
    committed: bool


@dataclass
class SubmissionReport:
    batches: List[BatchResult] = field(default_factory=list)

    @property
    def submitted(self) -> int:
        return sum(b.size for b in self.batches if b.committed)

    @property
    def unexpected(self) -> int:
        return sum(1 for b in self.batches if not b.committed)


def chunk_entries(entries: Sequence[SubmitEntry], size: int = MAX_BATCH_SIZE) -> Iterator[List[SubmitEntry]]:
    """Consecutive slices of at most size entries."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    for start in range(0, len(entries), size):
        yield list(entries[start:start + size])


class IndexNowSubmitter:
    """
    2.0 IndexNowSubmitter Class
    Talks to https://<searchengine>/indexnow for one source.
    """

    def __init__(
        self,
        api_key: str,
        host: str,
        searchengine: str = DEFAULT_SEARCHENGINE,
        config: Optional[Dict] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        2.1 Initialize the submitter.

        Args:
            api_key: IndexNow key of the site
            host: Site host sent in bulk requests
            searchengine: Notification endpoint host
            config: Optional dict with user_agent and submit_timeout
            session: Optional pre-built session (tests)
        """
        config = config or {}
        self.api_key = api_key
        self.host = host
        self.searchengine = searchengine or DEFAULT_SEARCHENGINE
        self.timeout = config.get("submit_timeout", 30)
        self.batch_size = MAX_BATCH_SIZE
        self.session = session or self._create_session(
            config.get("user_agent") or f"indexnow-submitter/{__version__}"
        )

    @classmethod
    def from_source(cls, source: Source, config: Optional[Dict] = None) -> "IndexNowSubmitter":
        return cls(source.api_key, source.host, source.searchengine, config=config)

    @staticmethod
    def _create_session(user_agent: str) -> requests.Session:
        session = requests.Session()
        # Submissions are never retried automatically
        adapter = HTTPAdapter(max_retries=0)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"User-Agent": user_agent})
        return session

    @property
    def endpoint(self) -> str:
        return f"https://{self.searchengine}/indexnow"

    # =========================================================================
    # 3.0 BATCHING
    # =========================================================================

    def submit_in_batches(
        self,
        entries: Sequence[SubmitEntry],
        on_batch_success: Optional[BatchCallback] = None,
    ) -> SubmissionReport:
        """
        3.1 Submit entries in consecutive batches.

        on_batch_success(batch, batch_number) runs right after a batch is
        accepted, before the next request, so callers can persist it.

        Raises:
            SubmissionError: on the first fatal status; later batches are not sent
        """
        report = SubmissionReport()
        total = len(entries)
        if total == 0:
            return report

        num_batches = (total + self.batch_size - 1) // self.batch_size
        if num_batches > 1:
            logger.info(f"Submitting {total} URLs in {num_batches} batches (max {self.batch_size} per batch)")

        for batch_number, batch in enumerate(chunk_entries(entries, self.batch_size), start=1):
            context = f"batch {batch_number}/{num_batches} ({len(batch)} URL{'s' if len(batch) != 1 else ''})"
            if len(batch) == 1:
                status = self.submit_single(batch[0], context)
            else:
                status = self.submit_bulk(batch, context)

            committed = self._handle_status(status, context)
            report.batches.append(BatchResult(batch_number, len(batch), status, committed))

            if committed and on_batch_success is not None:
                on_batch_success(batch, batch_number)

        return report

    # =========================================================================
    # 4.0 WIRE SHAPES
    # =========================================================================

    def submit_single(self, entry: SubmitEntry, context: str = "single URL") -> int:
        """4.1 GET with url and key query parameters; returns the HTTP status."""
        _log_entry(entry, logging.INFO)
        try:
            response = self.session.get(
                self.endpoint,
                params={"url": entry.url, "key": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise SubmissionTransportError(context, detail=str(e)) from e
        return response.status_code

    def submit_bulk(self, entries: Sequence[SubmitEntry], context: str = "bulk submission") -> int:
        """4.2 POST the JSON body {host, key, urlList}; returns the HTTP status."""
        logger.info(f"Bulk submission of {len(entries)} URLs to {self.endpoint}")
        for entry in entries:
            _log_entry(entry, logging.DEBUG)

        payload = {
            "host": self.host,
            "key": self.api_key,
            "urlList": [entry.url for entry in entries],
        }
        try:
            response = self.session.post(
                self.endpoint,
                json=payload,
                headers={"Content-Type": "application/json; charset=utf-8"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise SubmissionTransportError(context, detail=str(e)) from e
        return response.status_code

    # =========================================================================
    # 5.0 STATUS HANDLING
    # =========================================================================

    def _handle_status(self, status: int, context: str) -> bool:
        """5.1 True when the batch is accepted; raises on fatal statuses."""
        if status in SUCCESS_STATUSES:
            logger.info(f"{SUCCESS_STATUSES[status]} ({context})")
            return True

        if 200 <= status < 300:
            logger.warning(f"{status} {context} - Unexpected success status. Batch recorded.")
            return True

        error_cls = FATAL_STATUSES.get(status)
        if error_cls is not None:
            error = error_cls(context)
            logger.error(str(error))
            for number, hint in enumerate(error.hints, start=1):
                logger.error(f"  How to fix {number}. {hint}")
            raise error

        logger.warning(f"{status} {context} - Unexpected response. Batch not recorded, continuing.")
        return False


def _log_entry(entry: SubmitEntry, level: int) -> None:
    if isinstance(entry.reason, Modified):
        logger.log(level, f"  * {entry.url} (modified on {entry.reason.marker})")
    else:
        logger.log(level, f"  * {entry.url} (new)")
