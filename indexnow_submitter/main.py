"""
1.0 Main Orchestrator Module
Coordinates fetching, change detection and IndexNow submission per source.

Key features:
- Sitemap index traversal or feed parsing per source
- First run: record everything, submit only after explicit approval
- Later runs: submit new and modified URLs, record each accepted batch
- Sources processed one after another in ascending id order
- Dry-run mode that reads but never writes or submits
- Source registration, editing and removal from the command line

Usage:
    python -m indexnow_submitter.main
    python -m indexnow_submitter.main --dry-run --entry 1,2
    python -m indexnow_submitter.main --unattended
    python -m indexnow_submitter.main --add --kind sitemap --url example.com/sitemap.xml --key abc123
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from indexnow_submitter import __version__
from indexnow_submitter.change_detector import ChangeSet, detect_changes, marker_to_persist
from indexnow_submitter.change_log import ChangeLog
from indexnow_submitter.config import (
    CONFIG_FILE_PATH,
    extract_host,
    load_config,
    mask_key,
    normalize_source_url,
)
from indexnow_submitter.errors import (
    ConfigError,
    ContentError,
    FetchError,
    StateStoreError,
    SubmissionError,
)
from indexnow_submitter.feed_reader import fetch_feed_urls
from indexnow_submitter.models import DEFAULT_SEARCHENGINE, Source, SourceKind, SubmitEntry, UrlEntry
from indexnow_submitter.sitemap_fetcher import SitemapFetcher
from indexnow_submitter.sitemap_traversal import SitemapTraversal
from indexnow_submitter.state_store import StateStore
from indexnow_submitter.submitter import IndexNowSubmitter

logger = logging.getLogger(__name__)

LOG_FILE = "indexnow_submitter.log"
PREVIEW_LIMIT = 5

Approval = Callable[[Source, int], bool]
SubmitterFactory = Callable[[Source], IndexNowSubmitter]


def configure_logging(verbose: bool = False, log_file: Optional[str] = LOG_FILE) -> None:
    """1.1 Setup logging: console plus an optional log file."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


# =============================================================================
# 2.0 APPROVAL PROMPTS
# =============================================================================

def confirm_on_stdin(prompt: str, default: bool = False) -> bool:
    """2.1 Ask a yes/no question; a non-interactive stdin always answers no."""
    if not sys.stdin or not sys.stdin.isatty():
        logger.info(f"{prompt} -> no (stdin is not interactive)")
        return False
    answer = input(f"{prompt} {'[Y/n]' if default else '[y/N]'} ").strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def ask_first_run_approval(source: Source, url_count: int) -> bool:
    logger.warning(
        "Submitting all URLs on first run may include outdated or deprecated links."
    )
    return confirm_on_stdin(f"Submit all {url_count} URLs found in source {source.id}?")


def ask_submission_approval(source: Source, url_count: int) -> bool:
    return confirm_on_stdin(f"Submit {url_count} URL(s) from source {source.id} to IndexNow?", default=True)


def approve_unattended(source: Source, url_count: int) -> bool:
    logger.info(f"Unattended mode: submitting {url_count} URL(s) of source {source.id} without confirmation.")
    return True


# =============================================================================
# 3.0 PER-SOURCE PIPELINE
# =============================================================================

def collect_entries(source: Source, fetcher: SitemapFetcher) -> List[UrlEntry]:
    """3.1 Fetch the URL list of a source (FetchError / ContentError propagate)."""
    logger.info(f"[{source.id}] Fetching {source.kind.value} from {source.source_url}")
    if source.kind is SourceKind.SITEMAP:
        traversal = SitemapTraversal(fetcher)
        entries = traversal.collect(source.source_url)
        stats = traversal.stats
        if stats.depth_skipped:
            logger.warning(f"[{source.id}] {stats.depth_skipped} sitemap branch(es) skipped at the depth limit")
        return entries
    return fetch_feed_urls(source.source_url, fetcher)


def log_change_preview(source: Source, changes: ChangeSet) -> None:
    """3.2 Show a few of the new and modified URLs."""
    new, modified = changes.new, changes.modified
    if new:
        logger.info(f"[{source.id}] New URLs ({len(new)}):")
        for entry in new[:PREVIEW_LIMIT]:
            logger.info(f"    * {entry.url} ({entry.fetched_marker or 'no date'})")
        if len(new) > PREVIEW_LIMIT:
            logger.info(f"    ... and {len(new) - PREVIEW_LIMIT} more")
    if modified:
        logger.info(f"[{source.id}] Modified URLs ({len(modified)}):")
        for entry in modified[:PREVIEW_LIMIT]:
            previous = changes.previous_markers.get(entry.url) or "unknown"
            logger.info(f"    * {entry.url} {previous} -> {entry.reason.marker}")
        if len(modified) > PREVIEW_LIMIT:
            logger.info(f"    ... and {len(modified) - PREVIEW_LIMIT} more")


class SourceProcessor:
    """
    4.0 SourceProcessor Class
    Runs the fetch -> detect -> submit -> record pipeline for one source at a time.
    """

    def __init__(
        self,
        store: StateStore,
        fetcher: SitemapFetcher,
        submitter_factory: SubmitterFactory,
        approve_first_run: Approval = ask_first_run_approval,
        approve_submission: Approval = ask_submission_approval,
        change_log: Optional[ChangeLog] = None,
        dry_run: bool = False,
    ):
        self.store = store
        self.fetcher = fetcher
        self.submitter_factory = submitter_factory
        self.approve_first_run = approve_first_run
        self.approve_submission = approve_submission
        self.change_log = change_log
        self.dry_run = dry_run

    def process(self, source: Source) -> Dict[str, Any]:
        """
        4.1 Process a single source.

        Fetch, content and submission errors propagate to the caller, which
        treats them as fatal for this source only.
        """
        entries = collect_entries(source, self.fetcher)
        if not entries:
            logger.warning(f"[{source.id}] No URLs found in {source.kind.value}.")
            return {"status": "warning", "message": "No URLs found"}

        logger.info(f"[{source.id}] Found {len(entries)} URLs in {source.kind.value}.")

        first_run = self.store.is_first_run(source.id)
        known = {} if first_run else self.store.get_known_markers(source.id)
        changes = detect_changes(entries, known, first_run=first_run)

        if self.dry_run:
            return self._report_dry_run(source, changes)
        if first_run:
            return self._handle_first_run(source, changes)
        return self._handle_subsequent_run(source, changes)

    def _report_dry_run(self, source: Source, changes: ChangeSet) -> Dict[str, Any]:
        if changes.first_run:
            logger.info(
                f"[{source.id}] First run detected. On an actual run all {len(changes.submissions)} "
                f"URL(s) would be recorded and submission would need approval."
            )
        elif changes.is_empty:
            logger.info(f"[{source.id}] No new or modified URLs to submit. All URLs are up to date.")
        else:
            logger.info(f"[{source.id}] Would submit {len(changes.submissions)} URL(s).")
            log_change_preview(source, changes)
        return {"status": "success", "dry_run": True, "would_submit": len(changes.submissions)}

    def _handle_first_run(self, source: Source, changes: ChangeSet) -> Dict[str, Any]:
        """4.2 Record every URL, then submit them only if approved."""
        entries = changes.submissions
        logger.info(f"[{source.id}] First run detected for this source. Storing {len(entries)} URLs...")
        self.store.record_many(source.id, [(e.url, marker_to_persist(e)) for e in entries])
        if self.change_log is not None:
            self.change_log.append(source, entries, status="recorded")

        submitted = 0
        if self.approve_first_run(source, len(entries)):
            logger.info(f"[{source.id}] Submitting {len(entries)} URL(s) to {source.searchengine}...")
            report = self.submitter_factory(source).submit_in_batches(entries, self._batch_recorder(source, changes))
            submitted = report.submitted
            logger.info(f"[{source.id}] Successfully submitted {submitted} URL(s).")
        else:
            logger.info(f"[{source.id}] URLs stored but not submitted. New content will be submitted on the next run.")

        self.store.mark_first_run_done(source.id)
        return {"status": "success", "first_run": True, "recorded": len(entries), "submitted": submitted}

    def _handle_subsequent_run(self, source: Source, changes: ChangeSet) -> Dict[str, Any]:
        """4.3 Submit new and modified URLs, recording each accepted batch."""
        if changes.is_empty:
            logger.info(f"[{source.id}] No new or modified URLs to submit. All URLs are up to date.")
            return {"status": "success", "submitted": 0}

        logger.info(
            f"[{source.id}] Found {len(changes.submissions)} URL(s) to submit: "
            f"{len(changes.new)} new, {len(changes.modified)} modified"
        )
        log_change_preview(source, changes)

        if not self.approve_submission(source, len(changes.submissions)):
            logger.info(f"[{source.id}] Submission cancelled. These changes will be offered again on the next run.")
            return {"status": "warning", "message": "Submission declined", "submitted": 0}

        submitter = self.submitter_factory(source)
        report = submitter.submit_in_batches(changes.submissions, self._batch_recorder(source, changes))

        logger.info(f"[{source.id}] Successfully submitted and stored {report.submitted} URL(s).")
        result = {"status": "success", "submitted": report.submitted}
        if report.unexpected:
            result["status"] = "warning"
            result["message"] = f"{report.unexpected} batch(es) got an unexpected response"
        return result

    def _batch_recorder(self, source: Source, changes: ChangeSet) -> Callable[[List[SubmitEntry], int], None]:
        def record_batch(batch: List[SubmitEntry], batch_number: int) -> None:
            self.store.record_many(source.id, [(e.url, marker_to_persist(e)) for e in batch])
            if self.change_log is not None:
                self.change_log.append(
                    source, batch, status="submitted", batch=batch_number,
                    previous_markers=changes.previous_markers,
                )
        return record_batch


def run_sources(processor: SourceProcessor, sources: Sequence[Source]) -> Dict[int, Dict[str, Any]]:
    """
    5.0 Process sources sequentially in ascending id order.

    Transport, content and submission failures are fatal for the current
    source only. State store errors propagate and end the run.
    """
    results: Dict[int, Dict[str, Any]] = {}
    for source in sorted(sources, key=lambda s: s.id):
        try:
            results[source.id] = processor.process(source)
        except (FetchError, ContentError) as e:
            logger.error(f"[{source.id}] FAILED fetching {source.source_url}: {e}")
            results[source.id] = {"status": "error", "message": str(e)}
        except SubmissionError as e:
            logger.error(f"[{source.id}] FAILED submitting: {e}")
            results[source.id] = {"status": "error", "message": str(e), "http_status": e.status}
        logger.info("-" * 40)
    return results


def log_summary(sources: Sequence[Source], results: Dict[int, Dict[str, Any]]) -> None:
    logger.info("=" * 60)
    logger.info("Source Processing Summary:")
    for source in sources:
        result = results.get(source.id, {})
        status = result.get("status", "unknown")
        label = f"[{source.id}] {source.source_url}"
        if status == "success":
            if result.get("dry_run"):
                logger.info(f"  [OK] {label}: {result.get('would_submit', 0)} URLs would be submitted")
            else:
                logger.info(f"  [OK] {label}: {result.get('submitted', 0)} URLs submitted")
        elif status == "warning":
            logger.warning(f"  [WARN] {label}: {result.get('message', 'warning')}")
        else:
            logger.error(f"  [FAIL] {label}: {result.get('message', 'failed')}")
    logger.info("=" * 60)


# =============================================================================
# 6.0 SOURCE MANAGEMENT COMMANDS
# =============================================================================

def check_source_reachable(source_url: str, config: Dict[str, Any]) -> None:
    """6.1 Fetch the source once; FetchError when it is not publicly reachable."""
    logger.info(f"Validating URL: {source_url}")
    fetcher = SitemapFetcher(config=config)
    try:
        fetcher.fetch(source_url)
    finally:
        fetcher.close()


def add_source(store: StateStore, args: argparse.Namespace, config: Dict[str, Any]) -> int:
    """6.2 Register a source from --kind/--url/--key/--host/--searchengine."""
    source_url = normalize_source_url(args.url or "")
    host = args.host or extract_host(source_url) or ""
    if not args.key:
        raise ConfigError("--key is required when adding a source")
    if store.source_exists(source_url):
        raise ConfigError(f"Source already registered: {source_url}")
    check_source_reachable(source_url, config)

    searchengine = args.searchengine or DEFAULT_SEARCHENGINE
    source_id = store.add_source(
        SourceKind(args.kind or SourceKind.FEED.value),
        source_url,
        api_key=args.key,
        host=host,
        searchengine=searchengine,
    )
    logger.info(f"Source {source_id} added: {source_url} (host={host}, searchengine={searchengine})")
    return 0


def edit_source(store: StateStore, args: argparse.Namespace, config: Dict[str, Any]) -> int:
    """6.3 Change the settings of a source; options not given keep their value."""
    source = store.get_source(args.edit)
    if source is None:
        logger.error(f"No source with ID {args.edit}.")
        return 1

    if args.url:
        source_url = normalize_source_url(args.url)
        if source_url != source.source_url:
            if store.source_exists(source_url):
                raise ConfigError(f"Source already registered: {source_url}")
            check_source_reachable(source_url, config)
            source.source_url = source_url
    if args.kind:
        source.kind = SourceKind(args.kind)
    if args.key:
        source.api_key = args.key
    if args.host:
        source.host = args.host
    if args.searchengine:
        source.searchengine = args.searchengine

    store.update_source(source)
    logger.info(
        f"Source {source.id} updated: {source.source_url} (host={source.host}, "
        f"key={mask_key(source.api_key)}, searchengine={source.searchengine})"
    )
    return 0


def list_sources(store: StateStore) -> int:
    sources = store.list_sources()
    if not sources:
        logger.info("No sources configured. Add one with --add.")
        return 0
    for source in sources:
        logger.info(
            f"[{source.id}] {source.kind.describe()}: {source.source_url} | host={source.host or '(not set)'} "
            f"| key={mask_key(source.api_key)} | searchengine={source.searchengine} "
            f"| first run {'done' if source.first_run_completed else 'pending'} "
            f"| {store.count_urls(source.id)} URLs stored"
        )
    return 0


def parse_entry_ids(value: str) -> List[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma-separated source IDs, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="indexnow-submitter",
        description="Submit new and modified feed/sitemap URLs to IndexNow",
    )
    parser.add_argument("--config", default=CONFIG_FILE_PATH, help=f"Configuration file (default: {CONFIG_FILE_PATH})")
    parser.add_argument("--entry", "-e", type=parse_entry_ids, default=None,
                        help="Process only these source IDs (comma-separated, e.g. 1,2,3)")
    parser.add_argument("--dry-run", "-d", action="store_true",
                        help="Show URLs that would be submitted without submitting or recording")
    parser.add_argument("--unattended", "-u", action="store_true",
                        help="Submit without confirmation, including on first run")
    parser.add_argument("--list", "-l", action="store_true", help="List configured sources")
    parser.add_argument("--add", "-a", action="store_true", help="Add a source (see --kind/--url/--key)")
    parser.add_argument("--edit", type=int, metavar="ID", help="Change the settings of a source")
    parser.add_argument("--remove", "-r", type=int, metavar="ID", help="Remove a source and its stored URLs")
    parser.add_argument("--clear-db", action="store_true", help="Delete all sources and stored URLs")
    parser.add_argument("--kind", choices=[k.value for k in SourceKind],
                        help=f"Source type for --add/--edit (default for --add: {SourceKind.FEED.value})")
    parser.add_argument("--url", help="Feed or sitemap URL for --add/--edit")
    parser.add_argument("--key", help="IndexNow API key for --add/--edit")
    parser.add_argument("--host", help="Site host for --add/--edit (default for --add: host of --url)")
    parser.add_argument("--searchengine",
                        help=f"IndexNow endpoint host for --add/--edit (default for --add: {DEFAULT_SEARCHENGINE})")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--version", "-V", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    7.0 CLI entry point.

    Flow:
    1. Load configuration and open the state database
    2. Handle a management command (--list/--add/--edit/--remove/--clear-db), or
    3. Process every selected source and print a summary
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    config = load_config(args.config)
    if not config:
        logger.error("Failed to load configuration. Exiting.")
        return 1

    try:
        with StateStore(config["database_path"]) as store:
            return dispatch(store, config, args)
    except StateStoreError as e:
        logger.error(f"FAILED accessing the state database: {e}")
        logger.exception("Full traceback:")
        return 1


def dispatch(store: StateStore, config: Dict[str, Any], args: argparse.Namespace) -> int:
    """7.1 Run the requested management command, or the pipeline."""
    try:
        if args.list:
            return list_sources(store)
        if args.add:
            return add_source(store, args, config)
        if args.edit is not None:
            return edit_source(store, args, config)
        if args.remove is not None:
            if store.remove_source(args.remove):
                logger.info(f"Source {args.remove} and its stored URLs removed.")
                return 0
            logger.error(f"No source with ID {args.remove}.")
            return 1
        if args.clear_db:
            if args.unattended or confirm_on_stdin("Delete all stored URLs and sources?"):
                store.clear()
                logger.info("Database cleared. The next run will be treated as a first run.")
            else:
                logger.info("Operation cancelled.")
            return 0
    except ConfigError as e:
        logger.error(str(e))
        return 1
    except FetchError as e:
        logger.error(f"{e}. Please verify the URL exists and is publicly accessible.")
        return 1

    return run(store, config, args)


def run(store: StateStore, config: Dict[str, Any], args: argparse.Namespace) -> int:
    """7.2 Run the submission pipeline over the selected sources."""
    sources = store.list_sources(args.entry)
    if not sources:
        if args.entry:
            logger.error(f"No sources found with IDs: {args.entry}. Run with --list to see available sources.")
        else:
            logger.error("No sources configured. Add one with --add.")
        return 1

    incomplete = [s for s in sources if s.missing_settings()]
    for source in incomplete:
        logger.error(
            f"Source {source.id} ({source.source_url}) is missing required configuration: "
            f"{', '.join(source.missing_settings())}."
        )
    if incomplete:
        return 1

    logger.info("=" * 60)
    logger.info("Starting IndexNow submission" + (" (DRY RUN - nothing will be submitted)" if args.dry_run else ""))
    logger.info(f"Run timestamp: {datetime.now(timezone.utc).isoformat()}")
    logger.info(f"Processing {len(sources)} source(s)")
    logger.info("=" * 60)

    change_log = None
    if config.get("change_log") and not args.dry_run:
        change_log = ChangeLog(config["data_directory"])

    fetcher = SitemapFetcher(config=config)
    processor = SourceProcessor(
        store=store,
        fetcher=fetcher,
        submitter_factory=lambda source: IndexNowSubmitter.from_source(source, config),
        approve_first_run=approve_unattended if args.unattended else ask_first_run_approval,
        approve_submission=approve_unattended if args.unattended else ask_submission_approval,
        change_log=change_log,
        dry_run=args.dry_run,
    )
    try:
        results = run_sources(processor, sources)
    finally:
        fetcher.close()

    log_summary(sources, results)
    failed = [source_id for source_id, result in results.items() if result.get("status") == "error"]
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
