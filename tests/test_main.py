"""
Orchestration - first run gate, incremental runs, dry run and the CLI.
"""

import json
from unittest.mock import MagicMock

import pytest

from conftest import FakeFetcher, make_response, urlset
from indexnow_submitter import main as cli
from indexnow_submitter.change_log import ChangeLog
from indexnow_submitter.errors import FetchError, StateStoreError
from indexnow_submitter.main import SourceProcessor, run_sources
from indexnow_submitter.models import SourceKind
from indexnow_submitter.state_store import StateStore
from indexnow_submitter.submitter import IndexNowSubmitter

SITEMAP = "https://example.com/sitemap.xml"


class Harness:
    """A SourceProcessor wired to a fake fetcher and a mocked submission session."""

    def __init__(self, store, documents, approve=True, approve_submission=True, change_log=None, dry_run=False,
                 batch_size=None):
        self.fetcher = FakeFetcher(documents)
        self.session = MagicMock()
        self.session.get.return_value = make_response(200)
        self.session.post.return_value = make_response(200)
        self.approvals = []
        self.submission_prompts = []
        self.batch_size = batch_size
        self.processor = SourceProcessor(
            store=store,
            fetcher=self.fetcher,
            submitter_factory=self.make_submitter,
            approve_first_run=lambda source, count: self.approvals.append(count) or approve,
            approve_submission=lambda source, count: self.submission_prompts.append(count) or approve_submission,
            change_log=change_log,
            dry_run=dry_run,
        )

    def make_submitter(self, source):
        submitter = IndexNowSubmitter(source.api_key, source.host, source.searchengine, session=self.session)
        if self.batch_size:
            submitter.batch_size = self.batch_size
        return submitter

    @property
    def submission_calls(self):
        return self.session.get.call_count + self.session.post.call_count


# =============================================================================
# 1. FIRST RUN
# =============================================================================

def test_first_run_approved_submits_everything(store, sitemap_source):
    harness = Harness(store, {SITEMAP: urlset(("https://example.com/1", "2025-01-01"), ("https://example.com/2", None))})
    result = harness.processor.process(sitemap_source)

    assert harness.approvals == [2]
    assert result["submitted"] == 2
    assert harness.session.post.call_count == 1
    assert store.is_first_run(sitemap_source.id) is False
    assert store.get_known_markers(sitemap_source.id) == {
        "https://example.com/1": "2025-01-01",
        "https://example.com/2": None,
    }


def test_first_run_declined_records_without_submitting(store, sitemap_source):
    harness = Harness(store, {SITEMAP: urlset(("https://example.com/1", "2025-01-01"))}, approve=False)
    result = harness.processor.process(sitemap_source)

    assert result["submitted"] == 0
    assert harness.submission_calls == 0
    assert store.count_urls(sitemap_source.id) == 1
    assert store.is_first_run(sitemap_source.id) is False


def test_first_run_submission_failure_leaves_flag_unset(store, sitemap_source):
    harness = Harness(store, {SITEMAP: urlset(("https://example.com/1", None))})
    harness.session.get.return_value = make_response(401)
    results = run_sources(harness.processor, [sitemap_source])

    assert results[sitemap_source.id]["status"] == "error"
    assert "Unauthorized" in results[sitemap_source.id]["message"]
    assert store.is_first_run(sitemap_source.id) is True


# =============================================================================
# 2. SUBSEQUENT RUNS
# =============================================================================

def test_incremental_run_submits_only_changes(store, sitemap_source, tmp_path):
    store.record_many(sitemap_source.id, [("https://example.com/1", "2025-01-01"), ("https://example.com/2", "2025-01-01")])
    store.mark_first_run_done(sitemap_source.id)
    change_log = ChangeLog(str(tmp_path / "data"))
    harness = Harness(store, {SITEMAP: urlset(
        ("https://example.com/1", "2025-01-01"),
        ("https://example.com/2", "2025-02-01"),
        ("https://example.com/3", None),
    )}, change_log=change_log)

    result = harness.processor.process(sitemap_source)

    assert harness.approvals == []
    assert result == {"status": "success", "submitted": 2}
    assert harness.session.post.call_args.kwargs["json"]["urlList"] == ["https://example.com/2", "https://example.com/3"]
    assert store.get_known_markers(sitemap_source.id)["https://example.com/2"] == "2025-02-01"
    assert "https://example.com/3" in store.get_known_markers(sitemap_source.id)

    logged = change_log.load(sitemap_source.id)
    assert logged["change_type"].tolist() == ["modified", "new"]
    assert logged.loc[0, "lastmod_prev"] == "2025-01-01"

    # nothing left on the next pass
    assert harness.processor.process(sitemap_source) == {"status": "success", "submitted": 0}


def test_failed_submission_does_not_record(store, sitemap_source):
    store.mark_first_run_done(sitemap_source.id)
    harness = Harness(store, {SITEMAP: urlset(("https://example.com/1", None))})
    harness.session.get.return_value = make_response(429)
    results = run_sources(harness.processor, [sitemap_source])

    assert results[sitemap_source.id]["http_status"] == 429
    assert store.count_urls(sitemap_source.id) == 0


def test_dry_run_writes_nothing(store, sitemap_source):
    harness = Harness(store, {SITEMAP: urlset(("https://example.com/1", None))}, dry_run=True)
    result = harness.processor.process(sitemap_source)

    assert result["would_submit"] == 1
    assert harness.submission_calls == 0
    assert harness.approvals == []
    assert store.count_urls(sitemap_source.id) == 0
    assert store.is_first_run(sitemap_source.id) is True


def test_feed_source_is_read_with_feed_reader(store):
    feed_url = "https://example.com/feed.xml"
    source = store.get_source(store.add_source(SourceKind.FEED, feed_url, api_key="key", host="example.com"))
    rss = (b"<rss version='2.0'><channel><title>t</title>"
           b"<item><link>https://example.com/post</link></item></channel></rss>")
    harness = Harness(store, {feed_url: rss})
    harness.processor.process(source)
    assert store.get_known_markers(source.id) == {"https://example.com/post": None}


# =============================================================================
# 3. MULTIPLE SOURCES
# =============================================================================

def test_fetch_failure_is_isolated_to_its_source(store, sitemap_source):
    second_url = "https://other.example/sitemap.xml"
    second = store.get_source(store.add_source(SourceKind.SITEMAP, second_url, api_key="key", host="other.example"))
    harness = Harness(store, {
        SITEMAP: FetchError(SITEMAP, status=503, reason="Service Unavailable"),
        second_url: urlset(("https://other.example/1", None)),
    })

    results = run_sources(harness.processor, [second, sitemap_source])

    assert harness.fetcher.requested == [SITEMAP, second_url]
    assert results[sitemap_source.id]["status"] == "error"
    assert results[second.id]["status"] == "success"


# =============================================================================
# 4. CONFIRMATION AND STATE ERRORS
# =============================================================================

def test_incremental_run_asks_before_submitting(store, sitemap_source):
    store.mark_first_run_done(sitemap_source.id)
    harness = Harness(store, {SITEMAP: urlset(("https://example.com/1", None))}, approve_submission=False)
    result = harness.processor.process(sitemap_source)

    assert harness.submission_prompts == [1]
    assert result["status"] == "warning"
    assert harness.submission_calls == 0
    # declined changes are offered again next time
    assert store.count_urls(sitemap_source.id) == 0


def test_first_run_uses_only_first_run_prompt(store, sitemap_source):
    harness = Harness(store, {SITEMAP: urlset(("https://example.com/1", None))})
    harness.processor.process(sitemap_source)
    assert harness.approvals == [1]
    assert harness.submission_prompts == []


def test_non_interactive_stdin_declines(monkeypatch):
    stdin = MagicMock()
    stdin.isatty.return_value = False
    monkeypatch.setattr(cli.sys, "stdin", stdin)
    assert cli.confirm_on_stdin("Submit?", default=True) is False


def test_interactive_empty_answer_takes_default(monkeypatch):
    stdin = MagicMock()
    stdin.isatty.return_value = True
    monkeypatch.setattr(cli.sys, "stdin", stdin)
    monkeypatch.setattr("builtins.input", lambda prompt: "")
    assert cli.confirm_on_stdin("Submit?", default=True) is True
    assert cli.confirm_on_stdin("Submit?") is False


def test_state_write_error_propagates_and_stops_batches(store, sitemap_source, monkeypatch):
    store.mark_first_run_done(sitemap_source.id)
    harness = Harness(store, {SITEMAP: urlset(("https://example.com/1", None), ("https://example.com/2", None))},
                      batch_size=1)
    monkeypatch.setattr(store, "record_many", MagicMock(side_effect=StateStoreError("disk I/O error")))

    with pytest.raises(StateStoreError):
        run_sources(harness.processor, [sitemap_source])
    assert harness.session.get.call_count == 1


# =============================================================================
# 5. COMMAND LINE
# =============================================================================

@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "configure_logging", lambda verbose=False, log_file=None: None)
    fetch = MagicMock(return_value=b"<urlset/>")
    monkeypatch.setattr(cli.SitemapFetcher, "fetch", fetch)
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        "database_path": str(tmp_path / "state.db"),
        "data_directory": str(tmp_path / "data"),
    }))
    env = MagicMock()
    env.config = str(config_path)
    env.db = str(tmp_path / "state.db")
    env.fetch = fetch
    return env


def only_source(db_path):
    with StateStore(db_path) as store:
        [source] = store.list_sources()
    return source


def test_cli_add_and_remove_source(cli_env):
    assert cli.main(["--config", cli_env.config, "--add", "--kind", "sitemap",
                     "--url", "http://example.com/sitemap.xml", "--key", "abc123"]) == 0
    cli_env.fetch.assert_called_once_with("https://example.com/sitemap.xml")
    source = only_source(cli_env.db)
    assert source.source_url == "https://example.com/sitemap.xml"
    assert source.host == "example.com"
    assert source.kind is SourceKind.SITEMAP

    assert cli.main(["--config", cli_env.config, "--list"]) == 0
    assert cli.main(["--config", cli_env.config, "--remove", str(source.id)]) == 0
    assert cli.main(["--config", cli_env.config, "--remove", str(source.id)]) == 1


def test_cli_add_defaults_to_feed(cli_env):
    assert cli.main(["--config", cli_env.config, "--add", "--url", "example.com/feed", "--key", "k"]) == 0
    source = only_source(cli_env.db)
    assert source.kind is SourceKind.FEED
    assert source.searchengine == "api.indexnow.org"


def test_cli_add_requires_key(cli_env):
    assert cli.main(["--config", cli_env.config, "--add", "--url", "example.com/feed"]) == 1


def test_cli_add_rejects_unreachable_url(cli_env):
    url = "https://example.com/missing.xml"
    cli_env.fetch.side_effect = FetchError(url, status=404, reason="Not Found")
    assert cli.main(["--config", cli_env.config, "--add", "--url", url, "--key", "k"]) == 1
    with StateStore(cli_env.db) as store:
        assert store.list_sources() == []


def test_cli_edit_changes_only_given_settings(cli_env):
    cli.main(["--config", cli_env.config, "--add", "--url", "https://example.com/feed", "--key", "oldkey"])
    source_id = only_source(cli_env.db).id

    assert cli.main(["--config", cli_env.config, "--edit", str(source_id), "--key", "newkey",
                     "--searchengine", "www.bing.com", "--url", "http://example.com/rss"]) == 0
    source = only_source(cli_env.db)
    assert source.api_key == "newkey"
    assert source.searchengine == "www.bing.com"
    assert source.source_url == "https://example.com/rss"
    assert source.host == "example.com"
    assert source.kind is SourceKind.FEED


def test_cli_edit_unknown_source(cli_env):
    assert cli.main(["--config", cli_env.config, "--edit", "42", "--key", "k"]) == 1


def test_cli_edit_rejects_url_of_other_source(cli_env):
    cli.main(["--config", cli_env.config, "--add", "--url", "https://example.com/a", "--key", "k"])
    cli.main(["--config", cli_env.config, "--add", "--url", "https://example.com/b", "--key", "k"])
    assert cli.main(["--config", cli_env.config, "--edit", "2", "--url", "https://example.com/a"]) == 1


def test_cli_rejects_incomplete_source_before_fetching(cli_env):
    with StateStore(cli_env.db) as store:
        store.add_source(SourceKind.FEED, "https://example.com/feed.xml", api_key="", host="example.com")
    assert cli.main(["--config", cli_env.config]) == 1
    cli_env.fetch.assert_not_called()


def test_cli_without_sources_fails(cli_env):
    assert cli.main(["--config", cli_env.config]) == 1


def test_cli_state_error_exits_cleanly(cli_env, monkeypatch):
    monkeypatch.setattr(cli, "run", MagicMock(side_effect=StateStoreError("database is locked")))
    assert cli.main(["--config", cli_env.config]) == 1


def test_parse_entry_ids():
    assert cli.parse_entry_ids("1, 2,3") == [1, 2, 3]
