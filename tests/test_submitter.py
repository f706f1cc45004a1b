"""
IndexNow submitter - batching, wire shapes and status classification.
"""

from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_response
from indexnow_submitter.errors import (
    BadRequestError,
    RateLimitedError,
    SubmissionError,
    SubmissionTransportError,
    UnauthorizedError,
)
from indexnow_submitter.models import Modified, New, Source, SourceKind, SubmitEntry
from indexnow_submitter.submitter import MAX_BATCH_SIZE, IndexNowSubmitter, chunk_entries


def entries(count: int):
    return [SubmitEntry(f"https://example.com/{n}", New()) for n in range(count)]


@pytest.fixture
def session():
    fake = MagicMock()
    fake.get.return_value = make_response(200)
    fake.post.return_value = make_response(202)
    return fake


@pytest.fixture
def submitter(session):
    return IndexNowSubmitter("abc123", "example.com", "api.indexnow.org", session=session)


# =============================================================================
# 1. WIRE SHAPES
# =============================================================================

def test_single_entry_uses_get_with_query(submitter, session):
    report = submitter.submit_in_batches([SubmitEntry("https://example.com/1", Modified("2025-02-01"))])
    session.get.assert_called_once_with(
        "https://api.indexnow.org/indexnow",
        params={"url": "https://example.com/1", "key": "abc123"},
        timeout=30,
    )
    session.post.assert_not_called()
    assert report.submitted == 1


def test_multiple_entries_use_json_post(submitter, session):
    submitter.submit_in_batches(entries(2))
    args, kwargs = session.post.call_args
    assert args == ("https://api.indexnow.org/indexnow",)
    assert kwargs["json"] == {
        "host": "example.com",
        "key": "abc123",
        "urlList": ["https://example.com/0", "https://example.com/1"],
    }
    assert kwargs["headers"]["Content-Type"] == "application/json; charset=utf-8"


def test_from_source_uses_source_settings():
    source = Source(1, SourceKind.FEED, "https://example.com/feed", api_key="key1", host="example.com",
                    searchengine="www.bing.com")
    submitter = IndexNowSubmitter.from_source(source, {"submit_timeout": 5})
    assert submitter.endpoint == "https://www.bing.com/indexnow"
    assert submitter.timeout == 5
    assert submitter.session.get_adapter("https://www.bing.com").max_retries.total == 0


# =============================================================================
# 2. BATCHING
# =============================================================================

def test_10001_entries_make_bulk_then_single(submitter, session):
    committed = []
    report = submitter.submit_in_batches(entries(MAX_BATCH_SIZE + 1), lambda batch, n: committed.append((n, len(batch))))
    assert session.post.call_count == 1
    assert len(session.post.call_args.kwargs["json"]["urlList"]) == MAX_BATCH_SIZE
    assert session.get.call_count == 1
    assert committed == [(1, MAX_BATCH_SIZE), (2, 1)]
    assert report.submitted == MAX_BATCH_SIZE + 1


def test_empty_input_makes_no_calls(submitter, session):
    report = submitter.submit_in_batches([])
    assert report.batches == []
    session.get.assert_not_called()
    session.post.assert_not_called()


def test_chunk_entries_sizes():
    assert [len(c) for c in chunk_entries(entries(5), 2)] == [2, 2, 1]
    with pytest.raises(ValueError):
        list(chunk_entries(entries(1), 0))


# =============================================================================
# 3. STATUS HANDLING
# =============================================================================

def test_401_on_first_batch_stops_run(submitter, session):
    submitter.batch_size = 2
    session.post.return_value = make_response(401)
    committed = []
    with pytest.raises(UnauthorizedError) as excinfo:
        submitter.submit_in_batches(entries(4), lambda batch, n: committed.append(n))
    assert "Unauthorized" in str(excinfo.value)
    assert excinfo.value.status == 401
    assert session.post.call_count == 1
    assert committed == []


def test_429_after_first_batch_keeps_committed_batch(submitter, session):
    submitter.batch_size = 2
    session.post.side_effect = [make_response(200), make_response(429)]
    committed = []
    with pytest.raises(RateLimitedError) as excinfo:
        submitter.submit_in_batches(entries(4), lambda batch, n: committed.append(n))
    assert committed == [1]
    assert "Rate limit exceeded" in str(excinfo.value)


@pytest.mark.parametrize("status", [400, 403, 422])
def test_other_fatal_statuses_raise(submitter, session, status):
    session.get.return_value = make_response(status)
    with pytest.raises(SubmissionError) as excinfo:
        submitter.submit_in_batches(entries(1))
    assert excinfo.value.status == status
    assert excinfo.value.hints


def test_bad_request_message(submitter, session):
    session.get.return_value = make_response(400)
    with pytest.raises(BadRequestError, match="400 Bad Request: batch 1/1 \\(1 URL\\)"):
        submitter.submit_in_batches(entries(1))


def test_unexpected_status_skips_batch_and_continues(submitter, session):
    submitter.batch_size = 2
    session.post.side_effect = [make_response(500), make_response(200)]
    committed = []
    report = submitter.submit_in_batches(entries(4), lambda batch, n: committed.append(n))
    assert committed == [2]
    assert report.unexpected == 1
    assert report.submitted == 2


def test_transport_failure_is_not_retried(submitter, session):
    session.get.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(SubmissionTransportError):
        submitter.submit_in_batches(entries(1))
    assert session.get.call_count == 1


def test_other_2xx_commits_batch(submitter, session):
    session.get.return_value = make_response(204)
    committed = []
    report = submitter.submit_in_batches(entries(1), lambda batch, n: committed.append(n))
    assert committed == [1]
    assert report.unexpected == 0
