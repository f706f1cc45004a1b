"""
Exception hierarchy.

Transport and content errors are fatal to one source. Submission errors abort
the remaining batches for that source. State store errors abort the run.
"""

from typing import List, Optional


class IndexNowSubmitterError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(IndexNowSubmitterError):
    pass


# =============================================================================
# FETCHING AND CONTENT
# =============================================================================

class FetchError(IndexNowSubmitterError):
    """A feed or sitemap document could not be retrieved."""

    def __init__(self, url: str, status: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status = status
        self.reason = reason
        if status is not None:
            message = f"Failed to fetch {url}: HTTP {status}"
        else:
            message = f"Failed to fetch {url}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ContentError(IndexNowSubmitterError):
    """A fetched document could not be interpreted at all."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Malformed content at {url}: {reason}")


class SitemapContentError(ContentError):
    pass


class FeedContentError(ContentError):
    pass


# =============================================================================
# SUBMISSION
# =============================================================================

class SubmissionError(IndexNowSubmitterError):
    """A submission batch failed; remaining batches are not attempted."""

    status: Optional[int] = None
    reason_phrase = "Submission failed"
    description = ""
    hints: List[str] = []

    def __init__(self, context: str, status: Optional[int] = None, detail: str = ""):
        if status is not None:
            self.status = status
        self.context = context
        self.detail = detail
        message = f"{self.reason_phrase}"
        if self.status is not None:
            message = f"{self.status} {message}"
        message = f"{message}: {context}"
        if self.description:
            message = f"{message} - {self.description}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class BadRequestError(SubmissionError):
    status = 400
    reason_phrase = "Bad Request"
    description = "Invalid format or malformed request."
    hints = [
        "Check that your feed URLs are valid and properly formatted.",
        "Ensure URLs use https:// or http:// scheme.",
        "Verify your host configuration matches your domain.",
    ]


class UnauthorizedError(SubmissionError):
    status = 401
    reason_phrase = "Unauthorized"
    description = "Invalid or missing API key."
    hints = [
        "Verify your API key is correct.",
        "Make sure the key file exists at https://yourdomain.com/{key}.txt",
        "The key file must contain only the key value, nothing else.",
    ]


class ForbiddenError(SubmissionError):
    status = 403
    reason_phrase = "Forbidden"
    description = "Key mismatch or invalid host."
    hints = [
        "Ensure your API key file is accessible at https://{host}/{key}.txt",
        "Check that the host of the source matches the URLs you're submitting.",
        "Verify the key file contains the exact key value (no extra whitespace).",
    ]


class UnprocessableEntityError(SubmissionError):
    status = 422
    reason_phrase = "Unprocessable Entity"
    description = "URLs don't belong to the host or key mismatch."
    hints = [
        "All URLs must belong to the same host registered for the source.",
        "Check that your feed/sitemap only contains URLs from your domain.",
    ]


class RateLimitedError(SubmissionError):
    status = 429
    reason_phrase = "Rate limit exceeded"
    description = "Too many requests."
    hints = [
        "Wait some time before retrying (usually a few minutes to hours).",
        "Consider submitting fewer URLs at once.",
        "IndexNow has rate limits - space out your submissions.",
    ]


class SubmissionTransportError(SubmissionError):
    reason_phrase = "Submission request failed"


# =============================================================================
# PERSISTED STATE
# =============================================================================

class StateStoreError(IndexNowSubmitterError):
    pass
