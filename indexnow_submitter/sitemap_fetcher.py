"""
1.0 Sitemap Fetcher Module
Fetches sitemap and feed documents with retry logic.

Key features:
- Automatic retry on transient failures (429, 500, 502, 503, 504)
- Exponential backoff between retries
- Configurable timeout and user agent
- Session reuse for connection pooling
- Simple download delay for politeness between documents
- Transparent gunzip of .xml.gz sitemaps
- Any failure raises FetchError: a partially fetched tree is not trusted
"""

import gzip
import logging
import time
from typing import Optional, Dict, Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from indexnow_submitter import __version__
from indexnow_submitter.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"indexnow-submitter/{__version__}"
GZIP_MAGIC = b"\x1f\x8b"


class SitemapFetcher:
    """
    2.0 SitemapFetcher Class
    Fetches documents with built-in retry logic.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        2.1 Initialize the SitemapFetcher with retry strategy.

        Args:
            config: Configuration dictionary with optional keys:
                - user_agent: Custom user agent string
                - fetch_timeout: Request timeout in seconds (default: 60)
                - max_retries: Number of retry attempts (default: 3)
                - download_delay: Delay between requests in seconds (default: 0.5)
        """
        # 2.1.1 Extract config values with defaults
        config = config or {}

        self.user_agent = config.get("user_agent", DEFAULT_USER_AGENT)
        if not isinstance(self.user_agent, str) or not self.user_agent.strip():
            self.user_agent = DEFAULT_USER_AGENT
            logger.warning(f"Invalid user_agent in config. Using default: {self.user_agent}")

        self.timeout = config.get("fetch_timeout", 60)
        self.max_retries = int(config.get("max_retries", 3))
        self.download_delay = float(config.get("download_delay", 0.5))

        # 2.1.2 Track requests for delay logic
        self.request_count = 0
        self.last_request_time = 0.0
        self.last_content_type = ""

        # 2.1.3 Create session with retry strategy
        self.session = self._create_session_with_retries()

        logger.debug(
            f"SitemapFetcher initialized: "
            f"User-Agent={self.user_agent[:50]}, "
            f"timeout={self.timeout}s, "
            f"delay={self.download_delay}s"
        )

    def _create_session_with_retries(self) -> requests.Session:
        """
        2.2 Create a requests Session with automatic retry logic.

        Retry strategy:
        - Retries on: 429 (rate limit), 500, 502, 503, 504 (server errors)
        - Backoff: 1s, 2s, 4s between retries (exponential)
        - Also retries on connection errors

        Returns:
            Configured requests.Session object
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"],
            raise_on_status=False,  # final status is judged in fetch()
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({"User-Agent": self.user_agent})

        return session

    def _apply_politeness_delay(self) -> None:
        """
        2.3 Apply delay between requests for politeness.
        """
        if self.request_count == 0:
            self.request_count += 1
            self.last_request_time = time.time()
            return

        elapsed = time.time() - self.last_request_time
        wait_time = max(0, self.download_delay - elapsed)

        if wait_time > 0:
            time.sleep(wait_time)

        self.request_count += 1
        self.last_request_time = time.time()

    def fetch(self, url: str, timeout: Optional[float] = None) -> bytes:
        """
        2.4 Fetch the raw body of a document.

        Args:
            url: The URL of the sitemap or feed to fetch
            timeout: Optional override for request timeout

        Returns:
            Response body as bytes, gunzipped when the payload is gzip data

        Raises:
            FetchError: invalid URL, connection failure, timeout or non-2xx status
        """
        # 2.4.1 Validate URL
        if not url or not url.startswith(("http://", "https://")):
            raise FetchError(url, reason="not an absolute http(s) URL")

        # 2.4.2 Apply politeness delay
        self._apply_politeness_delay()

        timeout = timeout or self.timeout

        logger.info(f"Fetching: {url}")

        try:
            # 2.4.3 Make request (retries handled automatically by adapter)
            response = self.session.get(url, timeout=timeout)
        except requests.exceptions.Timeout:
            raise FetchError(url, reason=f"timed out after {timeout}s")
        except requests.exceptions.ConnectionError as e:
            raise FetchError(url, reason=f"connection error: {e}")
        except requests.exceptions.RequestException as e:
            raise FetchError(url, reason=f"request error: {e}")

        # 2.4.4 Anything outside 2xx is a hard failure
        if not 200 <= response.status_code < 300:
            logger.error(f"Failed to fetch {url}: status={response.status_code}")
            raise FetchError(url, status=response.status_code, reason=response.reason or "")

        self.last_content_type = response.headers.get("Content-Type", "")
        content = response.content or b""
        logger.info(
            f"Fetched {url} "
            f"(status={response.status_code}, size={len(content):,} bytes)"
        )
        return self._decompress_if_needed(content, url)

    def _decompress_if_needed(self, content: bytes, url: str) -> bytes:
        """2.5 Gunzip payloads that start with the gzip magic number."""
        if not content.startswith(GZIP_MAGIC):
            return content
        try:
            return gzip.decompress(content)
        except (OSError, EOFError) as e:
            raise FetchError(url, reason=f"gzip decompression failed: {e}")

    def close(self) -> None:
        self.session.close()
