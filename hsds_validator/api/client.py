"""
URI client for data package descriptors, schemas and data files

Reads local paths directly and fetches remote URLs over HTTP with rate
limiting, retries and structured request logging.
"""

import json
import logging
import random
import time
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import requests
from ratelimit import limits, sleep_and_retry

from hsds_validator import __version__
from hsds_validator.utils.logging_config import log_api_request

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = ('http', 'https')


class TransientError(Exception):
    """Raised for temporary errors that should be retried"""
    pass


class PermanentError(Exception):
    """Raised for permanent errors that should not be retried"""
    pass


class ParsingError(Exception):
    """Raised when fetched content cannot be parsed"""
    pass


def is_remote(uri: str) -> bool:
    """True when the URI points at an HTTP(S) location"""
    return urlparse(uri).scheme.lower() in REMOTE_SCHEMES


def resolve_uri(base: str, path: str) -> str:
    """
    Resolve a descriptor-relative path against the descriptor's own location

    Args:
        base: URI of the descriptor (local path or URL)
        path: Path as written in the descriptor

    Returns:
        Absolute URL or local filesystem path
    """
    if is_remote(path):
        return path
    if is_remote(base):
        return urljoin(base, path)
    return str(Path(base).parent / path)


class ResourceClient:
    """
    Client for reading descriptors and data from local paths or URLs

    Remote requests go through a pooled ``requests.Session``. Rate limits and
    server errors are retried with backoff; client errors are not.
    """

    def __init__(self, timeout: float = 30.0, max_retries: int = 3,
                 session: Optional[requests.Session] = None):
        """
        Initialize the client

        Args:
            timeout: Per-request timeout in seconds
            max_retries: Retries for transient failures
            session: Optional preconfigured session
        """
        self.timeout = timeout
        self.max_retries = max_retries

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': f'hsds-validator/{__version__}',
            'Accept': 'application/json, text/csv, */*'
        })

    def _exponential_backoff_retry(self, func, *args, **kwargs):
        """
        Execute function with exponential backoff on transient errors

        - Transient (429, 5xx, network): retry with jittered backoff
        - Permanent / parsing: raise immediately
        """
        for attempt in range(self.max_retries + 1):
            try:
                return func(*args, **kwargs)

            except TransientError as e:
                if attempt == self.max_retries:
                    raise

                delay = min(2 ** attempt + random.uniform(0.1, 0.5), 30)
                logger.warning(f"Transient error, retrying in {delay:.1f}s "
                               f"(attempt {attempt + 1}/{self.max_retries + 1}): {e}")
                time.sleep(delay)

            except PermanentError as e:
                logger.error(f"Permanent error, not retrying: {e}")
                raise

    def _get_internal(self, url: str) -> bytes:
        """Single GET with error categorization"""
        start_time = time.time()

        try:
            logger.debug(f"Fetching {url}")
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.Timeout:
            log_api_request(logger, 'GET', url, 0, time.time() - start_time, error="Request timeout")
            raise TransientError(f"Request timeout: {url}")
        except requests.exceptions.ConnectionError:
            log_api_request(logger, 'GET', url, 0, time.time() - start_time, error="Connection error")
            raise TransientError(f"Connection error: {url}")
        except requests.exceptions.RequestException as e:
            log_api_request(logger, 'GET', url, 0, time.time() - start_time, error=f"Network error: {e}")
            raise PermanentError(f"Network error: {e}")

        response_time = time.time() - start_time

        if response.status_code == 429 or response.status_code >= 500:
            log_api_request(logger, 'GET', url, response.status_code, response_time,
                            error=f"Server error: {response.reason}")
            raise TransientError(f"{response.status_code} {response.reason}: {url}")

        if response.status_code >= 400:
            log_api_request(logger, 'GET', url, response.status_code, response_time,
                            error=f"Client error: {response.reason}")
            raise PermanentError(f"{response.status_code} {response.reason}: {url}")

        content = response.content
        log_api_request(logger, 'GET', url, response.status_code, response_time,
                        content_length=len(content))
        return content

    @sleep_and_retry
    @limits(calls=10, period=1)
    def _get(self, url: str) -> bytes:
        """Rate-limited GET with retry logic"""
        return self._exponential_backoff_retry(self._get_internal, url)

    def fetch_bytes(self, uri: str) -> bytes:
        """
        Read the raw content behind a local path or URL

        Raises:
            PermanentError: File missing/unreadable or non-retryable HTTP error
            TransientError: Remote failure persisted after retries
        """
        if is_remote(uri):
            return self._get(uri)

        try:
            return Path(uri).read_bytes()
        except OSError as e:
            raise PermanentError(f"Cannot read {uri}: {e.strerror or e}")

    def fetch_json(self, uri: str) -> Any:
        """Read and parse a JSON document from a local path or URL"""
        content = self.fetch_bytes(uri)

        try:
            return json.loads(content.decode('utf-8-sig'))
        except (UnicodeDecodeError, ValueError) as e:
            raise ParsingError(f"Failed to parse JSON from {uri}: {e}")
