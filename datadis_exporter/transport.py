"""Retrying HTTP transport module.

This module handles:
- Preparing each request once so its body can be replayed verbatim
- Retrying network failures and server errors with exponential backoff
- Releasing pooled connections between attempts
- The equivalent urllib3 retry policy for clients built on urllib3
"""

import logging
import time
from typing import Optional, Tuple

import requests
from urllib3.util.retry import Retry

# Configure module logger
logger = logging.getLogger(__name__)

# Statuses that mean the server may succeed on a later attempt
RETRY_STATUSES = frozenset({500, 502, 503, 504})


class ExponentialRetry(Retry):
    """urllib3 retry policy with the same schedule as RetryingTransport.

    Waits 1s, 2s, 4s... between attempts. Plain urllib3 backoff skips
    the first wait.
    """

    def get_backoff_time(self) -> float:
        if not self.history:
            return 0
        return float(2 ** (len(self.history) - 1))


def sink_retry_policy(max_retries: int = 3) -> ExponentialRetry:
    """Retry policy for writes: network errors and server errors, any method."""
    return ExponentialRetry(
        total=max_retries,
        status_forcelist=sorted(RETRY_STATUSES),
        allowed_methods=None,
        raise_on_status=False,
    )


class RetryingTransport:
    """HTTP transport that replays requests on transient failures.

    A failed attempt is retried when it raised a connection or timeout
    error, or when the server answered with one of RETRY_STATUSES. Any
    other response (including 4xx) is returned as-is.

    Attributes:
        session: Underlying requests session
        max_retries: Number of retries after the first attempt
        timeout: (connect, read) timeout applied to every attempt
    """

    MAX_RETRIES = 3
    TIMEOUT = (30, 30)  # seconds

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        max_retries: int = MAX_RETRIES,
        timeout: Tuple[float, float] = TIMEOUT,
    ):
        self.session = session if session is not None else requests.Session()
        self.max_retries = max_retries
        self.timeout = timeout

    @staticmethod
    def _should_retry(response: Optional[requests.Response]) -> bool:
        # No response means the attempt failed before the server answered
        return response is None or response.status_code in RETRY_STATUSES

    @staticmethod
    def _release(response: Optional[requests.Response]) -> None:
        """Drain and close a response so its connection returns to the pool."""
        if response is None:
            return
        try:
            _ = response.content
        except requests.RequestException:
            pass
        response.close()

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send a request, retrying transient failures.

        Args:
            method: HTTP method (GET, POST)
            url: Request URL
            **kwargs: Arguments accepted by requests.Request
                (params, data, json, headers)

        Returns:
            The first non-retryable response, or the last response once
            retries are exhausted

        Raises:
            ValueError: If the request body is a stream
            requests.RequestException: If the final attempt raised
        """
        prepared = self.session.prepare_request(requests.Request(method, url, **kwargs))
        if prepared.body is not None and not isinstance(prepared.body, (bytes, str)):
            raise ValueError("Streaming request bodies cannot be retried")

        # Proxy, CA bundle and client cert settings from the environment
        settings = self.session.merge_environment_settings(prepared.url, {}, None, None, None)

        response: Optional[requests.Response] = None
        error: Optional[requests.RequestException] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = 2 ** (attempt - 1)
                time.sleep(delay)
                if response is not None:
                    logger.warning(f"Previous request failed with status {response.status_code}")
                elif error is not None:
                    logger.warning(f"Previous request failed: {error}")
                self._release(response)
                logger.warning(f"Retry {attempt}/{self.max_retries} of request to {prepared.url}")

            response, error = None, None
            try:
                response = self.session.send(prepared, timeout=self.timeout, **settings)
            except (requests.ConnectionError, requests.Timeout) as e:
                error = e

            if not self._should_retry(response):
                return response

        if error is not None:
            raise error
        return response
