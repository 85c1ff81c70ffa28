import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Optional

import requests

from config import HTTP_TIMEOUT_SECONDS, HTTP_HARD_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


class ProviderError(Exception):
    """
    A provider call that did not produce a usable response.
    status is None for network failures and timeouts.
    """
    def __init__(self, message: str, status: Optional[int] = None, endpoint: Optional[str] = None,
                 retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.endpoint = endpoint
        self.retryable = retryable


class SlidingWindowLimiter:
    """
    Admits at most rate_limit acquisitions in any trailing window of window_seconds.
    """

    def __init__(self, rate_limit: int, window_seconds: float, buffer_seconds: float = 0.1,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if rate_limit < 1:
            raise ValueError("rate_limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.rate_limit = rate_limit
        self.window_seconds = window_seconds
        self.buffer_seconds = buffer_seconds
        self._clock = clock
        self._sleep = sleep
        self._issued = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._issued and now - self._issued[0] >= self.window_seconds:
            self._issued.popleft()

    def _wait_for(self, now: float) -> float:
        live = [t for t in self._issued if now - t < self.window_seconds]
        if len(live) < self.rate_limit:
            return 0.0
        return self.window_seconds - (now - live[0]) + self.buffer_seconds

    def check(self, now: Optional[float] = None) -> float:
        """Seconds to wait before the next request may be issued (0.0 = proceed)."""
        now = self._clock() if now is None else now
        with self._lock:
            return self._wait_for(now)

    def acquire(self, label: str = "") -> None:
        while True:
            with self._lock:
                now = self._clock()
                self._prune(now)
                wait = self._wait_for(now)
                if wait <= 0:
                    self._issued.append(now)
                    return
            logger.info(f"⏳ Rate limit reached{f' for {label}' if label else ''}, waiting {wait:.1f}s")
            self._sleep(wait)

    def in_window(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            return sum(1 for t in self._issued if now - t < self.window_seconds)


def service_name_for(base_url: str) -> str:
    if 'geckoterminal.com' in base_url:
        return 'geckoterminal'
    if 'llama.fi' in base_url:
        return 'defillama'
    return 'unknown'


class RateLimitedClient:
    """
    JSON-over-HTTP client that throttles itself with a sliding-window limiter.
    Retrying failed calls is left to the caller.
    """

    def __init__(self, base_url: str, rate_limit: int, window_seconds: float,
                 service_name: Optional[str] = None,
                 timeout: float = HTTP_TIMEOUT_SECONDS,
                 hard_timeout: float = HTTP_HARD_TIMEOUT_SECONDS,
                 usage_recorder: Optional[Callable[[str, str], None]] = None,
                 session: Optional[requests.Session] = None,
                 limiter: Optional[SlidingWindowLimiter] = None):
        self.base_url = base_url.rstrip('/')
        self.service_name = service_name or service_name_for(base_url)
        self.timeout = timeout
        self.hard_timeout = hard_timeout
        self.usage_recorder = usage_recorder
        self.session = session or requests.Session()
        self.limiter = limiter or SlidingWindowLimiter(rate_limit, window_seconds)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{self.service_name}-http")

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _get(self, url: str, params: Optional[Dict[str, Any]]):
        return self.session.get(url, params=params, timeout=self.timeout)

    def request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Issue a GET and return the decoded JSON body.
        Raises ProviderError on non-2xx responses, network failures and timeouts.
        """
        self.limiter.acquire(self.service_name)
        url = self._url(endpoint)
        logger.debug(f"🔄 API Request: {self.service_name} - {url} {params or ''}")

        future = self._executor.submit(self._get, url, params)
        try:
            response = future.result(timeout=self.hard_timeout)
        except FutureTimeoutError:
            # The stuck worker cannot be interrupted; give the next call a fresh one.
            self._executor.shutdown(wait=False)
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{self.service_name}-http")
            logger.error(f"❌ {self.service_name} request exceeded {self.hard_timeout}s: {endpoint}")
            raise ProviderError(f"Request exceeded hard timeout of {self.hard_timeout}s",
                                endpoint=endpoint, retryable=True)
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ {self.service_name} request failed for {endpoint}: {e}")
            raise ProviderError(f"Request failed: {e}", endpoint=endpoint, retryable=True) from e

        if not 200 <= response.status_code < 300:
            logger.error(f"❌ {self.service_name} returned HTTP {response.status_code} for {endpoint}")
            raise ProviderError(
                f"HTTP {response.status_code}: {response.reason}",
                status=response.status_code,
                endpoint=endpoint,
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"❌ Failed to decode {self.service_name} response for {endpoint}: {e}")
            raise ProviderError(f"Invalid JSON: {e}", status=response.status_code, endpoint=endpoint) from e

        if self.usage_recorder is not None:
            try:
                self.usage_recorder(self.service_name, endpoint.split('?')[0])
            except Exception as e:
                logger.warning(f"⚠️ Could not record API usage for {self.service_name}: {e}")

        return data

    def usage_stats(self) -> Dict[str, Any]:
        in_window = self.limiter.in_window()
        return {
            'service': self.service_name,
            'rate_limit': self.limiter.rate_limit,
            'window_seconds': self.limiter.window_seconds,
            'in_window': in_window,
            'remaining': max(0, self.limiter.rate_limit - in_window),
        }

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        self.session.close()
