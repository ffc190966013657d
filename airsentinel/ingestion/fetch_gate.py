"""
Bounded fetch gate: the single path from AirSentinel to the upstream feed.

Responsibilities:
- minimum spacing between any two upstream requests, regardless of key
- Authorization header resolution right before each request
- one token refresh + retry on 401 when using bearer auth
- coalescing of concurrent identical requests into one in-flight call
- cache write and backoff reset on every successful network round trip
"""

import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from airsentinel.exceptions import AuthFailed, NotFound, Throttled, UpstreamUnavailable
from airsentinel.ingestion.auth import CredentialProvider
from airsentinel.ingestion.backoff import BackoffController
from airsentinel.ingestion.cache import ResponseCache
from airsentinel.ingestion.metrics import COALESCED_REQUESTS, UPSTREAM_LATENCY, UPSTREAM_REQUESTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpstreamRequest:
    url: str
    params: Dict[str, Any] = field(default_factory=dict)


RequestBuilder = Callable[[], UpstreamRequest]


class FetchGate:

    def __init__(
        self,
        session: requests.Session,
        credentials: CredentialProvider,
        cache: ResponseCache,
        backoff: BackoffController,
        min_interval_s: float = 10.0,
        request_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.credentials = credentials
        self.cache = cache
        self.backoff = backoff
        self.min_interval_s = min_interval_s
        self.request_timeout_s = request_timeout_s
        self._clock = clock
        self._sleep = sleep

        self._last_request_at: Optional[float] = None
        self._pace_lock = threading.Lock()

        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()

    def fetch(
        self,
        key: str,
        build_request: RequestBuilder,
        parse: Optional[Callable[[Any], Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Issue (or join) the upstream call for `key`.

        Args:
            key: canonical request signature, also the cache key
            build_request: produces the URL and query parameters
            parse: converts the decoded JSON body before it is cached/returned
            timeout: overall budget in seconds (pacing delay + network)

        Raises:
            Throttled, AuthFailed, NotFound, UpstreamUnavailable
        """
        with self._inflight_lock:
            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future

        if not leader:
            COALESCED_REQUESTS.inc()
            logger.debug(f"Joining in-flight request for {key}")
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError as e:
                raise UpstreamUnavailable(f"Timed out waiting for in-flight request {key}") from e

        try:
            result = self._execute(key, build_request, parse, timeout)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def in_flight(self) -> int:
        with self._inflight_lock:
            return len(self._inflight)

    # ------------------------------------------------------------------

    def _execute(
        self,
        key: str,
        build_request: RequestBuilder,
        parse: Optional[Callable[[Any], Any]],
        timeout: Optional[float],
    ) -> Any:
        deadline = self._clock() + timeout if timeout is not None else None

        # A call that settled just before this one may have refilled the cache
        cached = self.cache.lookup(key)
        if cached is not None and cached.fresh:
            return cached.data

        if self.backoff.is_suppressed():
            raise Throttled(f"Backoff active for another {self.backoff.remaining():.0f}s")

        request = build_request()
        response, bearer = self._send(request, deadline)

        if response.status_code == 401 and bearer is not None:
            # Token may have expired server-side - refresh once and retry
            logger.warning("401 Unauthorized - attempting token refresh...")
            self.credentials.invalidate(bearer)
            response, bearer = self._send(request, deadline)

        status = response.status_code

        if status == 401:
            UPSTREAM_REQUESTS.labels(status="auth_failed").inc()
            raise AuthFailed(f"Upstream rejected credentials for {key}")

        if status == 429:
            UPSTREAM_REQUESTS.labels(status="rate_limited").inc()
            self.backoff.trigger_backoff()
            raise Throttled(f"Upstream throttled request {key}")

        if status == 404:
            UPSTREAM_REQUESTS.labels(status="not_found").inc()
            raise NotFound(f"Upstream has no data for {key}")

        if not 200 <= status < 300:
            UPSTREAM_REQUESTS.labels(status="error").inc()
            logger.error(f"API error: {status} for {key}")
            raise UpstreamUnavailable(f"Upstream returned HTTP {status}", status_code=status)

        try:
            body = response.json()
        except ValueError as e:
            UPSTREAM_REQUESTS.labels(status="invalid_body").inc()
            raise UpstreamUnavailable(f"Upstream returned an unreadable body for {key}") from e

        UPSTREAM_REQUESTS.labels(status="success").inc()
        data = parse(body) if parse is not None else body
        self.cache.store(key, data)
        self.backoff.clear()
        return data

    def _send(self, request: UpstreamRequest, deadline: Optional[float]) -> tuple[requests.Response, Optional[str]]:
        """Pace, authorize and perform one HTTP GET."""
        self._pace(deadline)
        headers, bearer = self.credentials.resolve()
        headers["Accept"] = "application/json"

        request_timeout = self.request_timeout_s
        if deadline is not None:
            request_timeout = min(request_timeout, deadline - self._clock())
            if request_timeout <= 0:
                raise UpstreamUnavailable("Request budget exhausted before sending")

        try:
            with UPSTREAM_LATENCY.time():
                response = self.session.get(
                    request.url,
                    params=request.params,
                    headers=headers,
                    timeout=request_timeout
                )
        except requests.exceptions.Timeout as e:
            UPSTREAM_REQUESTS.labels(status="timeout").inc()
            logger.error("API timeout")
            raise UpstreamUnavailable(f"Upstream timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            UPSTREAM_REQUESTS.labels(status="connection_error").inc()
            logger.error(f"Connection error: {e}")
            raise UpstreamUnavailable(f"Upstream connection failed: {e}") from e

        return response, bearer

    def _pace(self, deadline: Optional[float]) -> None:
        """
        Reserve the next send slot, then sleep until it comes round.

        Slots are handed out under the lock but waited for outside it, so a
        caller whose budget cannot cover its slot fails at once instead of
        queueing behind sleeping callers.
        """
        with self._pace_lock:
            now = self._clock()
            slot = now
            if self._last_request_at is not None:
                slot = max(now, self._last_request_at + self.min_interval_s)
            if deadline is not None and slot > deadline:
                raise UpstreamUnavailable(
                    f"Pacing delay of {slot - now:.1f}s exceeds request budget"
                )
            self._last_request_at = slot

        wait = slot - now
        if wait > 0:
            self._sleep(wait)
