"""
Capability Gateway
Single choke point for every outbound call to a capability provider.

Every call goes through the same steps:
1. Wait out an active 429 cooldown for the endpoint, then enforce minimum spacing
2. Dispatch (HTTP via requests, or an SDK call via invoke())
3. On 429: record a cooldown (Retry-After or the default), back off, retry
4. Validate the response is JSON and decode it

Failures come back as GatewayResult values with a `kind`
(config, throttled, timeout, http, parse, network, provider) so callers can
decide how loud to be. Nothing here raises for a provider failure.
"""
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlsplit

import requests
from google.genai import errors as genai_errors

from config import settings
from utils import get_logger

from .errors import sanitize_error_message
from .rate_limiter import (
    Clock,
    RateLimitStore,
    endpoint_key,
    get_rate_limit_store,
    parse_retry_after,
)

logger = get_logger(__name__)


UNAVAILABLE_STATUSES = {502, 503, 504}


@dataclass
class GatewayResult:
    """Outcome of one gateway call"""
    success: bool
    data: Any = None
    error: str | None = None
    kind: str | None = None          # failure kind, None on success
    status_code: int | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "kind": self.kind,
            "status_code": self.status_code,
            "duration_ms": self.duration_ms,
        }


class _Throttled(Exception):
    """Internal signal: the endpoint answered 429"""

    def __init__(self, retry_after: str | None = None):
        super().__init__("Rate limit exceeded (HTTP 429)")
        self.retry_after = retry_after


def _is_valid_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def _error_detail(response: requests.Response) -> str:
    """Best-effort error text from a failed response body"""
    try:
        body = response.json()
    except ValueError:
        return (response.text or response.reason or "").strip()[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return str(body)[:200]


class CapabilityGateway:
    """
    Rate-limited, retrying transport to capability providers.

    The rate limit store and clock are injectable; by default the store is
    the process-wide one so concurrent requests share cooldowns.
    """

    def __init__(
        self,
        store: RateLimitStore | None = None,
        session: requests.Session | None = None,
        clock: Clock | None = None,
        max_retries: int = settings.MAX_THROTTLE_RETRIES,
        initial_delay: float = settings.INITIAL_RETRY_DELAY,
        default_timeout: float = settings.DEFAULT_TIMEOUT,
        debug: bool = settings.DEBUG,
    ):
        self.store = store or get_rate_limit_store()
        self.clock = clock or self.store.clock
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.default_timeout = default_timeout
        self.debug = debug

    def call(
        self,
        endpoint: str,
        payload: Any,
        timeout: float | None = None,
        headers: dict | None = None,
        method: str = "POST",
    ) -> GatewayResult:
        """
        Send a JSON request to a provider endpoint.

        Args:
            endpoint: Full provider URL
            payload: JSON-serializable request body
            timeout: Wall-clock budget for the whole call, sleeps included
            headers: Extra headers (auth etc.)
            method: HTTP method

        Returns:
            GatewayResult with the decoded JSON body on success
        """
        if not _is_valid_url(endpoint):
            return self._failure(
                "config", f"Invalid endpoint URL: {endpoint!r}", self.clock.now()
            )

        request_headers = {"Content-Type": "application/json"}
        if headers:
            request_headers.update(headers)

        def attempt(remaining: float) -> GatewayResult:
            try:
                response = self.session.request(
                    method,
                    endpoint,
                    json=payload,
                    headers=request_headers,
                    timeout=remaining,
                )
            except requests.exceptions.Timeout:
                return GatewayResult(
                    success=False, kind="timeout",
                    error=f"Request timeout after {remaining:.1f}s",
                )
            except (
                requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema,
                requests.exceptions.InvalidURL,
            ) as e:
                return GatewayResult(success=False, kind="config", error=f"Invalid endpoint: {e}")
            except requests.exceptions.RequestException as e:
                return GatewayResult(success=False, kind="network", error=f"Network error: {e}")

            if response.status_code == 429:
                raise _Throttled(response.headers.get("Retry-After"))
            return self._decode(response)

        return self._dispatch(endpoint, attempt, timeout)

    def invoke(
        self,
        endpoint: str,
        send: Callable[[float], Any],
        timeout: float | None = None,
    ) -> GatewayResult:
        """
        Run an SDK call under the same rate limiting and throttle retry as call().

        `endpoint` only names the rate limit bucket. `send` receives the
        remaining time budget in seconds and returns the decoded result.
        """

        def attempt(remaining: float) -> GatewayResult:
            try:
                return GatewayResult(success=True, data=send(remaining))
            except genai_errors.APIError as e:
                if e.code == 429:
                    headers = getattr(getattr(e, "response", None), "headers", None) or {}
                    raise _Throttled(headers.get("Retry-After"))
                return self._http_failure(e.code, e.message or str(e))
            except (requests.exceptions.Timeout, TimeoutError) as e:
                return GatewayResult(success=False, kind="timeout", error=f"Request timeout: {e}")
            except requests.exceptions.ConnectionError as e:
                return GatewayResult(success=False, kind="network", error=f"Network error: {e}")
            except Exception as e:
                logger.exception(f"SDK call to {endpoint} failed")
                return GatewayResult(success=False, kind="provider", error=str(e))

        return self._dispatch(endpoint, attempt, timeout)

    def _dispatch(
        self,
        endpoint: str,
        attempt: Callable[[float], GatewayResult],
        timeout: float | None,
    ) -> GatewayResult:
        """Rate limit, send, and retry on 429 within the call's time budget"""
        budget = timeout if timeout is not None else self.default_timeout
        started = self.clock.now()
        deadline = started + budget
        key = endpoint_key(endpoint)

        retry = 0
        while True:
            # Retries already slept their backoff, only spacing applies
            wait = self.store.reserve(
                key, max_wait=deadline - self.clock.now(), honor_cooldown=retry == 0
            )
            if wait is None:
                return self._failure(
                    "timeout",
                    f"Request timeout: {key} is cooling down longer than the {budget:.0f}s budget",
                    started,
                )
            self.clock.sleep(wait)

            remaining = deadline - self.clock.now()
            if remaining <= 0:
                return self._failure("timeout", f"Request timeout after {budget:.0f}s", started)

            try:
                result = attempt(remaining)
            except _Throttled as throttled:
                retry_after = parse_retry_after(throttled.retry_after, now=self.clock.now())
                self.store.set_cooldown(key, retry_after)

                if retry >= self.max_retries:
                    return self._failure(
                        "throttled",
                        f"Rate limit exceeded (HTTP 429) after {self.max_retries} retries",
                        started,
                        status_code=429,
                    )

                delay = retry_after if retry_after is not None else self.initial_delay * (2 ** retry)
                if self.clock.now() + delay > deadline:
                    return self._failure(
                        "timeout",
                        f"Request timeout: rate limit backoff of {delay:.1f}s exceeds the time budget",
                        started,
                        status_code=429,
                    )

                retry += 1
                logger.warning(
                    f"Rate limited by {key}, retry {retry}/{self.max_retries} in {delay:.1f}s"
                )
                self.clock.sleep(delay)
                continue

            # Anything other than a 429 means the throttle has lifted
            self.store.clear_cooldown(key)
            result.duration_ms = self._elapsed_ms(started)
            if not result.success:
                logger.error(f"Gateway call to {key} failed ({result.kind}): {result.error}")
                result.error = sanitize_error_message(result.error, is_development=self.debug)
            return result

    def _decode(self, response: requests.Response) -> GatewayResult:
        if not response.ok:
            return self._http_failure(response.status_code, _error_detail(response))

        content_type = response.headers.get("Content-Type", "")
        if "json" not in content_type.lower():
            return GatewayResult(
                success=False,
                kind="config",
                status_code=response.status_code,
                error=(
                    f"Unexpected content type {content_type or 'none'!r}, "
                    "check endpoint configuration"
                ),
            )

        try:
            data = response.json()
        except ValueError as e:
            return GatewayResult(
                success=False,
                kind="parse",
                status_code=response.status_code,
                error=f"Failed to parse provider response: {e}",
            )
        return GatewayResult(success=True, data=data, status_code=response.status_code)

    @staticmethod
    def _http_failure(status_code: int | None, detail: str) -> GatewayResult:
        if status_code in UNAVAILABLE_STATUSES:
            message = (
                f"Service temporarily unavailable (HTTP {status_code}). "
                "Please try again in a few moments."
            )
        else:
            message = f"HTTP {status_code}: {detail}" if detail else f"HTTP {status_code}"
        return GatewayResult(success=False, kind="http", status_code=status_code, error=message)

    def _failure(
        self, kind: str, message: str, started: float, status_code: int | None = None
    ) -> GatewayResult:
        logger.error(f"Gateway failure ({kind}): {message}")
        return GatewayResult(
            success=False,
            kind=kind,
            status_code=status_code,
            error=sanitize_error_message(message, is_development=self.debug),
            duration_ms=self._elapsed_ms(started),
        )

    def _elapsed_ms(self, started: float) -> int:
        return int((self.clock.now() - started) * 1000)


# Singleton instance
_gateway: CapabilityGateway | None = None


def get_gateway() -> CapabilityGateway:
    """Get or create the shared gateway"""
    global _gateway
    if _gateway is None:
        _gateway = CapabilityGateway()
    return _gateway
