"""
Per-endpoint Rate Limit State
Tracks request spacing and 429 cooldowns for every capability provider endpoint.

The store is shared by every request running in the process, so every
read-modify-write of an endpoint's state happens under one lock. Sleeping is
left to the caller and always happens outside the lock.
"""
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from threading import Lock
from urllib.parse import urlsplit

from config import settings
from utils import get_logger

from .errors import OrchestrationError

logger = get_logger(__name__)


class Clock:
    """Wall clock; tests substitute a simulated one"""

    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass
class RateLimitState:
    """Rate limit bookkeeping for one endpoint"""
    last_request_time: float
    cooldown_until: float | None = None

    def in_cooldown(self, now: float) -> bool:
        return self.cooldown_until is not None and now < self.cooldown_until


def endpoint_key(url: str) -> str:
    """
    Normalize an endpoint to scheme://host/path.
    Query string and fragment are ignored; unparsable input is used as-is.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """
    Parse a Retry-After header.
    Accepts delta-seconds or an HTTP-date; dates become a relative delay floored at 0.
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None

    try:
        # Fractional seconds are truncated
        return max(0.0, float(int(float(value))))
    except (ValueError, OverflowError):
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now if now is not None else time.time()
    return max(0.0, when.timestamp() - current)


@dataclass
class RateLimitStore:
    """
    Process-lifetime map of endpoint -> RateLimitState.

    - min_request_delay: spacing enforced between two requests to one endpoint
    - default_cooldown: cooldown applied after a 429 without Retry-After
    """
    clock: Clock = field(default_factory=Clock)
    min_request_delay: float = settings.MIN_REQUEST_DELAY
    default_cooldown: float = settings.COOLDOWN_AFTER_THROTTLE

    states: dict[str, RateLimitState] = field(default_factory=dict)

    # Thread safety
    lock: Lock = field(default_factory=Lock)

    def reserve(
        self, key: str, max_wait: float | None = None, honor_cooldown: bool = True
    ) -> float | None:
        """
        Reserve the next request slot for an endpoint.

        Returns how long the caller must sleep before dispatching: the rest
        of any active cooldown, then the minimum spacing from the last
        request. The slot is recorded immediately so concurrent callers
        queue up behind it. If the wait would exceed max_wait nothing is
        recorded and None is returned.

        Gateway retries pass honor_cooldown=False: they have already slept
        their backoff and only need the spacing.
        """
        with self.lock:
            now = self.clock.now()
            state = self.states.get(key)
            ready_at = now
            if state is not None:
                if honor_cooldown and state.in_cooldown(now):
                    ready_at = state.cooldown_until
                    logger.warning(
                        f"Rate limit cooldown active for {key}. "
                        f"Waiting {ready_at - now:.1f}s before request."
                    )
                ready_at = max(ready_at, state.last_request_time + self.min_request_delay)

            wait = max(0.0, ready_at - now)
            if max_wait is not None and wait > max_wait:
                return None

            if state is None:
                self.states[key] = RateLimitState(last_request_time=now + wait)
            else:
                state.last_request_time = now + wait
            return wait

    def set_cooldown(self, key: str, seconds: float | None = None) -> float:
        """Start a cooldown after a throttling response; returns its length"""
        cooldown = self.default_cooldown if seconds is None else max(0.0, seconds)
        with self.lock:
            now = self.clock.now()
            state = self.states.get(key)
            if state is None:
                state = RateLimitState(last_request_time=now)
                self.states[key] = state
            state.cooldown_until = now + cooldown
        logger.warning(f"Rate limit cooldown set for {key} for {cooldown:.1f}s")
        return cooldown

    def clear_cooldown(self, key: str) -> None:
        """A successful call means the throttle has lifted"""
        with self.lock:
            state = self.states.get(key)
            if state is not None:
                state.cooldown_until = None

    def get(self, key: str) -> RateLimitState | None:
        """Copy of an endpoint's state, for inspection"""
        with self.lock:
            state = self.states.get(key)
            return replace(state) if state is not None else None

    def get_usage_stats(self) -> dict:
        """Current cooldowns and last-request times per endpoint"""
        with self.lock:
            now = self.clock.now()
            return {
                key: {
                    "last_request": datetime.fromtimestamp(state.last_request_time).isoformat(),
                    "cooldown_remaining": max(0.0, (state.cooldown_until or now) - now),
                }
                for key, state in self.states.items()
            }


class RateLimitExceededError(OrchestrationError):
    """Raised when an endpoint is still throttling after all retries"""

    kind = "throttled"


# Singleton instance
_store: RateLimitStore | None = None


def get_rate_limit_store() -> RateLimitStore:
    """Get or create the process-wide rate limit store"""
    global _store
    if _store is None:
        _store = RateLimitStore()
    return _store
