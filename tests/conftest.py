"""Pytest configuration and fixtures for all tests.

Fakes stand in for the clock, the HTTP session, the reasoning model and the
provider invoker, so no test touches the network or sleeps for real.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from orchestration.rate_limiter import RateLimitStore  # noqa: E402
from services.agent_catalog import CapabilityProviderDescriptor  # noqa: E402
from services.capability_providers import ProviderOutput  # noqa: E402


class FakeClock:
    """Simulated time: sleep() advances now() instantly"""

    def __init__(self, start: float = 1_000_000.0):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.current += seconds


_NO_JSON = object()


class FakeResponse:
    def __init__(self, status_code=200, json_data=_NO_JSON, headers=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.headers = {"Content-Type": "application/json"} if headers is None else headers
        self.text = text
        self.reason = "Fake"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._json is _NO_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._json


class FakeSession:
    """Returns (or raises) queued outcomes and records every request"""

    def __init__(self, outcomes, clock: FakeClock | None = None):
        self.outcomes = list(outcomes)
        self.clock = clock
        self.requests: list[dict] = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.requests.append({
            "method": method,
            "url": url,
            "json": json,
            "headers": headers,
            "timeout": timeout,
            "at": self.clock.now() if self.clock else None,
        })
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeModel:
    """Reasoning model returning queued replies (or raising queued errors)"""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls: list[dict] = []

    def complete(self, system_prompt, user_prompt, json_mode=False, timeout=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "json_mode": json_mode,
            "timeout": timeout,
        })
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeInvoker:
    """
    Provider invoker keyed by provider id.

    A handler is either a ProviderOutput or a callable (prompt, body, extra_body)
    returning one.
    """

    def __init__(self, handlers=None):
        self.handlers = handlers or {}
        self.calls: list[dict] = []

    def invoke(self, descriptor, prompt, body=None, extra_body=None):
        self.calls.append({
            "provider_id": descriptor.id,
            "prompt": prompt,
            "body": body or {},
            "extra_body": extra_body or {},
        })
        handler = self.handlers.get(descriptor.id)
        if handler is None:
            return ProviderOutput(success=True, output=f"{descriptor.id}:{prompt}")
        if callable(handler):
            return handler(prompt, body or {}, extra_body or {})
        return handler


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return RateLimitStore(clock=clock, min_request_delay=0.2, default_cooldown=60.0)


@pytest.fixture
def providers():
    return [
        CapabilityProviderDescriptor(id="orchestrator", label="Orchestrator", kind="orchestrator"),
        CapabilityProviderDescriptor(
            id="summarizer", label="Summarizer", description="Summarizes text"
        ),
        CapabilityProviderDescriptor(
            id="translator", label="Translator", description="Translates text"
        ),
        CapabilityProviderDescriptor(
            id="image-generator",
            label="Image Generator",
            description="Generates images",
            kind="image-generation",
            required_output_format="image",
        ),
    ]
