"""
Shared pytest fixtures for the narration client tests.

Time is always driven by :class:`FakeClock` so cooldowns, rotation and
``retry_at`` values are deterministic; no test sleeps for real.

Keys are chosen so that their first 20 characters (KEY_MATCH_PREFIX_LENGTH)
are distinct, except in tests that deliberately build ambiguous prefixes.
"""

from __future__ import annotations

import json

import pytest

from src.voiceover.credentials import CredentialPool
from src.voiceover.errors import RemoteCallError


# ---------------------------------------------------------------------------
# Key constants
# ---------------------------------------------------------------------------

KEY_A = "AIzaSyAAAA-first-key-0000000000000000001"
KEY_B = "AIzaSyBBBB-second-key-000000000000000002"
KEY_C = "AIzaSyCCCC-third-key-0000000000000000003"

START_TIME = 1_700_000_000.0  # 2023-11-14T22:13:20Z


# ---------------------------------------------------------------------------
# Clock and sleep doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable clock returning epoch seconds; advanced manually."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records durations and advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


class ScriptedWork:
    """
    Work function replaying a list of outcomes.

    Exceptions in the list are raised, anything else is returned.  The last
    outcome repeats once the list is used up.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    def __call__(self, secret: str):
        self.calls.append(secret)
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def make_pool(clock):
    """Factory: ``make_pool(["k1", "k2"])`` → CredentialPool on the fake clock."""
    def _make(secrets=(KEY_A, KEY_B, KEY_C)):
        return CredentialPool(list(secrets), clock=clock)
    return _make


@pytest.fixture
def scripted():
    """The :class:`ScriptedWork` class, for building work functions in tests."""
    return ScriptedWork


# ---------------------------------------------------------------------------
# Failure builders
# ---------------------------------------------------------------------------

def google_error_body(
    code: int,
    status: str,
    message: str,
    retry_delay: str | None = None,
    reason: str | None = None,
) -> dict:
    """Build a Google API error body as returned by generateContent."""
    details = []
    if retry_delay is not None:
        details.append({
            "@type": "type.googleapis.com/google.rpc.RetryInfo",
            "retryDelay": retry_delay,
        })
    if reason is not None:
        details.append({
            "@type": "type.googleapis.com/google.rpc.ErrorInfo",
            "reason": reason,
            "domain": "googleapis.com",
        })
    error = {"code": code, "message": message, "status": status}
    if details:
        error["details"] = details
    return {"error": error}


@pytest.fixture
def rate_limit_error():
    """Factory: structured 429 carrying ``seconds`` of retry delay."""
    def _make(seconds: int = 30, credential_hint: str | None = None):
        return RemoteCallError(
            status_code=429,
            message="You exceeded your current quota.",
            error_status="RESOURCE_EXHAUSTED",
            retry_after_seconds=seconds,
            credential_hint=credential_hint,
        )
    return _make


@pytest.fixture
def invalid_key_error():
    def _make():
        return RemoteCallError(
            status_code=400,
            message="API key not valid. Please pass a valid API key.",
            error_status="INVALID_ARGUMENT",
            reason="API_KEY_INVALID",
        )
    return _make


@pytest.fixture
def other_error():
    def _make(message: str = "Internal error encountered."):
        return RemoteCallError(status_code=500, message=message, error_status="INTERNAL")
    return _make


@pytest.fixture
def json_rate_limit_exception():
    """Plain exception whose message is a raw 429 JSON body (SDK style)."""
    def _make(retry_delay: str = "37s"):
        body = google_error_body(
            429, "RESOURCE_EXHAUSTED", "Quota exceeded for metric", retry_delay=retry_delay
        )
        return Exception(json.dumps(body))
    return _make


@pytest.fixture
def google_body():
    """The :func:`google_error_body` builder."""
    return google_error_body


@pytest.fixture
def keys():
    """The three default pool keys, in pool order."""
    return KEY_A, KEY_B, KEY_C
