"""
Rate-limit and credential failure classification.

Turns an opaque failure from a remote call into one of three kinds that
drive the executor's retry policy:

- ``rate_limited``       — 429 / RESOURCE_EXHAUSTED with an explicit retry
                           interval (``google.rpc.RetryInfo`` or Retry-After)
- ``invalid_credential`` — the key is rejected (invalid, no permission,
                           entity not visible to the key's project)
- ``other``              — everything else; never retried

Classification never raises: a failure that cannot be parsed is ``other``
with its raw text preserved.  No I/O occurs here.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import requests

from .config import LOGGER_NAME
from .errors import RemoteCallError

logger = logging.getLogger(LOGGER_NAME)


class FailureKind:
    """Failure kind constants."""

    RATE_LIMITED = "rate_limited"
    INVALID_CREDENTIAL = "invalid_credential"
    OTHER = "other"


# Signals that a key is unusable rather than temporarily throttled
INVALID_CREDENTIAL_STATUS_CODES: frozenset[int] = frozenset({401, 403})
INVALID_CREDENTIAL_STATUSES: frozenset[str] = frozenset({"UNAUTHENTICATED", "PERMISSION_DENIED"})
INVALID_CREDENTIAL_REASONS: frozenset[str] = frozenset({"API_KEY_INVALID"})
INVALID_CREDENTIAL_PHRASES: tuple[str, ...] = (
    "api_key_invalid",
    "api key not valid",
    "permission denied",
    "requested entity was not found",
)

RATE_LIMIT_STATUS = "RESOURCE_EXHAUSTED"
RETRY_INFO_TYPE = "google.rpc.RetryInfo"
ERROR_INFO_TYPE = "google.rpc.ErrorInfo"


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one failure."""

    kind: str
    message: str
    retry_after_seconds: int | None = None
    status_code: int | None = None
    credential_hint: str | None = None

    @property
    def is_rate_limit(self) -> bool:
        return self.kind == FailureKind.RATE_LIMITED

    @property
    def is_invalid_credential(self) -> bool:
        return self.kind == FailureKind.INVALID_CREDENTIAL


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def parse_duration(value) -> int | None:
    """
    Convert a retry interval to whole seconds, rounding up.

    Handles ``"37s"``, ``"1.5s"``, ``"290ms"``, ``"2m"``, ``"1h2m3s"``,
    plain numbers, and protobuf-style ``{"seconds": "3", "nanos": 5}``.

    Returns:
        Seconds (at least 1 for any positive interval), ``0`` for a zero
        interval, or ``None`` if ``value`` is not a recognizable duration.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, dict):
        try:
            total = float(value.get("seconds", 0)) + float(value.get("nanos", 0)) / 1e9
        except (TypeError, ValueError):
            return None
        return math.ceil(total)

    if isinstance(value, (int, float)):
        return math.ceil(value) if value >= 0 else None

    text = str(value).strip().lower()
    if not text:
        return None

    try:
        number = float(text)
    except ValueError:
        pass
    else:
        return math.ceil(number) if number >= 0 else None

    ms_match = re.fullmatch(r"([\d.]+)ms", text)
    if ms_match:
        ms = float(ms_match.group(1))
        return max(1, math.ceil(ms / 1000)) if ms > 0 else 0

    match = re.fullmatch(r"(?:(\d+)h)?(?:(\d+)m)?(?:([\d.]+)s)?", text)
    if not match or not any(match.groups()):
        return None
    hours, minutes, seconds = match.groups()
    total = int(hours or 0) * 3600 + int(minutes or 0) * 60 + float(seconds or 0)
    return math.ceil(total)


def parse_retry_after_header(value: str | None) -> int | None:
    """Parse an HTTP ``Retry-After`` header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    seconds = parse_duration(value)
    if seconds is not None:
        return seconds
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0, math.ceil((when - datetime.now(timezone.utc)).total_seconds()))


def parse_error_body(text: str | None) -> dict | None:
    """
    Extract the ``error`` object from a Google-style JSON error body.

    Accepts a bare JSON object, a single-element list (some endpoints wrap
    the body), or text containing a JSON object (e.g. an exception message
    that prefixes the body).

    Returns:
        The ``error`` dict, or ``None`` if no such object can be parsed.
    """
    if not text:
        return None

    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        match = re.search(r"(\{.*\})", str(text), re.DOTALL)
        if not match:
            return None
        try:
            payload = json.loads(match.group(1))
        except ValueError:
            return None

    if isinstance(payload, list) and payload:
        payload = payload[0]
    if not isinstance(payload, dict):
        return None

    error = payload.get("error")
    return error if isinstance(error, dict) else None


def extract_retry_delay(error: dict) -> int | None:
    """Return the ``RetryInfo.retryDelay`` from an error's details, if any."""
    for detail in error.get("details") or []:
        if not isinstance(detail, dict):
            continue
        if RETRY_INFO_TYPE in str(detail.get("@type", "")):
            seconds = parse_duration(detail.get("retryDelay"))
            if seconds is not None:
                return seconds
    return None


def extract_reason(error: dict) -> str | None:
    """Return the ``ErrorInfo.reason`` from an error's details, if any."""
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and ERROR_INFO_TYPE in str(detail.get("@type", "")):
            return detail.get("reason")
    return None


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify_fields(
    status_code: int | None,
    message: str,
    error_status: str | None = None,
    retry_after_seconds: int | None = None,
    reason: str | None = None,
    credential_hint: str | None = None,
) -> Classification:
    """
    Classify an already-parsed failure.

    A 429 counts as a rate limit only when it carries a retry interval;
    without one it is ``other`` and is not retried.

    Args:
        status_code: HTTP status or ``error.code``.
        message: Human-readable message.
        error_status: ``error.status`` category string.
        retry_after_seconds: Retry interval, if the failure carried one.
        reason: ``ErrorInfo.reason``, e.g. ``API_KEY_INVALID``.
        credential_hint: Possibly truncated key that made the call.
    """
    status = (error_status or "").upper()
    text = (message or "").lower()

    rate_limited = status_code == 429 or status == RATE_LIMIT_STATUS
    if rate_limited and retry_after_seconds is not None:
        return Classification(
            kind=FailureKind.RATE_LIMITED,
            message="Rate limit exceeded",
            retry_after_seconds=retry_after_seconds,
            status_code=status_code,
            credential_hint=credential_hint,
        )

    if (
        status_code in INVALID_CREDENTIAL_STATUS_CODES
        or status in INVALID_CREDENTIAL_STATUSES
        or (reason or "").upper() in INVALID_CREDENTIAL_REASONS
        or any(phrase in text for phrase in INVALID_CREDENTIAL_PHRASES)
    ):
        return Classification(
            kind=FailureKind.INVALID_CREDENTIAL,
            message=message,
            status_code=status_code,
            credential_hint=credential_hint,
        )

    return Classification(
        kind=FailureKind.OTHER,
        message=message,
        status_code=status_code,
        credential_hint=credential_hint,
    )


def _classify_body(
    raw_text: str,
    status_code: int | None = None,
    header_retry: int | None = None,
    credential_hint: str | None = None,
) -> Classification:
    """Classify from a raw body/message, falling back to the raw text."""
    error = parse_error_body(raw_text)
    if error is None:
        return classify_fields(
            status_code, raw_text,
            retry_after_seconds=header_retry,
            credential_hint=credential_hint,
        )

    retry = extract_retry_delay(error)
    return classify_fields(
        status_code if status_code is not None else _as_int(error.get("code")),
        error.get("message") or raw_text,
        error_status=error.get("status"),
        retry_after_seconds=retry if retry is not None else header_retry,
        reason=extract_reason(error),
        credential_hint=credential_hint,
    )


def _classify(error) -> Classification:
    if isinstance(error, RemoteCallError):
        if error.retry_after_seconds is None and error.body:
            parsed = _classify_body(
                error.body, error.status_code, credential_hint=error.credential_hint
            )
            if parsed.kind != FailureKind.OTHER:
                return parsed
        return classify_fields(
            error.status_code,
            error.message,
            error_status=error.error_status,
            retry_after_seconds=error.retry_after_seconds,
            reason=error.reason,
            credential_hint=error.credential_hint,
        )

    if isinstance(error, requests.HTTPError) and error.response is not None:
        response = error.response
        header_retry = parse_retry_after_header(response.headers.get("Retry-After"))
        return _classify_body(response.text or str(error), response.status_code, header_retry)

    return _classify_body(str(error))


def classify_failure(error) -> Classification:
    """
    Classify a failure from a remote call.

    Inspects, in order: a structured :class:`RemoteCallError`, a
    ``requests.HTTPError`` (status, Retry-After header, JSON body), and
    finally the text of any exception, parsed as a Google JSON error body.

    Args:
        error: Exception (or message string) raised by the work function.

    Returns:
        :class:`Classification`; ``other`` with the raw text if parsing fails.
    """
    try:
        return _classify(error)
    except Exception as exc:  # noqa: BLE001  (classification must never raise)
        logger.debug("Could not parse failure %r: %s", error, exc)
        return Classification(kind=FailureKind.OTHER, message=str(error))
