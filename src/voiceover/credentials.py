"""
Credential pool: availability tracking, selection and rotation of API keys.

Every key is held in an indexable list of :class:`CredentialRecord`.
Selection returns an *index*, never the record itself, so callers cannot
hold on to stale state; they re-resolve through the pool on every call.

Selection is best effort rather than reservation-based.  Each
read-then-mutate step runs under one re-entrant lock, so marking a key
rate limited or invalid is atomic per credential even if the pool is
later shared across threads.
"""

from __future__ import annotations

import logging
import math
import os
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace

import pandas as pd

from .config import (
    API_KEY_ENV_VARS,
    API_KEY_SEPARATOR,
    KEY_MASK_VISIBLE_CHARS,
    KEY_MATCH_PREFIX_LENGTH,
    LOGGER_NAME,
)
from .errors import NoCredentialAvailable

logger = logging.getLogger(LOGGER_NAME)


# ---------------------------------------------------------------------------
# Credential loading
# ---------------------------------------------------------------------------

def parse_credential_string(raw: str | None, separator: str = API_KEY_SEPARATOR) -> list[str]:
    """
    Split a delimited key string into an ordered list of keys.

    Entries are trimmed and empty entries dropped; order is preserved
    because it defines selection priority.

    Args:
        raw: Delimited string, e.g. ``"key1, key2,,key3"``.
        separator: Delimiter between keys.

    Returns:
        List of non-empty keys (possibly empty).
    """
    if not raw:
        return []
    return [part.strip() for part in raw.split(separator) if part.strip()]


def load_credentials_from_env(environ: Mapping[str, str] | None = None) -> list[str]:
    """
    Read API keys from the first non-empty variable in ``API_KEY_ENV_VARS``.

    Zero keys is a degraded but non-fatal state: a single empty placeholder
    is returned so the pool can still be built, and every call made with it
    will fail at the remote end.

    Args:
        environ: Mapping to read from; defaults to ``os.environ``.

    Returns:
        Ordered list with at least one entry.
    """
    env = os.environ if environ is None else environ
    for var in API_KEY_ENV_VARS:
        keys = parse_credential_string(env.get(var))
        if keys:
            logger.info("Loaded %d API key(s) from %s for rotation", len(keys), var)
            return keys

    logger.warning(
        "No API keys found. Set %s (comma-separated for several keys).",
        " or ".join(API_KEY_ENV_VARS),
    )
    return [""]


def mask_credential(secret: str, visible: int = KEY_MASK_VISIBLE_CHARS) -> str:
    """Return a log-safe form of a key showing only its last few characters."""
    if len(secret) > visible:
        return f"...{secret[-visible:]}"
    return "***"


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

@dataclass
class CredentialRecord:
    """Availability state of one API key."""

    secret: str
    available_at: float = 0.0   # epoch seconds; 0 means always available
    blocked: bool = False       # permanently invalid, never unset
    error_count: int = 0        # diagnostic only

    def is_usable(self, now: float) -> bool:
        return not self.blocked and self.available_at <= now


class CredentialPool:
    """
    Ordered pool of API keys with cooldowns and permanent blocks.

    Usage:
        pool = CredentialPool.from_env()
        index = pool.select_available()
        secret = pool.secret_at(index)
        ...                                  # server answered 429, retry in 30 s
        pool.mark_rate_limited(index, 30)
        index = pool.rotate(index)

    Args:
        secrets: Keys in priority order.
        clock: Returns the current time in epoch seconds; injectable for tests.
        prefix_length: Leading characters compared when locating a key from
            a possibly truncated identity string.
    """

    def __init__(
        self,
        secrets: Iterable[str],
        clock: Callable[[], float] = time.time,
        prefix_length: int = KEY_MATCH_PREFIX_LENGTH,
    ):
        self._records = [CredentialRecord(secret=s) for s in secrets]
        self._clock = clock
        self._prefix_length = prefix_length
        self._current_index = 0
        self._lock = threading.RLock()
        logger.info("Credential pool initialized with %d key(s)", len(self._records))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **kwargs) -> CredentialPool:
        """Build a pool from ``API_KEY`` / ``GEMINI_API_KEY``."""
        return cls(load_credentials_from_env(environ), **kwargs)

    # -- accessors ----------------------------------------------------------

    @property
    def total(self) -> int:
        return len(self._records)

    @property
    def current_index(self) -> int:
        """Advisory index of the most recent selection or rotation."""
        return self._current_index

    def now(self) -> float:
        """Current time on the pool's clock, in epoch seconds."""
        return self._clock()

    def secret_at(self, index: int) -> str:
        return self._records[index].secret

    def record_at(self, index: int) -> CredentialRecord:
        """Return a copy of the record at ``index``."""
        with self._lock:
            return replace(self._records[index])

    # -- selection ----------------------------------------------------------

    def select_available(self) -> int:
        """
        Return the index of a usable key, or the one that recovers soonest.

        The first key in configured order that is neither blocked nor
        cooling down wins.  If every unblocked key is cooling down, the one
        with the earliest ``available_at`` is returned; callers must treat
        it as possibly still limited.

        Raises:
            NoCredentialAvailable: The pool is empty or every key is blocked.
        """
        with self._lock:
            now = self._clock()
            for index, record in enumerate(self._records):
                if record.is_usable(now):
                    self._current_index = index
                    return index

            unblocked = [i for i, r in enumerate(self._records) if not r.blocked]
            if not unblocked:
                raise NoCredentialAvailable(
                    f"All {len(self._records)} API key(s) are blocked or none are configured."
                )

            soonest = min(unblocked, key=lambda i: self._records[i].available_at)
            self._current_index = soonest
            return soonest

    def rotate(self, from_index: int) -> int:
        """
        Scan forward cyclically from ``from_index`` for a usable key.

        Returns:
            Index of the first usable key after ``from_index``, or
            ``from_index`` itself when a full cycle finds none.
        """
        with self._lock:
            now = self._clock()
            total = len(self._records)
            for step in range(1, total + 1):
                index = (from_index + step) % total
                if self._records[index].is_usable(now):
                    self._current_index = index
                    logger.info(
                        "Rotated to key %d/%d (%d keys available)",
                        index + 1, total, self.available_count(),
                    )
                    return index
            return from_index

    # -- identity resolution -----------------------------------------------

    def _prefix_matches(self, secret: str, identity: str) -> bool:
        key = identity[: self._prefix_length]
        if secret[: self._prefix_length] == key:
            return True
        # a fragment shorter than the prefix still identifies a key by its start
        return bool(key) and len(key) < self._prefix_length and secret.startswith(key)

    def _resolve(self, identity: int | str | None) -> int | None:
        """Map an index, a (possibly truncated) key, or ``None`` to an index."""
        if identity is None:
            return self._current_index if self._records else None

        if isinstance(identity, int) and not isinstance(identity, bool):
            return identity if 0 <= identity < len(self._records) else None

        exact = [i for i, r in enumerate(self._records) if r.secret == identity]
        if len(exact) == 1:
            return exact[0]

        matches = [
            i for i, r in enumerate(self._records)
            if self._prefix_matches(r.secret, identity)
        ]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            logger.warning(
                "Key identity %s matches %d keys; refusing to guess",
                mask_credential(identity), len(matches),
            )
        return None

    # -- mutation -----------------------------------------------------------

    def mark_rate_limited(self, identity: int | str, retry_after_seconds: float) -> bool:
        """
        Put a key into cooldown for ``retry_after_seconds``.

        Args:
            identity: Key index, or the key string (a prefix of at least
                ``prefix_length`` characters is enough).
            retry_after_seconds: Cooldown length.

        Returns:
            ``True`` if a key was marked; ``False`` (with a warning) if the
            identity matched no key.  Never raises.
        """
        with self._lock:
            index = self._resolve(identity)
            if index is None:
                logger.warning("Key not found for rate limit marking")
                return False

            record = self._records[index]
            record.available_at = self._clock() + retry_after_seconds
            record.error_count += 1
            logger.info(
                "Key %d/%d rate limited. Available in %ss",
                index + 1, len(self._records), retry_after_seconds,
            )
            return True

    def mark_invalid(self, identity: int | str | None = None) -> bool:
        """
        Block a key permanently.

        Args:
            identity: Key index or key string; ``None`` blocks the current key.

        Returns:
            ``True`` if a key was blocked.
        """
        with self._lock:
            index = self._resolve(identity)
            if index is None:
                logger.warning("Key not found for invalid marking")
                return False

            record = self._records[index]
            record.blocked = True
            record.error_count += 1
            logger.warning(
                "Key %d/%d marked as invalid/blocked", index + 1, len(self._records)
            )
            return True

    def reset_error_counts(self) -> None:
        """Zero every error counter.  Blocked keys stay blocked."""
        with self._lock:
            for record in self._records:
                record.error_count = 0
        logger.info("Reset error counts for all keys")

    # -- availability queries ----------------------------------------------

    def has_available(self) -> bool:
        with self._lock:
            now = self._clock()
            return any(r.is_usable(now) for r in self._records)

    def available_count(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for r in self._records if r.is_usable(now))

    def seconds_until_next_available(self) -> int:
        """
        Whole seconds until some key leaves cooldown.

        Returns ``0`` when a key is usable now, or when no unblocked key is
        cooling down (nothing will recover by waiting).
        """
        with self._lock:
            now = self._clock()
            if any(r.is_usable(now) for r in self._records):
                return 0
            waiting = [
                r.available_at for r in self._records
                if not r.blocked and r.available_at > now
            ]
            if not waiting:
                return 0
            return math.ceil(min(waiting) - now)

    # -- diagnostics --------------------------------------------------------

    def status(self) -> list[dict]:
        """
        Per-key status for diagnostics.

        Returns:
            List of dicts with keys ``position`` (1-based), ``available``,
            ``available_in_seconds``, ``error_count``, ``blocked``.
        """
        with self._lock:
            now = self._clock()
            return [
                {
                    "position": i + 1,
                    "available": r.is_usable(now),
                    "available_in_seconds": max(0, math.ceil(r.available_at - now)),
                    "error_count": r.error_count,
                    "blocked": r.blocked,
                }
                for i, r in enumerate(self._records)
            ]

    def status_frame(self) -> pd.DataFrame:
        """Return :meth:`status` as a DataFrame indexed by position."""
        return pd.DataFrame(
            self.status(),
            columns=["position", "available", "available_in_seconds", "error_count", "blocked"],
        ).set_index("position")

    def log_status(self) -> dict:
        """Log a summary of pool health and return the counts."""
        with self._lock:
            total = len(self._records)
            available = self.available_count()
            blocked = sum(1 for r in self._records if r.blocked)
            summary = {
                "total": total,
                "available": available,
                "rate_limited": total - available - blocked,
                "blocked": blocked,
                "current": self._current_index + 1,
            }

        logger.info(
            "API keys status: total=%d available=%d rate_limited=%d blocked=%d current=%d",
            summary["total"], summary["available"], summary["rate_limited"],
            summary["blocked"], summary["current"],
        )
        return summary
