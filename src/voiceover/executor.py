"""
Resilient call executor: bounded retries with key rotation.

Each attempt is an independent call ``work_fn(secret)`` made with a key
resolved from the pool at that moment.  After a failure the classifier's
verdict selects one transition:

    Attempting ─┬─ success ───────────────→ SUCCESS     (return artifact)
                ├─ rate limited, key free ─→ ROTATE      (retry now, next key)
                ├─ rate limited, none free → WAIT        (sleep ≤ 10 s, retry)
                ├─ invalid key ────────────→ NEXT_CREDENTIAL (block, retry)
                └─ anything else ──────────→ FATAL       (raise, no retry)

Rotation is preferred over waiting whenever another key is usable.  The
failing key is always the one marked, never an ambiguous "current" key.
Waits go through a ``threading.Event`` so an abandoned run can cancel them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from .classifier import Classification, classify_failure
from .config import LOGGER_NAME, MAX_RATE_LIMIT_WAIT_SECONDS, MAX_RETRIES
from .credentials import CredentialPool
from .errors import CallCancelled, NoCredentialAvailable, RemoteCallFailed, RetriesExhausted

logger = logging.getLogger(LOGGER_NAME)


class Transition:
    """Outcomes of a single attempt."""

    SUCCESS = "success"
    ROTATE = "rate_limited_rotate"
    WAIT = "rate_limited_wait"
    NEXT_CREDENTIAL = "invalid_next_attempt"
    FATAL = "fatal"


def next_transition(
    classification: Classification | None,
    pool_has_available: bool,
) -> str:
    """
    Decide what follows an attempt.

    Args:
        classification: Verdict for the failure, or ``None`` on success.
        pool_has_available: Whether some key is usable right now (checked
            after the failing key has been marked).

    Returns:
        One of the :class:`Transition` constants.
    """
    if classification is None:
        return Transition.SUCCESS
    if classification.is_rate_limit:
        return Transition.ROTATE if pool_has_available else Transition.WAIT
    if classification.is_invalid_credential:
        return Transition.NEXT_CREDENTIAL
    return Transition.FATAL


class ResilientExecutor:
    """
    Run one unit of work against the pool with the retry/rotation policy.

    Args:
        pool: Shared credential pool.
        max_retries: Retries after the first attempt.
        max_wait_seconds: Cap on a single rate-limit sleep.
        sleep: Replacement for the cancellable wait (tests inject a recorder).
        cancel_event: Event shared with an orchestrator; setting it aborts waits.
    """

    def __init__(
        self,
        pool: CredentialPool,
        max_retries: int = MAX_RETRIES,
        max_wait_seconds: float = MAX_RATE_LIMIT_WAIT_SECONDS,
        sleep: Callable[[float], None] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.pool = pool
        self.max_retries = max_retries
        self.max_wait_seconds = max_wait_seconds
        self._cancel_event = cancel_event or threading.Event()
        self._sleep = sleep or self.wait

    # -- cancellation -------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Abort any current or future wait until :meth:`reset_cancel`."""
        self._cancel_event.set()

    def reset_cancel(self) -> None:
        self._cancel_event.clear()

    def wait(self, seconds: float) -> None:
        """
        Sleep for ``seconds`` unless cancelled first.

        Raises:
            CallCancelled: :meth:`cancel` was called before or during the wait.
        """
        if self._cancel_event.wait(seconds):
            raise CallCancelled("Wait cancelled")

    # -- execution ----------------------------------------------------------

    def execute(
        self,
        work_fn: Callable[[str], Any],
        max_retries: int | None = None,
    ) -> Any:
        """
        Call ``work_fn`` until it succeeds or the policy gives up.

        Args:
            work_fn: Callable taking a key and returning the artifact; any
                exception it raises is classified.
            max_retries: Override the executor's retry budget.

        Returns:
            Whatever ``work_fn`` returned on the successful attempt.

        Raises:
            RemoteCallFailed: Unclassified failure (attempt count attached).
            RetriesExhausted: Budget consumed; carries the last failure.
            NoCredentialAvailable: Every key is blocked.
            CallCancelled: The run was cancelled.

        Every error raised carries the attempts made in its ``attempts``.
        """
        artifact, _ = self.execute_counted(work_fn, max_retries)
        return artifact

    def execute_counted(
        self,
        work_fn: Callable[[str], Any],
        max_retries: int | None = None,
    ) -> tuple[Any, int]:
        """Like :meth:`execute`, but return ``(artifact, attempts)``."""
        retries = max(0, self.max_retries if max_retries is None else max_retries)
        last_failure: Classification | None = None
        rotated_index: int | None = None
        attempts = 0

        for attempt in range(retries + 1):
            if self.cancelled:
                raise CallCancelled("Execution cancelled", attempts=attempts)

            if rotated_index is not None:
                index, rotated_index = rotated_index, None
            else:
                try:
                    index = self.pool.select_available()
                except NoCredentialAvailable as exc:
                    raise NoCredentialAvailable(str(exc), attempts=attempts) from exc

            attempts = attempt + 1

            try:
                return work_fn(self.pool.secret_at(index)), attempts
            except Exception as exc:  # noqa: BLE001  (every failure is classified)
                failure = exc
                last_failure = classify_failure(exc)

            if last_failure.is_rate_limit:
                self.pool.mark_rate_limited(index, last_failure.retry_after_seconds)
            elif last_failure.is_invalid_credential:
                self.pool.mark_invalid(index)

            transition = next_transition(last_failure, self.pool.has_available())
            logger.info(
                "Attempt %d/%d with key %d failed [%s] -> %s: %s",
                attempts, retries + 1, index + 1, last_failure.kind, transition,
                last_failure.message[:120],
            )

            if transition == Transition.FATAL:
                raise RemoteCallFailed(last_failure, attempts) from failure

            if attempt == retries:
                break

            if transition == Transition.ROTATE:
                rotated_index = self.pool.rotate(index)
                logger.info(
                    "Retrying with rotated key (attempt %d/%d)", attempts + 1, retries + 1
                )
            elif transition == Transition.WAIT:
                wait_seconds = min(last_failure.retry_after_seconds, self.max_wait_seconds)
                logger.info("All keys rate limited. Waiting %ss...", wait_seconds)
                try:
                    self._sleep(wait_seconds)
                except CallCancelled as exc:
                    raise CallCancelled(str(exc), attempts=attempts) from exc

        raise RetriesExhausted(last_failure, attempts)
