"""
Clip batch orchestration, per-clip retry, and batch reporting.

Execution model:
- Clips are processed sequentially in script order, never concurrently.
- Each clip's state moves IDLE → LOADING → SUCCEEDED | FAILED on its own;
  a failure in one clip never aborts the loop or touches another clip.
- A short pacing delay follows each successful clip (not the last one)
  to smooth the outbound request rate on top of key rotation.
- A failed clip carries an absolute ``retry_at`` so a caller can show a
  countdown and re-run just that clip with :meth:`BatchOrchestrator.retry_one`.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Iterable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import pandas as pd

from .config import BATCH_REPORT_PATH, INTER_ITEM_DELAY_SECONDS, LOGGER_NAME
from .credentials import CredentialPool
from .errors import (
    CallCancelled,
    NoCredentialAvailable,
    RemoteCallFailed,
    RetriesExhausted,
    VoiceoverError,
)
from .executor import ResilientExecutor
from .parser import ScriptEntry

logger = logging.getLogger(LOGGER_NAME)

WorkFactory = Callable[[str], Callable[[str], Any]]


class ItemState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class WorkItem:
    """One clip: its text and the state of its most recent run."""

    index: int
    text: str
    timestamp: str = ""
    state: ItemState = ItemState.IDLE
    artifact: Any = None
    error: str | None = None
    retry_at: datetime | None = None   # absolute UTC time
    attempts: int = 0


@dataclass
class BatchSummary:
    total: int
    succeeded: int
    failed: int
    skipped: int
    cancelled: bool
    duration_seconds: float


def build_items(entries: Iterable[ScriptEntry | dict | str]) -> list[WorkItem | None]:
    """
    Create one work item per non-empty script line.

    Blank lines produce ``None`` so positions still match the script and a
    skipped line is distinguishable from a failed one.

    Args:
        entries: :class:`ScriptEntry` objects, ``{"timestamp", "text"}``
            dicts, or plain strings.
    """
    items: list[WorkItem | None] = []
    for index, entry in enumerate(entries):
        if isinstance(entry, ScriptEntry):
            text, timestamp = entry.text, entry.timestamp
        elif isinstance(entry, dict):
            text, timestamp = entry.get("text") or "", entry.get("timestamp") or ""
        else:
            text, timestamp = str(entry), ""

        items.append(WorkItem(index=index, text=text, timestamp=timestamp) if text.strip() else None)
    return items


def summarize_items(items: list[WorkItem | None]) -> dict:
    """Count clips by state; ``skipped`` counts blank lines."""
    counts = {state.value: 0 for state in ItemState}
    skipped = 0
    for item in items:
        if item is None:
            skipped += 1
        else:
            counts[item.state.value] += 1
    counts["skipped"] = skipped
    counts["total"] = len(items) - skipped
    return counts


def seconds_until_retry(item: WorkItem, now: datetime | None = None) -> int:
    """Remaining whole seconds before a failed clip is worth retrying (0 if none)."""
    if item.retry_at is None:
        return 0
    now = now or datetime.now(timezone.utc)
    remaining = (item.retry_at - now).total_seconds()
    return max(0, math.ceil(remaining))


class BatchOrchestrator:
    """
    Drive a script's clips through the resilient executor.

    Args:
        pool: Credential pool shared by every call.
        executor: Executor to use; one is built over ``pool`` if omitted.
        inter_item_delay: Pause after each successful clip.
        pause: Replacement for the pacing wait (defaults to the executor's
            cancellable wait).
    """

    def __init__(
        self,
        pool: CredentialPool,
        executor: ResilientExecutor | None = None,
        inter_item_delay: float = INTER_ITEM_DELAY_SECONDS,
        pause: Callable[[float], None] | None = None,
    ):
        self.pool = pool
        self.executor = executor or ResilientExecutor(pool)
        self.inter_item_delay = inter_item_delay
        self._pause = pause or self.executor.wait
        self._lock = threading.Lock()
        self._active_runs = 0

    def cancel(self) -> None:
        """Abandon the current run; committed clips keep their state."""
        self.executor.cancel()

    # -- run bookkeeping ----------------------------------------------------

    @contextmanager
    def _run_session(self):
        """
        Mark a run as active for its duration.

        A cancel is cleared only by the outermost run, so a clip retried
        while a cancelled batch is still unwinding cannot restart it.
        """
        with self._lock:
            if self._active_runs == 0:
                self.executor.reset_cancel()
            self._active_runs += 1
        try:
            yield
        finally:
            with self._lock:
                self._active_runs -= 1

    # -- item state ---------------------------------------------------------

    def _update(self, item: WorkItem, **fields) -> None:
        with self._lock:
            for name, value in fields.items():
                setattr(item, name, value)

    def _retry_at(self, retry_after_seconds: int | None) -> datetime | None:
        if not retry_after_seconds or retry_after_seconds <= 0:
            return None
        failed_at = datetime.fromtimestamp(self.pool.now(), timezone.utc)
        return failed_at + timedelta(seconds=retry_after_seconds)

    def _record_failure(self, item: WorkItem, exc: VoiceoverError) -> None:
        retry_after = None
        if isinstance(exc, RetriesExhausted):
            message = exc.last_failure.message
            retry_after = exc.last_failure.retry_after_seconds
        elif isinstance(exc, RemoteCallFailed):
            message = exc.classification.message
        elif isinstance(exc, NoCredentialAvailable):
            message = str(exc)
            retry_after = self.pool.seconds_until_next_available()
        else:
            message = str(exc)

        self._update(
            item,
            state=ItemState.FAILED,
            artifact=None,
            error=message,
            retry_at=self._retry_at(retry_after),
            attempts=exc.attempts,
        )

    def _run_item(self, item: WorkItem, work_factory: WorkFactory) -> bool:
        """
        Run one clip to a terminal state.

        Returns:
            ``False`` if the run was cancelled (the clip is back to IDLE).
        """
        self._update(item, state=ItemState.LOADING, artifact=None, error=None, retry_at=None)
        try:
            artifact, attempts = self.executor.execute_counted(work_factory(item.text))
        except CallCancelled as exc:
            self._update(item, state=ItemState.IDLE, attempts=exc.attempts)
            return False
        except VoiceoverError as exc:
            logger.warning("Failed to generate audio for clip %d: %s", item.index, exc)
            self._record_failure(item, exc)
        else:
            self._update(
                item,
                state=ItemState.SUCCEEDED,
                artifact=artifact,
                error=None,
                retry_at=None,
                attempts=attempts,
            )
        finally:
            if item.state is ItemState.LOADING:
                self._update(item, state=ItemState.FAILED, error="Interrupted")
        return True

    # -- public operations --------------------------------------------------

    def run_all(self, items: list[WorkItem | None], work_factory: WorkFactory) -> BatchSummary:
        """
        Generate every clip in order.

        All clips are reset to IDLE first.  Blank slots (``None``) are
        skipped.  No clip failure stops the loop; only :meth:`cancel` does.

        Args:
            items: Output of :func:`build_items`; mutated in place.
            work_factory: Maps clip text to ``work_fn(secret) -> artifact``.

        Returns:
            :class:`BatchSummary` for the run.
        """
        with self._run_session():
            return self._run_all(items, work_factory)

    def _run_all(self, items: list[WorkItem | None], work_factory: WorkFactory) -> BatchSummary:
        with self._lock:
            for item in items:
                if item is not None:
                    item.state = ItemState.IDLE
                    item.artifact = None
                    item.error = None
                    item.retry_at = None
                    item.attempts = 0

        started = datetime.now()
        pending = [item for item in items if item is not None]
        skipped = len(items) - len(pending)
        last_position = max((p for p, item in enumerate(items) if item is not None), default=-1)
        succeeded = failed = 0
        cancelled = False

        print(
            f"\nStarting batch: {len(pending)} clips "
            f"({skipped} blank lines skipped) across {self.pool.total} key(s)\n"
        )

        for position, item in enumerate(items):
            if item is None:
                continue

            print(f"[{item.index + 1}/{len(items)}] {item.timestamp or 'clip'}: {item.text[:60]}")
            if not self._run_item(item, work_factory):
                cancelled = True
                break

            if item.state is ItemState.SUCCEEDED:
                succeeded += 1
                # pause between clips, not after the last one
                if position < last_position:
                    try:
                        self._pause(self.inter_item_delay)
                    except CallCancelled:
                        cancelled = True
                        break
            else:
                failed += 1

        duration = (datetime.now() - started).total_seconds()
        summary = BatchSummary(
            total=len(pending),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            cancelled=cancelled,
            duration_seconds=round(duration, 1),
        )

        sep = "=" * 60
        print(f"\n{sep}")
        print("BATCH CANCELLED" if cancelled else "BATCH COMPLETE")
        print(f"  Clips:     {summary.total}")
        print(f"  Succeeded: {summary.succeeded}")
        print(f"  Failed:    {summary.failed}")
        print(f"  Duration:  {duration:.1f} s")
        print(f"{sep}\n")

        self.pool.log_status()
        return summary

    def retry_one(
        self,
        items: list[WorkItem | None],
        index: int,
        work_factory: WorkFactory,
    ) -> WorkItem | None:
        """
        Re-run exactly one clip; every other clip is left untouched.

        Args:
            items: The batch's item list.
            index: Script position of the clip to retry.
            work_factory: Same factory passed to :meth:`run_all`.

        Returns:
            The updated item, or ``None`` if ``index`` is out of range or a
            blank line.  A cancelled retry leaves the clip IDLE.
        """
        if not 0 <= index < len(items) or items[index] is None:
            return None

        item = items[index]
        with self._run_session():
            print(f"Retrying clip {index + 1}/{len(items)}")
            self._run_item(item, work_factory)
        return item

    def rerun_failed(
        self,
        items: list[WorkItem | None],
        work_factory: WorkFactory,
        wait_for_retry: bool = True,
    ) -> dict:
        """
        Retry every FAILED clip once, in order.

        When ``wait_for_retry`` is set, each clip's ``retry_at`` is honoured
        (cancellable) before it is retried.  A cancel stops the session: the
        clip in flight goes back to its previous FAILED state and is not
        counted, and no further clip is retried.

        Returns:
            Dict with ``retried``, ``succeeded``, ``still_failed`` and
            ``cancelled``.
        """
        failed = [item for item in items if item is not None and item.state is ItemState.FAILED]

        sep = "=" * 60
        print(f"\n{sep}")
        print(f"RERUN SESSION: {len(failed)} clips to retry")
        print(f"{sep}\n")

        retried = succeeded = 0
        cancelled = False
        with self._run_session():
            for item in failed:
                if self.executor.cancelled:
                    cancelled = True
                    break

                if wait_for_retry:
                    remaining = seconds_until_retry(
                        item, datetime.fromtimestamp(self.pool.now(), timezone.utc)
                    )
                    if remaining:
                        print(f"  Clip {item.index + 1} available again in {remaining}s...")
                        try:
                            self._pause(remaining)
                        except CallCancelled:
                            cancelled = True
                            break

                previous = (item.error, item.retry_at, item.attempts)
                print(f"Retrying clip {item.index + 1}/{len(items)}")
                if not self._run_item(item, work_factory):
                    error, retry_at, attempts = previous
                    self._update(
                        item, state=ItemState.FAILED, error=error,
                        retry_at=retry_at, attempts=attempts,
                    )
                    cancelled = True
                    break

                retried += 1
                if item.state is ItemState.SUCCEEDED:
                    succeeded += 1

        result = {
            "retried": retried,
            "succeeded": succeeded,
            "still_failed": retried - succeeded,
            "cancelled": cancelled,
        }
        print(f"\n{sep}")
        print(f"RERUN {'CANCELLED' if cancelled else 'SUMMARY'}: {succeeded}/{retried} succeeded, "
              f"{result['still_failed']} still failed")
        print(f"{sep}\n")
        return result


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def export_batch_report(
    items: list[WorkItem | None],
    report_path: Path = BATCH_REPORT_PATH,
) -> pd.DataFrame:
    """
    Write a per-clip CSV report of the batch outcome.

    Args:
        items: Batch items (blank slots are omitted from the report).
        report_path: Destination CSV path.

    Returns:
        The report DataFrame.
    """
    rows = [
        {
            "clip_index": item.index,
            "timestamp": item.timestamp,
            "state": item.state.value,
            "attempts": item.attempts,
            "error": item.error,
            "retry_at": item.retry_at.isoformat() if item.retry_at else None,
            "artifact_bytes": len(item.artifact) if item.artifact is not None else 0,
        }
        for item in items
        if item is not None
    ]
    report_df = pd.DataFrame(rows, columns=[
        "clip_index", "timestamp", "state", "attempts", "error", "retry_at", "artifact_bytes",
    ])

    report_path = Path(report_path)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_df.to_csv(report_path, index=False)
    print(f"Batch report ({len(report_df)} clips) written to {report_path}")
    return report_df
