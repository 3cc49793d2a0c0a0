"""
Narration runner — turns a script JSON file into one WAV clip per line.

Loads keys from ``API_KEY`` / ``GEMINI_API_KEY``, generates every clip with
key rotation, optionally reruns failures once their cooldown has passed,
writes the clips and a CSV batch report.

Usage (from project root):
    python -m src.voiceover.runner script.json --language english --voice female

Or programmatically:
    from src.voiceover.runner import run_narration
    summary = run_narration(Path("script.json"))
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .batch import (
    BatchOrchestrator,
    BatchSummary,
    ItemState,
    WorkItem,
    build_items,
    export_batch_report,
)
from .config import (
    AUDIO_DIR,
    BATCH_REPORT_PATH,
    INTER_ITEM_DELAY_SECONDS,
    LANGUAGES,
    LOGGER_NAME,
    VOICES,
)
from .credentials import CredentialPool
from .errors import ScriptParseError
from .parser import load_script
from .tts import tts_work_factory

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def write_clips(items: list[WorkItem | None], output_dir: Path = AUDIO_DIR) -> list[Path]:
    """Write every succeeded clip as ``clip_<NN>.wav``; return the paths written."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    for item in items:
        if item is None or item.state is not ItemState.SUCCEEDED:
            continue
        path = output_dir / f"clip_{item.index + 1:02d}.wav"
        path.write_bytes(item.artifact)
        written.append(path)

    print(f"Wrote {len(written)} clip(s) to {output_dir}")
    return written


def run_narration(
    script_path: Path,
    language: str = "english",
    voice: str = "female",
    output_dir: Path = AUDIO_DIR,
    report_path: Path = BATCH_REPORT_PATH,
    rerun_failed: bool = False,
    pool: CredentialPool | None = None,
    work_factory=None,
    inter_item_delay: float = INTER_ITEM_DELAY_SECONDS,
) -> BatchSummary:
    """
    Narrate a script end to end.

    Args:
        script_path: JSON script file (``[{timestamp, text}, ...]``).
        language: Narration language.
        voice: ``'male'`` or ``'female'``.
        output_dir: Directory for the WAV clips.
        report_path: CSV batch report destination.
        rerun_failed: Retry failed clips once after their cooldown.
        pool: Credential pool; built from the environment if omitted.
        work_factory: Override of the TTS work factory.
        inter_item_delay: Pause after each successful clip.

    Returns:
        :class:`BatchSummary`, with rerun successes folded in.
    """
    entries = load_script(script_path)
    items = build_items(entries)
    print(f"Loaded script: {len(entries)} lines from {Path(script_path).name}")

    pool = pool or CredentialPool.from_env()
    factory = work_factory or tts_work_factory(language, voice)
    orchestrator = BatchOrchestrator(pool, inter_item_delay=inter_item_delay)

    try:
        summary = orchestrator.run_all(items, factory)
        if rerun_failed and summary.failed and not summary.cancelled:
            rerun = orchestrator.rerun_failed(items, factory)
            summary.succeeded += rerun["succeeded"]
            summary.failed -= rerun["succeeded"]
            summary.cancelled = rerun["cancelled"]
    except KeyboardInterrupt:
        print("Interrupted; keeping clips generated so far.")
        raise
    finally:
        write_clips(items, output_dir)
        export_batch_report(items, report_path)

    return summary


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Generate voiceover clips from a script with API key rotation")
    ap.add_argument("script", type=Path, help="Script JSON file: [{timestamp, text}, ...]")
    ap.add_argument("--language", choices=LANGUAGES, default="english")
    ap.add_argument("--voice", choices=VOICES, default="female")
    ap.add_argument("--output-dir", type=Path, default=AUDIO_DIR)
    ap.add_argument("--report", type=Path, default=BATCH_REPORT_PATH)
    ap.add_argument("--rerun-failed", action="store_true",
                    help="Retry failed clips once their rate-limit cooldown has passed")
    ap.add_argument("-v", "--verbose", action="store_true")
    return ap.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        summary = run_narration(
            args.script,
            language=args.language,
            voice=args.voice,
            output_dir=args.output_dir,
            report_path=args.report,
            rerun_failed=args.rerun_failed,
        )
    except (FileNotFoundError, ScriptParseError) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Run cancelled by user")
        return 2

    return 0 if summary.failed == 0 and not summary.cancelled else 2


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
