"""
src/voiceover — voiceover clip generation with API key rotation.

Module layout
-------------
config.py       — paths and re-exported API / execution constants
errors.py       — exception hierarchy (all terminal failures)
credentials.py  — key loading, CredentialPool (cooldowns, blocks, rotation)
classifier.py   — failure classification: rate limit / invalid key / other
executor.py     — ResilientExecutor: bounded retry with rotate-or-wait policy
batch.py        — WorkItem state, BatchOrchestrator, per-clip retry, CSV report
parser.py       — script JSON parsing, TTS response decoding, PCM → WAV
tts.py          — Gemini TTS request construction (the remote call boundary)
runner.py       — command-line narration of a script file

Public interface
----------------
Build a pool and orchestrator:
    pool = CredentialPool.from_env()
    orchestrator = BatchOrchestrator(pool)

Generate every clip, then retry one:
    items = build_items(load_script(path))
    orchestrator.run_all(items, tts_work_factory("english", "female"))
    orchestrator.retry_one(items, 3, tts_work_factory("english", "female"))

Run any call with rotation:
    ResilientExecutor(pool).execute(lambda key: call_api(key))
"""

from .batch import (
    BatchOrchestrator,
    BatchSummary,
    ItemState,
    WorkItem,
    build_items,
    export_batch_report,
    seconds_until_retry,
    summarize_items,
)
from .classifier import Classification, FailureKind, classify_failure
from .credentials import CredentialPool, CredentialRecord, load_credentials_from_env
from .errors import (
    CallCancelled,
    NoCredentialAvailable,
    RemoteCallError,
    RemoteCallFailed,
    RetriesExhausted,
    ScriptParseError,
    VoiceoverError,
)
from .executor import ResilientExecutor, Transition, next_transition
from .parser import ScriptEntry, load_script, parse_script_json
from .tts import synthesize_speech, tts_work_factory

__all__ = [
    # Credential pool
    "CredentialPool",
    "CredentialRecord",
    "load_credentials_from_env",
    # Classification
    "Classification",
    "FailureKind",
    "classify_failure",
    # Execution
    "ResilientExecutor",
    "Transition",
    "next_transition",
    # Batch orchestration
    "BatchOrchestrator",
    "BatchSummary",
    "ItemState",
    "WorkItem",
    "build_items",
    "export_batch_report",
    "seconds_until_retry",
    "summarize_items",
    # Scripts and speech
    "ScriptEntry",
    "load_script",
    "parse_script_json",
    "synthesize_speech",
    "tts_work_factory",
    # Errors
    "CallCancelled",
    "NoCredentialAvailable",
    "RemoteCallError",
    "RemoteCallFailed",
    "RetriesExhausted",
    "ScriptParseError",
    "VoiceoverError",
]
