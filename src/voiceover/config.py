"""
Project paths and the configuration surface used by src/voiceover.

API and execution constants live in the top-level ``config`` package; they
are re-exported here so modules import from one place.
"""

from pathlib import Path

from config.api_config import (
    API_BASE_URL,
    API_KEY_ENV_VARS,
    API_KEY_HEADER,
    API_KEY_SEPARATOR,
    GENERATE_CONTENT_PATH,
    LANGUAGES,
    SCRIPT_MODEL_ID,
    TTS_MODEL_ID,
    VOICE_MAP,
    VOICES,
)
from config.execution_params import (
    INTER_ITEM_DELAY_SECONDS,
    KEY_MASK_VISIBLE_CHARS,
    KEY_MATCH_PREFIX_LENGTH,
    MAX_RATE_LIMIT_WAIT_SECONDS,
    MAX_RETRIES,
    PCM_CHANNELS,
    PCM_SAMPLE_RATE,
    PCM_SAMPLE_WIDTH_BYTES,
    REQUEST_TIMEOUT_SECONDS,
)

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

# Resolve from this file: src/voiceover/config.py → src/voiceover → src → root
PROJECT_ROOT = Path(__file__).resolve().parents[2]

OUTPUT_DIR = PROJECT_ROOT / "output"
AUDIO_DIR = OUTPUT_DIR / "audio"
LOGS_DIR = PROJECT_ROOT / "logs"

BATCH_REPORT_PATH = LOGS_DIR / "batch_report.csv"

# Logger name shared by every module in the package
LOGGER_NAME = "voiceover"

__all__ = [
    "API_BASE_URL",
    "API_KEY_ENV_VARS",
    "API_KEY_HEADER",
    "API_KEY_SEPARATOR",
    "AUDIO_DIR",
    "BATCH_REPORT_PATH",
    "GENERATE_CONTENT_PATH",
    "INTER_ITEM_DELAY_SECONDS",
    "KEY_MASK_VISIBLE_CHARS",
    "KEY_MATCH_PREFIX_LENGTH",
    "LANGUAGES",
    "LOGGER_NAME",
    "LOGS_DIR",
    "MAX_RATE_LIMIT_WAIT_SECONDS",
    "MAX_RETRIES",
    "OUTPUT_DIR",
    "PCM_CHANNELS",
    "PCM_SAMPLE_RATE",
    "PCM_SAMPLE_WIDTH_BYTES",
    "PROJECT_ROOT",
    "REQUEST_TIMEOUT_SECONDS",
    "SCRIPT_MODEL_ID",
    "TTS_MODEL_ID",
    "VOICES",
    "VOICE_MAP",
]
