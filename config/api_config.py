"""
Gemini API endpoint, model and credential configuration.

This is the AUTHORITATIVE source for API configuration.
src/voiceover/config.py imports from here — do not maintain parallel copies.

ENVIRONMENT VARIABLES:
    API_KEY         — comma-separated Gemini API keys (checked first)
    GEMINI_API_KEY  — fallback when API_KEY is unset or empty

Several keys may be supplied at once, e.g.::

    GEMINI_API_KEY="AIza...one, AIza...two,AIza...three"

Each key is trimmed and empty entries are dropped.  Keys are used in the
order given; the pool rotates through them when one is rate limited.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Credential sources
# ---------------------------------------------------------------------------

API_KEY_ENV_VARS: tuple[str, ...] = ("API_KEY", "GEMINI_API_KEY")
API_KEY_SEPARATOR: str = ","

# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
#
# Gemini authenticates via the x-goog-api-key header; the model name is
# substituted into the generateContent path.

API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
GENERATE_CONTENT_PATH: str = "/models/{model}:generateContent"
API_KEY_HEADER: str = "x-goog-api-key"

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

TTS_MODEL_ID: str = "gemini-2.5-flash-preview-tts"
SCRIPT_MODEL_ID: str = "gemini-2.5-flash"   # produces the timestamped script

# ---------------------------------------------------------------------------
# Voices
# ---------------------------------------------------------------------------
# The TTS model is multilingual and infers the language from the text, so
# both languages share the same prebuilt voices.

LANGUAGES: list[str] = ["english", "vietnamese"]
VOICES: list[str] = ["male", "female"]

VOICE_MAP: dict[str, dict[str, str]] = {
    "english":    {"male": "Puck", "female": "Kore"},
    "vietnamese": {"male": "Puck", "female": "Kore"},
}
