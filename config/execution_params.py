"""
Retry, rate-limit and pacing constants for the narration client.

This is the AUTHORITATIVE source for execution constants.
src/voiceover/config.py imports from here — do not maintain parallel copies.

Design rationale:
- MAX_RETRIES = 2 gives three attempts per clip.  With several keys most
  rate limits are absorbed by rotation on the first retry.
- Waits are capped at MAX_RATE_LIMIT_WAIT_SECONDS because the server's
  retryDelay can be a minute or more while the retry budget is small.
- INTER_ITEM_DELAY_SECONDS smooths the outbound request rate between clips.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

MAX_RETRIES: int = 2                  # retries after the first attempt
MAX_RATE_LIMIT_WAIT_SECONDS: int = 10 # cap on a single rate-limit sleep
REQUEST_TIMEOUT_SECONDS: int = 60     # HTTP request timeout

# ---------------------------------------------------------------------------
# Batch pacing
# ---------------------------------------------------------------------------

INTER_ITEM_DELAY_SECONDS: float = 1.0  # pause after each successful clip

# ---------------------------------------------------------------------------
# Credential identity
# ---------------------------------------------------------------------------
# Error payloads may carry a truncated key; matching compares this many
# leading characters.

KEY_MATCH_PREFIX_LENGTH: int = 20
KEY_MASK_VISIBLE_CHARS: int = 4

# ---------------------------------------------------------------------------
# Audio format returned by the TTS model
# ---------------------------------------------------------------------------
# Raw PCM: 24 kHz, mono, 16-bit little-endian.

PCM_SAMPLE_RATE: int = 24000
PCM_CHANNELS: int = 1
PCM_SAMPLE_WIDTH_BYTES: int = 2
