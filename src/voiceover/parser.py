"""
Script parsing, TTS response extraction, and PCM → WAV wrapping.

No network I/O occurs here; all functions are pure transformations of
strings/dicts/bytes to support easy unit testing.
"""

from __future__ import annotations

import base64
import binascii
import io
import json
import re
import wave
from dataclasses import dataclass
from pathlib import Path

from .config import PCM_CHANNELS, PCM_SAMPLE_RATE, PCM_SAMPLE_WIDTH_BYTES
from .errors import ScriptParseError


@dataclass
class ScriptEntry:
    """One timed line of a voiceover script."""

    timestamp: str  # e.g. "00:00-00:05"
    text: str


def strip_code_fences(content: str) -> str:
    """Remove a surrounding Markdown code fence (```json ... ```), if present."""
    content = content.strip()
    if content.startswith("```"):
        content = re.sub(r"^```(?:json)?\n?", "", content)
        content = re.sub(r"\n?```$", "", content)
        content = content.strip()
    return content


def parse_script_json(content: str) -> list[ScriptEntry]:
    """
    Parse a generated script into entries.

    Expected payload::

        [{"timestamp": "00:00-00:05", "text": "Opening line."}, ...]

    Entries with empty text are kept; the orchestrator skips them so the
    clip positions still line up with the script.

    Args:
        content: Raw model output, optionally fenced.

    Returns:
        List of :class:`ScriptEntry` in script order.

    Raises:
        ScriptParseError: Content is not a JSON array of entry objects.
    """
    try:
        payload = json.loads(strip_code_fences(content))
    except (TypeError, ValueError) as exc:
        raise ScriptParseError(
            "Could not parse the generated script. Please try again."
        ) from exc

    if not isinstance(payload, list):
        raise ScriptParseError(
            f"Expected a JSON array of script entries, got {type(payload).__name__}."
        )

    entries: list[ScriptEntry] = []
    for position, item in enumerate(payload):
        if not isinstance(item, dict) or "text" not in item:
            raise ScriptParseError(f"Script entry {position} has no 'text' field.")
        entries.append(ScriptEntry(
            timestamp=str(item.get("timestamp", "")),
            text=str(item["text"] or ""),
        ))
    return entries


def load_script(path: Path) -> list[ScriptEntry]:
    """
    Read and parse a script JSON file.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ScriptParseError: The file content is not a valid script.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Script file not found: {path}")
    return parse_script_json(path.read_text(encoding="utf-8"))


def extract_audio_data(response_json: dict) -> bytes:
    """
    Decode the inline audio payload of a ``generateContent`` response.

    Reads ``candidates[0].content.parts[0].inlineData.data``.

    Raises:
        ValueError: No audio part is present or it is not valid base64.
    """
    try:
        encoded = response_json["candidates"][0]["content"]["parts"][0]["inlineData"]["data"]
    except (KeyError, IndexError, TypeError):
        encoded = None

    if not encoded:
        raise ValueError("No audio data received from the API.")

    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Audio data in API response is not valid base64.") from exc


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = PCM_SAMPLE_RATE,
    channels: int = PCM_CHANNELS,
    sample_width: int = PCM_SAMPLE_WIDTH_BYTES,
) -> bytes:
    """
    Wrap raw little-endian PCM in a WAV (RIFF) container.

    Args:
        pcm: Raw sample bytes.
        sample_rate: Samples per second.
        channels: Channel count.
        sample_width: Bytes per sample.

    Returns:
        Complete WAV file contents.
    """
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()
