"""
Gemini text-to-speech request construction and execution.

This is the remote call boundary: one stateless ``generateContent`` call
per clip.  Non-2xx responses are turned into :class:`RemoteCallError` with
the fields the classifier needs (status, error category, retry interval),
so retry policy never has to look at raw HTTP.
"""

from __future__ import annotations

from collections.abc import Callable

import requests

from .classifier import (
    extract_reason,
    extract_retry_delay,
    parse_error_body,
    parse_retry_after_header,
)
from .config import (
    API_BASE_URL,
    API_KEY_HEADER,
    GENERATE_CONTENT_PATH,
    KEY_MATCH_PREFIX_LENGTH,
    REQUEST_TIMEOUT_SECONDS,
    TTS_MODEL_ID,
    VOICE_MAP,
)
from .errors import RemoteCallError
from .parser import extract_audio_data, pcm_to_wav


# ---------------------------------------------------------------------------
# Request construction
# ---------------------------------------------------------------------------

def build_request_headers(secret: str) -> dict:
    """Return HTTP headers authenticating a call with ``secret``."""
    return {
        API_KEY_HEADER: secret,
        "Content-Type": "application/json",
    }


def build_endpoint_url(model: str = TTS_MODEL_ID) -> str:
    return f"{API_BASE_URL}{GENERATE_CONTENT_PATH.format(model=model)}"


def resolve_voice(language: str, voice: str) -> str:
    """
    Map a language and voice gender to a prebuilt Gemini voice name.

    Raises:
        ValueError: Unknown language or voice.
    """
    try:
        return VOICE_MAP[language][voice]
    except KeyError:
        raise ValueError(
            f"Unsupported language/voice combination: '{language}'/'{voice}'. "
            f"Languages: {sorted(VOICE_MAP)}."
        ) from None


def build_tts_payload(text: str, voice_name: str) -> dict:
    """
    Construct the JSON body for a speech synthesis request.

    The text is sent as-is; prepending language instructions tends to be
    read aloud or to confuse the model.
    """
    return {
        "contents": [{"parts": [{"text": text}]}],
        "generationConfig": {
            "responseModalities": ["AUDIO"],
            "speechConfig": {
                "voiceConfig": {
                    "prebuiltVoiceConfig": {"voiceName": voice_name},
                },
            },
        },
    }


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

def error_from_response(response: requests.Response, secret: str) -> RemoteCallError:
    """
    Build a structured error from a non-2xx response.

    The key travels as a truncated hint so logs and error payloads never
    carry the full secret.
    """
    body = response.text
    error = parse_error_body(body) or {}
    retry = extract_retry_delay(error) if error else None
    if retry is None:
        retry = parse_retry_after_header(response.headers.get("Retry-After"))

    return RemoteCallError(
        status_code=response.status_code,
        message=error.get("message") or body or response.reason or "Request failed",
        error_status=error.get("status"),
        retry_after_seconds=retry,
        credential_hint=secret[:KEY_MATCH_PREFIX_LENGTH],
        body=body,
        reason=extract_reason(error) if error else None,
    )


# ---------------------------------------------------------------------------
# API call execution
# ---------------------------------------------------------------------------

def synthesize_speech(
    secret: str,
    text: str,
    language: str = "english",
    voice: str = "female",
    session: requests.Session | None = None,
    timeout: int = REQUEST_TIMEOUT_SECONDS,
) -> bytes:
    """
    Synthesize one clip and return it as WAV bytes.

    Args:
        secret: API key for this attempt.
        text: Line to speak.
        language: ``'english'`` or ``'vietnamese'``.
        voice: ``'male'`` or ``'female'``.
        session: Optional ``requests.Session`` for connection reuse.
        timeout: HTTP timeout in seconds.

    Returns:
        WAV file contents (24 kHz mono 16-bit).

    Raises:
        RemoteCallError: Non-2xx HTTP status.
        requests.RequestException: Transport failure (timeout, connection).
        ValueError: Response has no audio, or unknown language/voice.
    """
    http = session or requests
    response = http.post(
        build_endpoint_url(),
        headers=build_request_headers(secret),
        json=build_tts_payload(text, resolve_voice(language, voice)),
        timeout=timeout,
    )

    if not response.ok:
        raise error_from_response(response, secret)

    return pcm_to_wav(extract_audio_data(response.json()))


def tts_work_factory(
    language: str = "english",
    voice: str = "female",
    session: requests.Session | None = None,
) -> Callable[[str], Callable[[str], bytes]]:
    """
    Return a factory mapping a clip's text to an executor work function.

    The orchestrator calls ``factory(text)`` per item and hands the result
    to the executor, which calls it with a key on every attempt.
    """
    resolve_voice(language, voice)  # fail fast on a bad combination

    def make_work(text: str) -> Callable[[str], bytes]:
        def work(secret: str) -> bytes:
            return synthesize_speech(secret, text, language, voice, session=session)
        return work

    return make_work
