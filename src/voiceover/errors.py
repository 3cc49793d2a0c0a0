"""
Exception hierarchy for the narration client.

Rate limits and invalid credentials are *classifications*, resolved inside
the executor by rotating, waiting or blocking a key.  Only the terminal
outcomes below ever leave the executor, so callers catch
:class:`VoiceoverError` and never see a raw transport exception.
"""

from __future__ import annotations


class VoiceoverError(Exception):
    """
    Base class for every error raised by this package.

    Attributes:
        attempts: Remote attempts made by the call that raised it (0 when
            raised outside the executor).
    """

    attempts: int = 0


class NoCredentialAvailable(VoiceoverError):
    """Raised when the pool is empty or every credential is blocked."""

    def __init__(self, message: str = "", attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class CallCancelled(VoiceoverError):
    """Raised when a rate-limit wait is abandoned via ``cancel()``."""

    def __init__(self, message: str = "", attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class RetriesExhausted(VoiceoverError):
    """
    The retry budget was consumed without a successful call.

    Attributes:
        last_failure: :class:`classifier.Classification` of the final failure.
        attempts: Total attempts made (initial call + retries).
    """

    def __init__(self, last_failure, attempts: int):
        self.last_failure = last_failure
        self.attempts = attempts
        super().__init__(
            f"Max retries exceeded after {attempts} attempts: {last_failure.message}"
        )


class RemoteCallFailed(VoiceoverError):
    """
    An unclassified remote failure; never retried.

    Attributes:
        classification: :class:`classifier.Classification` of the failure.
        attempts: Attempts made before the failure short-circuited the loop.
    """

    def __init__(self, classification, attempts: int):
        self.classification = classification
        self.attempts = attempts
        super().__init__(classification.message)


class RemoteCallError(VoiceoverError):
    """
    Structured failure raised by the remote call boundary.

    Mirrors the fields of a Google API error body so the classifier does
    not have to re-parse JSON when the boundary already did.

    Attributes:
        status_code: HTTP status (or the ``error.code`` field of the body).
        error_status: Machine-readable category, e.g. ``RESOURCE_EXHAUSTED``.
        message: Human-readable ``error.message``.
        retry_after_seconds: Parsed retry interval, if the server sent one.
        credential_hint: Possibly truncated key that made the call.
        body: Raw response body text.
    """

    def __init__(
        self,
        status_code: int | None,
        message: str,
        error_status: str | None = None,
        retry_after_seconds: int | None = None,
        credential_hint: str | None = None,
        body: str | None = None,
        reason: str | None = None,
    ):
        self.status_code = status_code
        self.error_status = error_status
        self.message = message
        self.retry_after_seconds = retry_after_seconds
        self.credential_hint = credential_hint
        self.body = body
        self.reason = reason
        label = f"{status_code} {error_status}" if error_status else f"{status_code}"
        super().__init__(f"[{label}] {message}")


class ScriptParseError(VoiceoverError, ValueError):
    """Raised when a generated script cannot be parsed into entries."""
