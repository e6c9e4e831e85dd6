"""
Transcript events delivered by a streaming speech-to-text provider.

This module defines the only contract the tracker has with the transcription
transport: a sequence of typed events, each either a partial (unstable,
frequently overwritten) or a final (committed) piece of text. Providers name
their messages differently, so parse_message() maps the known payload shapes
onto TranscriptEvent.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Provider messages that carry no transcript
_NON_TRANSCRIPT_TYPES: frozenset[str] = frozenset([
    "Begin", "SessionBegins", "Termination", "SessionTerminated",
    "SessionInformation",
])


class TranscriptEventError(ValueError):
    """Raised for a transcript payload that cannot be understood."""


@dataclass(frozen=True)
class TranscriptEvent:
    """A transcript fragment from the provider."""
    text: str
    is_final: bool
    received_at: float = field(default_factory=time.monotonic, compare=False)

    @classmethod
    def partial(cls, text: str) -> 'TranscriptEvent':
        """Create a partial (unstable) event."""
        return cls(text=text, is_final=False)

    @classmethod
    def final(cls, text: str) -> 'TranscriptEvent':
        """Create a final (committed) event."""
        return cls(text=text, is_final=True)

    def __repr__(self) -> str:
        status: str = "final" if self.is_final else "partial"
        return f"TranscriptEvent({status}: '{self.text}')"


def _require_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TranscriptEventError(
            f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _require_flag(payload: dict[str, Any], key: str) -> bool:
    value = payload.get(key, False)
    if not isinstance(value, bool):
        raise TranscriptEventError(
            f"'{key}' must be a boolean, got {type(value).__name__}")
    return value


def parse_message(payload: Any) -> TranscriptEvent | None:
    """
    Convert a provider message into a TranscriptEvent.

    Recognized shapes:
    - ``{"message_type": "PartialTranscript" | "FinalTranscript", "text": ...}``
    - ``{"type": "Turn", "transcript": ..., "end_of_turn": bool}`` (or any
      payload carrying ``transcript``)
    - ``{"text": ..., "is_final": bool}``

    Anything flagged final or end-of-turn becomes a final event; all other
    transcript payloads become partials.

    Args:
        payload: Decoded JSON message.

    Returns:
        The event, or None for provider messages without a transcript
        (session messages, speech-started notices, errors and the like).

    Raises:
        TranscriptEventError: If the payload is not an object or a
            transcript field has the wrong type.
    """
    if not isinstance(payload, dict):
        raise TranscriptEventError(
            f"Expected a JSON object, got {type(payload).__name__}")

    message_type = payload.get("message_type") or payload.get("type")

    if message_type == "PartialTranscript":
        return TranscriptEvent.partial(_require_text(payload, "text"))
    if message_type == "FinalTranscript":
        return TranscriptEvent.final(_require_text(payload, "text"))

    if message_type == "Turn" or "transcript" in payload:
        text: str = _require_text(payload, "transcript")
        if _require_flag(payload, "end_of_turn"):
            return TranscriptEvent.final(text)
        return TranscriptEvent.partial(text)

    if "text" in payload:
        text = _require_text(payload, "text")
        if _require_flag(payload, "is_final"):
            return TranscriptEvent.final(text)
        return TranscriptEvent.partial(text)

    if message_type in _NON_TRANSCRIPT_TYPES:
        logger.debug("Ignoring provider message: %s", message_type)
    else:
        logger.warning("Ignoring provider message without a transcript: %r", payload)
    return None


def parse_json(raw: str | bytes) -> TranscriptEvent | None:
    """Decode a JSON message and convert it with parse_message()."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise TranscriptEventError(f"Invalid JSON: {e}") from e
    return parse_message(payload)
