"""
voicecue - Follow a live speech transcript through a reference script.

Aligns partial and final transcript events from a streaming speech-to-text
provider against a fixed script and keeps a monotonically advancing pointer
to the words that have been spoken.
"""

__version__ = "0.1.0"

from .aligner import AlignmentEngine, AlignmentSettings, MatchResult
from .events import TranscriptEvent, TranscriptEventError, parse_message
from .main import VoicecueApp
from .script_parser import ParsedScript, parse_script
from .server import WebServer
from .threaded_tracker import ThreadedTracker
from .tracker import ScriptTracker, TrackerSnapshot, TrackerStatus, TrackingSettings

__all__ = [
    "AlignmentEngine",
    "AlignmentSettings",
    "MatchResult",
    "ParsedScript",
    "parse_script",
    "ScriptTracker",
    "ThreadedTracker",
    "TrackerSnapshot",
    "TrackerStatus",
    "TrackingSettings",
    "TranscriptEvent",
    "TranscriptEventError",
    "parse_message",
    "VoicecueApp",
    "WebServer",
]
