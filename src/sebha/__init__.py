from .normalize import normalize, tokenize
from .matching import count_matches, match_spans
from .sebha_typing import (
    Counter,
    CounterCollection,
    CounterAdvanced,
    CountStats,
    DictationUpdated,
    HistoryEntry,
    Session,
    SessionChanged,
    SessionSnapshot,
    SessionState,
    TargetReached,
)
from .errors import (
    SebhaError,
    InvalidInput,
    OutOfRange,
    CorruptState,
    RecognitionUnavailable,
    PersistenceError,
    AudioDeviceError,
)
from .persistence import KeyValueStore, MemoryKeyValueStore, JsonFileKeyValueStore
from .store import CounterStore, DEFAULT_SEBHAS
from .recognition import (
    RecognitionSession,
    RecognitionSlot,
    TranscriptEvent,
    VoskRecognitionSession,
)
from .feedback import FeedbackSink, NullFeedback, TerminalFeedback
from .voice_prompts import VoicePromptStore, prompt_key
from .history import summarize
from .session import SessionController


__all__ = [
    # Matching
    "normalize",
    "tokenize",
    "count_matches",
    "match_spans",
    # Data model and events
    "Counter",
    "CounterCollection",
    "CounterAdvanced",
    "CountStats",
    "DictationUpdated",
    "HistoryEntry",
    "Session",
    "SessionChanged",
    "SessionSnapshot",
    "SessionState",
    "TargetReached",
    # Errors
    "SebhaError",
    "InvalidInput",
    "OutOfRange",
    "CorruptState",
    "RecognitionUnavailable",
    "PersistenceError",
    "AudioDeviceError",
    # Storage
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "CounterStore",
    "DEFAULT_SEBHAS",
    # Collaborators
    "RecognitionSession",
    "RecognitionSlot",
    "TranscriptEvent",
    "VoskRecognitionSession",
    "FeedbackSink",
    "NullFeedback",
    "TerminalFeedback",
    "VoicePromptStore",
    "prompt_key",
    # Session
    "summarize",
    "SessionController",
]
