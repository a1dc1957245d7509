from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SessionState(str, Enum):
    """Where the counting session stands."""
    IDLE = "idle"                      # no active recognition
    LISTENING = "listening"            # recognition running, baseline valid
    TARGET_REACHED = "target_reached"  # tally hit target, advance pending


@dataclass
class Counter:
    """
    A single sebha phrase and its lifetime totals.

    phrase (str): text matched against transcripts, may be multi-word Arabic
    target (int): session goal, 0 means no target
    count (int): lifetime count, only ever increases
    is_favorite (bool): pinned by the user
    """

    phrase: str
    target: int = 0
    count: int = 0
    is_favorite: bool = False


@dataclass
class CounterCollection:
    """
    Ordered counters plus the selected index.

    ``selected_index`` is -1 exactly when ``counters`` is empty.
    """

    counters: list[Counter] = field(default_factory=list)
    selected_index: int = -1

    def __len__(self) -> int:
        return len(self.counters)

    def __getitem__(self, index: int) -> Counter:
        return self.counters[index]

    @property
    def selected(self) -> Counter | None:
        if not self.counters:
            return None
        return self.counters[self.selected_index]

    def is_valid_index(self, index) -> bool:
        return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(self.counters)


@dataclass
class HistoryEntry:
    timestamp: datetime
    delta: int


@dataclass
class Session:
    """
    Transient counting state, never persisted.

    session_tally: count since the counter was last selected or reset
    last_seen_matches: matches already credited from the current transcript
    """

    selected_index: int = -1
    session_tally: int = 0
    last_seen_matches: int = 0
    state: SessionState = SessionState.IDLE


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    selected_index: int
    phrase: str
    target: int
    session_tally: int
    lifetime_count: int
    progress: float
    is_listening: bool
    is_dictating: bool
    recognized_text: str
    input_level: float = 0.0


@dataclass(frozen=True)
class CountStats:
    today: int
    this_week: int
    this_month: int
    total: int
    average_per_counter: int


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class TargetReached:
    counter_index: int
    phrase: str
    session_tally: int


@dataclass(frozen=True)
class CounterAdvanced:
    from_index: int
    to_index: int


@dataclass(frozen=True)
class SessionChanged:
    snapshot: SessionSnapshot


@dataclass(frozen=True)
class DictationUpdated:
    text: str
    is_final: bool = False


SessionEvent = TargetReached | CounterAdvanced | SessionChanged | DictationUpdated
