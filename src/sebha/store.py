"""
Counter Store Module

Owns the durable side of the app: the ordered sebha counters, the selected
index, the manual count history and the voice-recording path map. This is
the only module that talks to the key-value persistence layer.

Counters are persisted as parallel lists (phrases, targets, lifetime counts)
plus a list of favorite phrases, under the same keys the mobile app used.
Every mutating method saves before returning.
"""

import logging
from datetime import datetime
from typing import Any

from .errors import CorruptState, InvalidInput, OutOfRange, PersistenceError
from .persistence import KeyValueStore
from .sebha_typing import Counter, CounterCollection, HistoryEntry

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

KEY_PHRASES = "allSebhas"
KEY_TARGETS = "allSebhasTarget"
KEY_COUNTS = "allSebhasCounter"
KEY_FAVORITES = "favoriteSebhas"
KEY_SELECTED = "selectedSebhaIndex"
KEY_HISTORY_DATES = "countHistoryDates"
KEY_HISTORY_COUNTS = "countHistoryCounts"
KEY_RECORDINGS = "sebhaVoiceRecordings"

DEFAULT_SEBHAS = [
    ("سبحان الله", 10),
    ("الحمد لله", 20),
    ("لا اله الا الله", 30),
]

SAVE_ATTEMPTS = 2  # first write plus one immediate retry


def default_collection() -> CounterCollection:
    counters = [Counter(phrase=phrase, target=target) for phrase, target in DEFAULT_SEBHAS]
    return CounterCollection(counters=counters, selected_index=0)


def parse_target(value) -> int:
    """
    Parse a target entered by the user.

    Args:
        value: int or numeric string

    Returns:
        The target as a non-negative int

    Raises:
        InvalidInput: for bools, floats, negative or non-numeric values
    """
    if isinstance(value, bool):
        raise InvalidInput(f"Target must be a whole number, got {value!r}")
    if isinstance(value, int):
        target = value
    elif isinstance(value, str):
        try:
            target = int(value.strip())
        except ValueError:
            raise InvalidInput(f"Target must be a whole number, got {value!r}") from None
    else:
        raise InvalidInput(f"Target must be a whole number, got {value!r}")
    if target < 0:
        raise InvalidInput(f"Target cannot be negative, got {target}")
    return target


def _is_int_list(values: Any) -> bool:
    return isinstance(values, list) and all(
        isinstance(v, int) and not isinstance(v, bool) and v >= 0 for v in values
    )


def _is_str_list(values: Any) -> bool:
    return isinstance(values, list) and all(isinstance(v, str) for v in values)


class CounterStore:
    """
    Durable sebha counters.

    Usage:
        store = CounterStore(JsonFileKeyValueStore(path))
        collection = store.load()
        store.add_counter("سبحان الله وبحمده", 33)
    """

    def __init__(self, kv: KeyValueStore):
        self._kv = kv
        self.collection = CounterCollection()
        self.history: list[HistoryEntry] = []
        self.recovered_from_corruption = False

    # -------------------------------------------------------------------------
    # Load / save
    # -------------------------------------------------------------------------

    def load(self) -> CounterCollection:
        """
        Read counters from persistence.

        First run (or an emptied list) yields the three built-in defaults,
        which are saved right away. Inconsistent fields are treated as
        corrupt: the defaults are returned and the persisted data is left
        untouched until the next mutation overwrites it.
        """
        self.recovered_from_corruption = False
        try:
            collection = self._read_collection()
        except CorruptState as e:
            logger.warning(f"Corrupt counter data, falling back to defaults: {e}")
            self.recovered_from_corruption = True
            collection = default_collection()
            self.collection = collection
        else:
            if collection is None:
                logger.info("No saved sebhas, seeding defaults")
                self.collection = default_collection()
                self.save()
            else:
                self.collection = collection

        self.history = self._read_history()
        logger.info(
            f"Loaded {len(self.collection)} sebhas, selected={self.collection.selected_index}, "
            f"history entries={len(self.history)}"
        )
        return self.collection

    def _read_collection(self) -> CounterCollection | None:
        phrases = self._kv.get(KEY_PHRASES)
        if phrases is None or phrases == []:
            return None

        targets = self._kv.get(KEY_TARGETS, [t for _, t in DEFAULT_SEBHAS])
        counts = self._kv.get(KEY_COUNTS, [0] * len(DEFAULT_SEBHAS))
        favorites = self._kv.get(KEY_FAVORITES, [])

        if not _is_str_list(phrases) or not all(p.strip() for p in phrases):
            raise CorruptState(f"{KEY_PHRASES} is not a list of non-empty strings")
        if not _is_int_list(targets):
            raise CorruptState(f"{KEY_TARGETS} is not a list of non-negative ints")
        if not _is_int_list(counts):
            raise CorruptState(f"{KEY_COUNTS} is not a list of non-negative ints")
        if not _is_str_list(favorites):
            raise CorruptState(f"{KEY_FAVORITES} is not a list of strings")
        if not len(phrases) == len(targets) == len(counts):
            raise CorruptState(
                f"Mismatched lengths: phrases={len(phrases)}, targets={len(targets)}, counts={len(counts)}"
            )

        favorite_set = set(favorites)
        counters = [
            Counter(phrase=p, target=t, count=c, is_favorite=p in favorite_set)
            for p, t, c in zip(phrases, targets, counts)
        ]

        selected = self._kv.get(KEY_SELECTED, 0)
        if not isinstance(selected, int) or isinstance(selected, bool) or not 0 <= selected < len(counters):
            selected = 0
        return CounterCollection(counters=counters, selected_index=selected)

    def _read_history(self) -> list[HistoryEntry]:
        dates = self._kv.get(KEY_HISTORY_DATES, [])
        deltas = self._kv.get(KEY_HISTORY_COUNTS, [])
        if not _is_str_list(dates) or not _is_int_list(deltas) or len(dates) != len(deltas):
            logger.warning("Count history is inconsistent, discarding it")
            return []
        history = []
        for stamp, delta in zip(dates, deltas):
            try:
                history.append(HistoryEntry(timestamp=datetime.fromisoformat(stamp), delta=delta))
            except ValueError:
                logger.warning(f"Skipping history entry with bad timestamp {stamp!r}")
        return history

    def _payload(self) -> dict[str, Any]:
        counters = self.collection.counters
        return {
            KEY_PHRASES: [c.phrase for c in counters],
            KEY_TARGETS: [c.target for c in counters],
            KEY_COUNTS: [c.count for c in counters],
            KEY_FAVORITES: [c.phrase for c in counters if c.is_favorite],
            KEY_SELECTED: self.collection.selected_index,
            KEY_HISTORY_DATES: [e.timestamp.isoformat() for e in self.history],
            KEY_HISTORY_COUNTS: [e.delta for e in self.history],
        }

    def save(self) -> bool:
        """
        Write every counter field in one transaction.

        A failed write is retried once. If that fails too the error is
        logged and False is returned; in-memory state stays authoritative.
        """
        payload = self._payload()
        for attempt in range(1, SAVE_ATTEMPTS + 1):
            try:
                self._kv.update(payload)
                return True
            except PersistenceError as e:
                logger.warning(f"Saving sebhas failed (attempt {attempt}/{SAVE_ATTEMPTS}): {e}")
        logger.error("Giving up on saving sebhas until the next change")
        return False

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _check_index(self, index) -> None:
        if not self.collection.is_valid_index(index):
            raise OutOfRange(f"No sebha at index {index!r} (have {len(self.collection)})")

    def add_counter(self, phrase: str, target) -> int:
        if not isinstance(phrase, str) or not phrase.strip():
            raise InvalidInput("Sebha phrase cannot be empty")
        target_value = parse_target(target)

        self.collection.counters.append(Counter(phrase=phrase.strip(), target=target_value))
        index = len(self.collection) - 1
        self.collection.selected_index = index
        logger.info(f"Added sebha {phrase!r} (target={target_value}) at index {index}")
        self.save()
        return index

    def remove_counter(self, index: int) -> None:
        self._check_index(index)
        removed = self.collection.counters.pop(index)

        if not self.collection.counters:
            self.collection.selected_index = -1
        else:
            selected = self.collection.selected_index
            if index <= selected:
                selected = max(0, selected - 1)
            self.collection.selected_index = min(selected, len(self.collection) - 1)

        logger.info(f"Removed sebha {removed.phrase!r}, selected={self.collection.selected_index}")
        self.save()

    def reorder(self, from_index: int, to_index: int) -> None:
        """Move one counter so it ends up at ``to_index``; selection follows its counter."""
        self._check_index(from_index)
        self._check_index(to_index)
        if from_index == to_index:
            return

        counters = self.collection.counters
        counters.insert(to_index, counters.pop(from_index))

        selected = self.collection.selected_index
        if selected == from_index:
            selected = to_index
        elif from_index < selected <= to_index:
            selected -= 1
        elif to_index <= selected < from_index:
            selected += 1
        self.collection.selected_index = selected
        self.save()

    def update_target(self, index: int, new_target) -> int:
        self._check_index(index)
        target = parse_target(new_target)
        self.collection.counters[index].target = target
        logger.info(f"Target of sebha {index} set to {target}")
        self.save()
        return target

    def toggle_favorite(self, index: int) -> bool:
        self._check_index(index)
        counter = self.collection.counters[index]
        counter.is_favorite = not counter.is_favorite
        self.save()
        return counter.is_favorite

    def select(self, index: int) -> None:
        self._check_index(index)
        self.collection.selected_index = index
        self.save()

    def increment(self, delta: int, manual: bool = False) -> None:
        """Add ``delta`` to the selected counter's lifetime count and save."""
        counter = self.collection.selected
        if counter is None or delta <= 0:
            return
        counter.count += delta
        if manual:
            self.history.append(HistoryEntry(timestamp=datetime.now(), delta=delta))
        self.save()

    # -------------------------------------------------------------------------
    # Voice recordings
    # -------------------------------------------------------------------------

    def recording_paths(self) -> dict[str, str]:
        paths = self._kv.get(KEY_RECORDINGS, {})
        if not isinstance(paths, dict):
            logger.warning(f"{KEY_RECORDINGS} is not a mapping, ignoring it")
            return {}
        return {str(k): str(v) for k, v in paths.items()}

    def set_recording_paths(self, paths: dict[str, str]) -> bool:
        for attempt in range(1, SAVE_ATTEMPTS + 1):
            try:
                self._kv.update({KEY_RECORDINGS: dict(paths)})
                return True
            except PersistenceError as e:
                logger.warning(f"Saving voice recordings failed (attempt {attempt}/{SAVE_ATTEMPTS}): {e}")
        return False
