"""
Sebha Session Module

The counting state machine. It owns the current session (selected sebha,
session tally, match baseline) and turns two kinds of input into counts:
- taps (``manual_increment``)
- speech transcripts from the recognizer (``on_transcript``)

States:
- IDLE: no recognition running
- LISTENING: recognition running, ``last_seen_matches`` is the baseline for
  the current transcript
- TARGET_REACHED: tally hit the target, advance to the next sebha pending

The recognizer revises its transcript as it goes, so every update is
rescanned in full and only the increase over the last credited match count
is applied.

All methods run on the control thread. The dispatcher is an asyncio event
loop in the app (anything with ``call_soon_threadsafe`` and ``call_later``
works); recognizer callbacks are marshaled onto it by RecognitionSlot.
"""

import logging
from enum import Enum
from typing import Any, Callable

from .errors import OutOfRange, RecognitionUnavailable
from .feedback import FeedbackSink, NullFeedback
from .matching import count_matches
from .recognition import Dispatcher, RecognitionSlot, RecognizerFactory, TranscriptEvent
from .sebha_typing import (
    CounterAdvanced,
    CounterCollection,
    DictationUpdated,
    Session,
    SessionChanged,
    SessionEvent,
    SessionSnapshot,
    SessionState,
    TargetReached,
)
from .store import CounterStore
from .voice_prompts import VoicePromptStore

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_LOCALE = "ar-SA"
ADVANCE_DELAY_SEC = 1.0  # pause on a reached target before moving on
VOICE_PROMPT_DELAY_SEC = 0.5  # pause after advancing before the voice prompt


class CaptureMode(str, Enum):
    """What the single recognition capture is currently used for."""
    COUNT = "count"        # matching the selected phrase
    DICTATE = "dictate"    # filling in a new sebha's text


Listener = Callable[[SessionEvent], None]


class SessionController:
    """
    Top-level owner of the sebha collection and the counting session.

    Usage:
        controller = SessionController(store, make_recognizer, loop)
        controller.subscribe(print)
        controller.manual_increment()
        controller.start_listening()
    """

    def __init__(
        self,
        store: CounterStore,
        recognizer_factory: RecognizerFactory,
        dispatcher: Dispatcher,
        feedback: FeedbackSink | None = None,
        voice_prompts: VoicePromptStore | None = None,
        locale: str = DEFAULT_LOCALE,
        advance_delay: float = ADVANCE_DELAY_SEC,
        voice_prompt_delay: float = VOICE_PROMPT_DELAY_SEC,
    ):
        self.store = store
        self.feedback = feedback or NullFeedback()
        self.voice_prompts = voice_prompts
        self.advance_delay = advance_delay
        self.voice_prompt_delay = voice_prompt_delay

        self._dispatcher = dispatcher
        self._slot = RecognitionSlot(recognizer_factory, dispatcher, locale)
        self._capture_mode: CaptureMode | None = None
        self._pending_advance: Any = None
        self._listeners: list[Listener] = []

        self.collection: CounterCollection = store.load()
        self.session = Session(selected_index=self.collection.selected_index)
        self.recognized_text = ""

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Session listener failed on {type(event).__name__}")

    def _changed(self) -> None:
        self._emit(SessionChanged(self.snapshot()))

    # -------------------------------------------------------------------------
    # State helpers
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_listening(self) -> bool:
        return self._capture_mode == CaptureMode.COUNT and self._slot.active

    @property
    def is_dictating(self) -> bool:
        return self._capture_mode == CaptureMode.DICTATE and self._slot.active

    @property
    def advance_pending(self) -> bool:
        return self._pending_advance is not None

    def _resting_state(self) -> SessionState:
        return SessionState.LISTENING if self.is_listening else SessionState.IDLE

    def _reset_session(self) -> None:
        self.session.selected_index = self.collection.selected_index
        self.session.session_tally = 0
        self.session.last_seen_matches = 0
        if self.is_listening:
            self._restart_segment()

    def _restart_segment(self) -> None:
        """
        Begin a new listening segment for the newly selected sebha.

        The recognizer's transcript runs from the start of its capture, so a
        zero baseline is only valid against a fresh capture.
        """
        try:
            self._slot.acquire(self._on_listening_event)
        except RecognitionUnavailable as e:
            logger.warning(f"Cannot restart listening: {e}")
            self._capture_mode = None
            return
        logger.info(f"New listening segment for {self.snapshot().phrase!r}")

    def _cancel_pending_advance(self) -> None:
        if self._pending_advance is not None:
            self._pending_advance.cancel()
            self._pending_advance = None
            logger.info("Cancelled pending advance")
        self.session.state = self._resting_state()

    def _release_capture(self) -> None:
        self._slot.release()
        self._capture_mode = None
        if self.session.state == SessionState.LISTENING:
            self.session.state = SessionState.IDLE

    def snapshot(self) -> SessionSnapshot:
        counter = self.collection.selected
        target = counter.target if counter else 0
        tally = self.session.session_tally
        return SessionSnapshot(
            state=self.session.state,
            selected_index=self.collection.selected_index,
            phrase=counter.phrase if counter else "",
            target=target,
            session_tally=tally,
            lifetime_count=counter.count if counter else 0,
            progress=min(tally / target, 1.0) if target > 0 else 0.0,
            is_listening=self.is_listening,
            is_dictating=self.is_dictating,
            recognized_text=self.recognized_text,
            input_level=self._slot.level,
        )

    # -------------------------------------------------------------------------
    # Speech counting
    # -------------------------------------------------------------------------

    def start_listening(self) -> None:
        """
        Start (or restart) counting by voice.

        Any running capture, including dictation, is fully released before
        the new one is acquired.

        Raises:
            RecognitionUnavailable: the engine could not start; state is IDLE
        """
        self._release_capture()
        self.session.last_seen_matches = 0
        try:
            self._slot.acquire(self._on_listening_event)
        except RecognitionUnavailable as e:
            logger.warning(f"Cannot start listening: {e}")
            self._changed()
            raise

        self._capture_mode = CaptureMode.COUNT
        if self._pending_advance is None:
            self.session.state = SessionState.LISTENING
        logger.info(f"Listening for {self.snapshot().phrase!r}")
        self._changed()

    def stop_listening(self) -> None:
        if self._capture_mode == CaptureMode.COUNT:
            self._release_capture()
        if self._pending_advance is None:
            self.session.state = SessionState.IDLE
        self._changed()

    def _on_listening_event(self, event: TranscriptEvent) -> None:
        if event.error is not None:
            self.on_recognition_error(event.error)
        elif event.is_final:
            self.on_transcript_final(event.text)
        else:
            self.on_transcript(event.text)

    def on_transcript(self, text: str) -> int:
        """
        Credit new phrase matches from a (partial) transcript.

        Args:
            text: the whole running transcript of the current listening segment

        Returns:
            The number of counts applied (0 for repeated or revised transcripts)
        """
        if self.session.state != SessionState.LISTENING:
            return 0
        counter = self.collection.selected
        if counter is None:
            return 0

        matches = count_matches(text, counter.phrase)
        delta = matches - self.session.last_seen_matches
        logger.debug(f"Transcript {text!r}: matches={matches}, baseline={self.session.last_seen_matches}")
        if delta <= 0:
            return 0

        self.session.last_seen_matches = matches
        logger.info(f"{delta} new match(es) of {counter.phrase!r}")
        self._apply(delta, manual=False)
        return delta

    def on_transcript_final(self, text: str) -> int:
        applied = self.on_transcript(text)
        self.stop_listening()
        return applied

    def on_recognition_error(self, error: BaseException | None = None) -> None:
        logger.error(f"Speech recognition error: {error}")
        self.stop_listening()

    # -------------------------------------------------------------------------
    # Counting
    # -------------------------------------------------------------------------

    def manual_increment(self) -> None:
        """Tap path: +1 on the selected sebha, in any state."""
        if self.collection.selected is None:
            logger.warning("Tap ignored, there are no sebhas")
            return
        self._apply(1, manual=True)

    def _apply(self, delta: int, manual: bool) -> None:
        self.session.session_tally += delta
        self.store.increment(delta, manual=manual)
        self._evaluate_target()
        self._changed()

    def _evaluate_target(self) -> None:
        counter = self.collection.selected
        if counter is None or counter.target <= 0:
            return
        if self.session.session_tally < counter.target or self._pending_advance is not None:
            return

        index = self.collection.selected_index
        self.session.state = SessionState.TARGET_REACHED
        logger.info(f"Target reached for {counter.phrase!r} ({self.session.session_tally}/{counter.target})")

        for notify in (self.feedback.trigger_haptic_success, self.feedback.play_completion_sound):
            try:
                notify()
            except Exception as e:
                logger.warning(f"Feedback failed: {e}")

        self._emit(TargetReached(counter_index=index, phrase=counter.phrase, session_tally=self.session.session_tally))
        self._pending_advance = self._dispatcher.call_later(self.advance_delay, self._advance)

    def _advance(self) -> None:
        self._pending_advance = None
        if not self.collection.counters:
            self.session.state = self._resting_state()
            self._changed()
            return

        from_index = self.collection.selected_index
        to_index = (from_index + 1) % len(self.collection)
        self.store.select(to_index)
        self._reset_session()
        self.session.state = self._resting_state()
        phrase = self.collection.selected.phrase
        logger.info(f"Switched to next sebha: {phrase!r} ({from_index} -> {to_index})")

        self._emit(CounterAdvanced(from_index=from_index, to_index=to_index))
        self._changed()

        if self.voice_prompts is not None and self.voice_prompts.has_recording(phrase):
            self._dispatcher.call_later(self.voice_prompt_delay, self.voice_prompts.play, phrase)

    # -------------------------------------------------------------------------
    # Collection operations
    # -------------------------------------------------------------------------

    def select_counter(self, index: int) -> None:
        """Select a sebha and restart the session on it (tally and baseline reset)."""
        if not self.collection.is_valid_index(index):
            raise OutOfRange(f"No sebha at index {index!r} (have {len(self.collection)})")
        self.store.select(index)
        self._reset_session()
        self._cancel_pending_advance()
        self._changed()

    def add_counter(self, phrase: str, target) -> int:
        index = self.store.add_counter(phrase, target)
        self._reset_session()
        self._cancel_pending_advance()
        self._changed()
        return index

    def remove_counter(self, index: int) -> None:
        previous = self.collection.selected
        self.store.remove_counter(index)
        current = self.collection.selected
        if current is None or current is not previous:
            self._reset_session()
            self._cancel_pending_advance()
        else:
            self.session.selected_index = self.collection.selected_index
        self._changed()

    def reorder(self, from_index: int, to_index: int) -> None:
        self.store.reorder(from_index, to_index)
        self.session.selected_index = self.collection.selected_index
        self._changed()

    def update_target(self, index: int, new_target) -> int:
        target = self.store.update_target(index, new_target)
        self._changed()
        return target

    def toggle_favorite(self, index: int) -> bool:
        favorite = self.store.toggle_favorite(index)
        self._changed()
        return favorite

    # -------------------------------------------------------------------------
    # Dictation (speaking a new sebha's text)
    # -------------------------------------------------------------------------

    def start_dictation(self) -> None:
        """
        Capture speech into ``recognized_text`` instead of counting.

        Stops listening first; there is only one microphone capture.

        Raises:
            RecognitionUnavailable: the engine could not start
        """
        self._release_capture()
        self.recognized_text = ""
        try:
            self._slot.acquire(self._on_dictation_event)
        except RecognitionUnavailable as e:
            logger.warning(f"Cannot start dictation: {e}")
            self._changed()
            raise
        self._capture_mode = CaptureMode.DICTATE
        logger.info("Dictation started")
        self._changed()

    def _on_dictation_event(self, event: TranscriptEvent) -> None:
        if event.error is not None:
            logger.error(f"Dictation error: {event.error}")
            self.stop_dictation()
            return
        self.recognized_text = event.text
        self._emit(DictationUpdated(text=event.text, is_final=event.is_final))
        if event.is_final:
            self.stop_dictation()

    def stop_dictation(self) -> str:
        if self._capture_mode == CaptureMode.DICTATE:
            self._release_capture()
            logger.info(f"Dictation stopped: {self.recognized_text!r}")
        self._changed()
        return self.recognized_text

    def close(self) -> None:
        """Release the microphone and drop any pending advance."""
        self._release_capture()
        if self._pending_advance is not None:
            self._pending_advance.cancel()
            self._pending_advance = None
        self.session.state = SessionState.IDLE
