from contextlib import contextmanager

import pytest

from sebha.errors import RecognitionUnavailable
from sebha.persistence import MemoryKeyValueStore
from sebha.recognition import TranscriptEvent
from sebha.session import SessionController
from sebha.store import CounterStore


class TimerHandle:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualDispatcher:
    """Event-loop stand-in with a virtual clock; nothing runs until asked."""

    def __init__(self):
        self.now = 0.0
        self._ready = []
        self._timers = []

    def call_soon_threadsafe(self, callback, *args):
        self._ready.append((callback, args))

    def call_later(self, delay, callback, *args):
        handle = TimerHandle(self.now + delay, callback, args)
        self._timers.append(handle)
        return handle

    @property
    def pending_timers(self):
        return [t for t in self._timers if not t.cancelled]

    def run_pending(self):
        while self._ready:
            callback, args = self._ready.pop(0)
            callback(*args)

    def advance(self, seconds):
        deadline = self.now + seconds
        self.run_pending()
        while True:
            due = sorted((t for t in self.pending_timers if t.when <= deadline), key=lambda t: t.when)
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
            self.run_pending()
        self.now = deadline


class FakeRecognitionSession:
    def __init__(self, fail=False):
        self.fail = fail
        self.locale = None
        self.on_event = None
        self.started = False
        self.stopped = False

    def start(self, locale, on_event):
        if self.fail:
            raise RecognitionUnavailable("microphone permission denied")
        self.locale = locale
        self.on_event = on_event
        self.started = True

    def stop(self):
        self.stopped = True

    def say(self, text, is_final=False):
        self.on_event(TranscriptEvent(text=text, is_final=is_final))

    def crash(self, error):
        self.on_event(TranscriptEvent(error=error))


class FakeRecognizerFactory:
    def __init__(self):
        self.sessions = []
        self.fail = False

    def __call__(self):
        session = FakeRecognitionSession(fail=self.fail)
        self.sessions.append(session)
        return session

    @property
    def latest(self):
        return self.sessions[-1]


class RecordingFeedback:
    def __init__(self):
        self.haptics = 0
        self.sounds = 0

    def trigger_haptic_success(self):
        self.haptics += 1

    def play_completion_sound(self):
        self.sounds += 1


class FakeVoicePrompts:
    def __init__(self, recorded=()):
        self.recorded = set(recorded)
        self.played = []

    def has_recording(self, phrase):
        return phrase in self.recorded

    def play(self, phrase):
        self.played.append(phrase)

    @contextmanager
    def record(self, phrase):
        self.recording = phrase
        yield
        self.recording = None
        self.recorded.add(phrase)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return CounterStore(kv)


@pytest.fixture
def dispatcher():
    return ManualDispatcher()


@pytest.fixture
def recognizers():
    return FakeRecognizerFactory()


@pytest.fixture
def feedback():
    return RecordingFeedback()


@pytest.fixture
def events():
    return []


@pytest.fixture
def controller(store, recognizers, dispatcher, feedback, events):
    ctrl = SessionController(store, recognizers, dispatcher, feedback=feedback, advance_delay=1.0)
    ctrl.subscribe(events.append)
    return ctrl
