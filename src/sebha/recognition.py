"""
Speech Recognition Module

The recognizer is an external capability: something that, once started,
keeps delivering the running transcript (partial and final) until it is
stopped or fails. This module defines that surface, a capture slot that
guarantees a single live session at a time, and a Vosk adapter for
offline Arabic recognition from the microphone.

Threading:
- Engines call ``on_event`` from their own threads.
- RecognitionSlot forwards every event through the dispatcher
  (``call_soon_threadsafe``), so handlers run on the control thread only.
- Each acquisition gets a new generation; events from a released session
  are dropped.
"""

import json
import logging
import queue
import threading
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Protocol

import numpy as np

from .errors import RecognitionUnavailable

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

SAMPLING_RATE = 16000
BLOCK_SIZE = 8000  # int16 frames per audio callback
QUEUE_POLL_SEC = 0.1  # worker wakeup interval to notice stop()


# =============================================================================
# INTERFACES
# =============================================================================

@dataclass(frozen=True)
class TranscriptEvent:
    """
    text: the whole running transcript for this session
    is_final: the engine will not revise or extend it
    error: set on the terminal error event
    """

    text: str = ""
    is_final: bool = False
    error: BaseException | None = None


class RecognitionSession(Protocol):
    def start(self, locale: str, on_event: Callable[[TranscriptEvent], None]) -> None:
        """Begin capturing. Raises RecognitionUnavailable if the engine cannot start."""
        ...

    def stop(self) -> None:
        """Release the microphone and engine. Safe to call more than once."""
        ...


RecognizerFactory = Callable[[], RecognitionSession]


class Dispatcher(Protocol):
    """The subset of ``asyncio.AbstractEventLoop`` the control thread needs."""

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args: Any) -> Any: ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any: ...


# =============================================================================
# CAPTURE SLOT
# =============================================================================

class RecognitionSlot:
    """
    Holds at most one live RecognitionSession.

    ``acquire`` always tears the previous session down first, so two audio
    captures never run together.
    """

    def __init__(self, factory: RecognizerFactory, dispatcher: Dispatcher, locale: str):
        self._factory = factory
        self._dispatcher = dispatcher
        self.locale = locale
        self._session: RecognitionSession | None = None
        self._handler: Callable[[TranscriptEvent], None] | None = None
        self._generation = 0

    @property
    def active(self) -> bool:
        return self._session is not None

    @property
    def level(self) -> float:
        """Input level (RMS, 0..1) of the live session, if it reports one."""
        if self._session is None:
            return 0.0
        return float(getattr(self._session, "level", 0.0))

    def acquire(self, handler: Callable[[TranscriptEvent], None]) -> None:
        self.release()
        self._generation += 1
        generation = self._generation

        def forward(event: TranscriptEvent) -> None:
            self._dispatcher.call_soon_threadsafe(self._deliver, generation, event)

        try:
            session = self._factory()
            session.start(self.locale, forward)
        except RecognitionUnavailable:
            raise
        except Exception as e:
            raise RecognitionUnavailable(f"Speech recognition failed to start: {e}") from e

        self._session = session
        self._handler = handler
        logger.info(f"Recognition started (locale={self.locale}, generation={generation})")

    def release(self) -> None:
        session = self._session
        self._session = None
        self._handler = None
        self._generation += 1
        if session is None:
            return
        try:
            session.stop()
        finally:
            logger.info("Recognition stopped")

    def _deliver(self, generation: int, event: TranscriptEvent) -> None:
        if generation != self._generation or self._handler is None:
            logger.debug("Dropping event from a released recognition session")
            return
        self._handler(event)


# =============================================================================
# AUDIO LEVEL
# =============================================================================

def compute_rms_energy(audio: np.ndarray) -> float:
    """
    Compute RMS energy of audio signal.

    Args:
        audio: Audio samples, float in [-1, 1] or int16

    Returns:
        RMS energy value (int16 input is scaled to [-1, 1] first)
    """
    if len(audio) == 0:
        return 0.0
    if audio.dtype == np.int16:
        audio = audio.astype(np.float32) / 32768.0
    return float(np.sqrt(np.mean(np.square(audio, dtype=np.float64))))


# =============================================================================
# VOSK ADAPTER
# =============================================================================

@lru_cache(maxsize=2)
def _load_vosk_model(model_path: str):
    from vosk import Model

    logger.info(f"Loading Vosk model from {model_path}...")
    return Model(model_path)


class VoskRecognitionSession:
    """
    Microphone -> Vosk recognizer, emitting the whole running transcript.

    Vosk finalizes utterance by utterance; committed utterances are kept and
    the current partial is appended, so each event carries everything said
    since ``start`` (the same shape a streaming platform recognizer gives).
    """

    def __init__(
        self,
        model_path: str | Path,
        sample_rate: int = SAMPLING_RATE,
        block_size: int = BLOCK_SIZE,
        device: int | None = None,
    ):
        self.model_path = Path(model_path)
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device
        self.level = 0.0

        self._audio_queue: queue.Queue[bytes] = queue.Queue()
        self._stop_event = threading.Event()
        self._worker: threading.Thread | None = None
        self._stream = None
        self._on_event: Callable[[TranscriptEvent], None] | None = None
        self._committed: list[str] = []
        self._last_sent = ""

    def start(self, locale: str, on_event: Callable[[TranscriptEvent], None]) -> None:
        if not self.model_path.is_dir():
            raise RecognitionUnavailable(f"Vosk model not found at {self.model_path}")
        try:
            import sounddevice as sd
            from vosk import KaldiRecognizer
        except (ImportError, OSError) as e:
            raise RecognitionUnavailable(f"Audio backend unavailable: {e}") from e

        try:
            model = _load_vosk_model(str(self.model_path))
            recognizer = KaldiRecognizer(model, self.sample_rate)
            self._stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                dtype="int16",
                channels=1,
                device=self.device,
                callback=self._on_audio,
            )
        except Exception as e:
            raise RecognitionUnavailable(f"Could not open microphone / model: {e}") from e

        logger.info(f"Vosk session starting (locale={locale}, model={self.model_path.name})")
        self._on_event = on_event
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._run, args=(recognizer,), name="vosk-recognizer", daemon=True
        )
        self._worker.start()
        try:
            self._stream.start()
        except Exception as e:
            self.stop()
            raise RecognitionUnavailable(f"Microphone failed to start: {e}") from e

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug(f"Audio status: {status}")
        chunk = bytes(indata)
        self.level = compute_rms_energy(np.frombuffer(chunk, dtype=np.int16))
        self._audio_queue.put(chunk)

    def _run(self, recognizer) -> None:
        while not self._stop_event.is_set():
            try:
                data = self._audio_queue.get(timeout=QUEUE_POLL_SEC)
            except queue.Empty:
                continue
            try:
                if recognizer.AcceptWaveform(data):
                    text = json.loads(recognizer.Result()).get("text", "").strip()
                    if text:
                        self._committed.append(text)
                    partial = ""
                else:
                    partial = json.loads(recognizer.PartialResult()).get("partial", "").strip()
            except Exception as e:
                logger.error(f"Vosk recognition failed: {e}")
                self._emit(TranscriptEvent(error=e))
                return

            transcript = " ".join(self._committed + ([partial] if partial else []))
            if transcript and transcript != self._last_sent:
                self._last_sent = transcript
                self._emit(TranscriptEvent(text=transcript))

    def _emit(self, event: TranscriptEvent) -> None:
        on_event = self._on_event
        if on_event is not None:
            on_event(event)

    def stop(self) -> None:
        self._stop_event.set()
        self._on_event = None
        stream, self._stream = self._stream, None
        try:
            if stream is not None:
                stream.stop()
                stream.close()
        finally:
            worker, self._worker = self._worker, None
            if worker is not None and worker is not threading.current_thread():
                worker.join(timeout=1.0)
            self._committed.clear()
            self._last_sent = ""
            self.level = 0.0
