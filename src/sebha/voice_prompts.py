"""
Voice Prompt Module

Per-sebha recorded voice prompts. When the session auto-advances to the next
sebha, its prompt (if any) is played so the user hears what to say next
without looking at the screen.

Recordings are WAV files named ``<key>_voice.wav`` where the key is the
phrase with spaces replaced by underscores. The key -> path map is kept in
the counter store's persistence.
"""

import logging
import threading
from pathlib import Path

from .errors import AudioDeviceError
from .store import CounterStore

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

RECORDING_SAMPLE_RATE = 16000
RECORDING_CHANNELS = 1
RECORDING_SUBTYPE = "PCM_16"


def prompt_key(phrase: str) -> str:
    return phrase.strip().replace(" ", "_")


class VoiceRecording:
    """
    Scoped microphone capture into a WAV file.

    Use as a context manager; audio is written from the PortAudio callback
    until the block exits, then the file is closed and registered.
    """

    def __init__(self, prompts: "VoicePromptStore", phrase: str, path: Path):
        self._prompts = prompts
        self.phrase = phrase
        self.path = path
        self._stream = None
        self._sndfile = None
        self._lock = threading.Lock()
        self.frames = 0

    def __enter__(self) -> "VoiceRecording":
        try:
            import sounddevice as sd
            import soundfile as sf

            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._sndfile = sf.SoundFile(
                self.path,
                mode="w",
                samplerate=RECORDING_SAMPLE_RATE,
                channels=RECORDING_CHANNELS,
                subtype=RECORDING_SUBTYPE,
            )
        except Exception as e:
            raise AudioDeviceError(f"Could not create {self.path.name}: {e}") from e

        try:
            self._stream = sd.InputStream(
                samplerate=RECORDING_SAMPLE_RATE,
                channels=RECORDING_CHANNELS,
                dtype="float32",
                callback=self._on_audio,
                device=self._prompts.device,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            self._sndfile.close()
            self._sndfile = None
            self.path.unlink(missing_ok=True)
            raise AudioDeviceError(f"Could not open microphone: {e}") from e
        logger.info(f"Started recording voice prompt for: {self.phrase}")
        return self

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug(f"Recording status: {status}")
        with self._lock:
            if self._sndfile is not None:
                self._sndfile.write(indata.copy())
                self.frames += frames

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
        finally:
            self._stream = None
            with self._lock:
                if self._sndfile is not None:
                    self._sndfile.flush()
                    self._sndfile.close()
                    self._sndfile = None

        if exc_type is None and self.frames > 0:
            self._prompts.register(self.phrase, self.path)
            logger.info(f"Stopped recording voice prompt for: {self.phrase} ({self.frames} frames)")
        else:
            self.path.unlink(missing_ok=True)
            logger.info(f"Discarded voice prompt recording for: {self.phrase}")


class VoicePromptStore:
    def __init__(self, directory: str | Path, store: CounterStore, device: int | None = None):
        self.directory = Path(directory)
        self.device = device
        self._store = store
        self._paths: dict[str, Path] = {}
        self.load()

    def load(self) -> None:
        """Read the recording map, dropping entries whose files are gone."""
        self._paths = {
            key: Path(path)
            for key, path in self._store.recording_paths().items()
            if Path(path).is_file()
        }
        logger.info(f"Loaded voice recordings: {sorted(self._paths)}")

    def path_for(self, phrase: str) -> Path:
        return self.directory / f"{prompt_key(phrase)}_voice.wav"

    def has_recording(self, phrase: str) -> bool:
        path = self._paths.get(prompt_key(phrase))
        return path is not None and path.is_file()

    def register(self, phrase: str, path: Path) -> None:
        self._paths[prompt_key(phrase)] = Path(path)
        self._save()

    def record(self, phrase: str) -> VoiceRecording:
        return VoiceRecording(self, phrase, self.path_for(phrase))

    def play(self, phrase: str) -> None:
        """Start playback and return immediately. Failures are logged, not raised."""
        path = self._paths.get(prompt_key(phrase))
        if path is None:
            logger.info(f"No voice recording found for: {phrase}")
            return
        try:
            import sounddevice as sd
            import soundfile as sf

            data, samplerate = sf.read(path, dtype="float32")
            sd.play(data, samplerate)
            logger.info(f"Playing voice prompt for: {phrase}")
        except Exception as e:
            logger.error(f"Could not play voice prompt: {e}")

    def delete(self, phrase: str) -> bool:
        key = prompt_key(phrase)
        path = self._paths.get(key)
        if path is None:
            return False
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Could not delete voice recording: {e}")
            return False
        del self._paths[key]
        self._save()
        logger.info(f"Deleted voice recording for: {phrase}")
        return True

    def _save(self) -> None:
        self._store.set_recording_paths({key: str(path) for key, path in self._paths.items()})
