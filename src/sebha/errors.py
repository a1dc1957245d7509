class SebhaError(Exception):
    """Base class for every error raised by the sebha core."""


class InvalidInput(SebhaError, ValueError):
    """A phrase or target was rejected. Nothing was changed."""


class OutOfRange(SebhaError, IndexError):
    """A counter index does not exist. Nothing was changed."""


class CorruptState(SebhaError):
    """Persisted counter fields are inconsistent. Recovered inside ``CounterStore.load``."""


class RecognitionUnavailable(SebhaError):
    """The speech engine could not be started (missing model, no microphone, denied)."""


class PersistenceError(SebhaError):
    """The key-value store could not be written."""


class AudioDeviceError(SebhaError, OSError):
    """A voice prompt could not be recorded (no microphone, unwritable WAV file)."""
