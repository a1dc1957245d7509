from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SEBHA_", env_file=".env", env_file_encoding="utf-8")

    # ── Storage ─────────────────────────────────────────────────────────
    data_dir: Path = Path.home() / ".sebha"

    # ── Session ─────────────────────────────────────────────────────────
    locale: str = "ar-SA"
    advance_delay_sec: float = 1.0          # target reached -> next sebha
    voice_prompt_delay_sec: float = 0.5     # next sebha -> play its voice prompt

    # ── Speech (Vosk, offline) ──────────────────────────────────────────
    vosk_model_path: Path = Path("vosk-model-ar-mgb2-0.4")
    sample_rate: int = 16000
    block_size: int = 8000
    input_device: int | None = None         # sounddevice index, None = system default

    log_level: str = "INFO"

    @property
    def state_file(self) -> Path:
        return self.data_dir / "sebhas.json"

    @property
    def recordings_dir(self) -> Path:
        return self.data_dir / "recordings"


@lru_cache
def get_settings() -> Settings:
    return Settings()
