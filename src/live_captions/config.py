from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class CaptionConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LIVE_CAPTIONS_")

    language_code: str = "en-US"
    device_id: str | None = None

    audio_source: Literal["sounddevice", "sox"] = "sounddevice"
    block_size: int = 2048

    sox_binary: str = "sox"
    sox_input_type: str | None = None

    stt_engine: Literal["google", "deepgram"] = "google"
    google_project_id: str = ""
    deepgram_api_key_file: str = ""

    buffer_capacity: int = 30
    max_stream_seconds: float = 230.0
    refresh_check_seconds: float = 10.0
    reconnect_delay_seconds: float = 0.1

    log_file: str = ""

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""
