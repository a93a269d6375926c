from dataclasses import dataclass
from typing import Protocol, AsyncIterator


@dataclass(frozen=True)
class StreamingConfig:
    language_code: str
    sample_rate_hertz: int = 16000
    encoding: str = "LINEAR16"
    audio_channel_count: int = 1
    enable_automatic_punctuation: bool = True
    interim_results: bool = True
    model: str = "default"
    profanity_filter: bool = False


@dataclass(frozen=True)
class RecognitionAlternative:
    transcript: str
    confidence: float = 0.0


@dataclass(frozen=True)
class RecognitionResult:
    alternatives: tuple[RecognitionAlternative, ...]
    is_final: bool = False


class StreamHandle(Protocol):
    @property
    def closed(self) -> bool: ...
    def try_write(self, frame: bytes) -> bool: ...
    def results(self) -> AsyncIterator[RecognitionResult]: ...
    async def close(self) -> None: ...


class RecognizerPort(Protocol):
    async def open_stream(self, config: StreamingConfig) -> StreamHandle: ...
