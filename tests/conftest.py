import asyncio
from collections.abc import AsyncIterator, Callable

import numpy as np
import pytest

from live_captions.ports.recognizer import (
    RecognitionAlternative,
    RecognitionResult,
    StreamingConfig,
)


SAMPLE_RATE = 16000
FRAME_SIZE = 2048

_END = object()


def generate_silence(frame_size: int = FRAME_SIZE) -> bytes:
    return np.zeros(frame_size, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    frame_size: int = FRAME_SIZE,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    t = np.arange(frame_size) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype(np.int16).tobytes()


def numbered_frames(count: int, start: int = 0) -> list[bytes]:
    return [i.to_bytes(4, "little") * 4 for i in range(start, start + count)]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=timeout)


class FakeAudioSource:
    def __init__(
        self,
        start_error: Exception | None = None,
        start_gate: asyncio.Event | None = None,
    ) -> None:
        self._start_error = start_error
        self._start_gate = start_gate
        self._queue: asyncio.Queue = asyncio.Queue()
        self.started = False
        self.stopped = False
        self.running = False
        self.stop_calls = 0

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    @property
    def frame_size(self) -> int:
        return FRAME_SIZE

    async def start(self) -> None:
        if self._start_gate is not None:
            await self._start_gate.wait()
        if self._start_error is not None:
            raise self._start_error
        self.started = True
        self.running = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self.stopped = True
        self.running = False
        self._queue.put_nowait(_END)

    async def read_frames(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is _END or self.stopped:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, frames: list[bytes]) -> None:
        for frame in frames:
            self._queue.put_nowait(frame)

    def end(self) -> None:
        self._queue.put_nowait(_END)

    def fail(self, exc: Exception) -> None:
        self._queue.put_nowait(exc)


class FakeStreamHandle:
    def __init__(self, config: StreamingConfig, end_on_close: bool = True) -> None:
        self.config = config
        self.written: list[bytes] = []
        self.accepting = True
        self.close_calls = 0
        self.close_delay = 0.0
        self._end_on_close = end_on_close
        self._closed = False
        self._results: asyncio.Queue = asyncio.Queue()

    @property
    def closed(self) -> bool:
        return self._closed

    def try_write(self, frame: bytes) -> bool:
        if self._closed or not self.accepting:
            return False
        self.written.append(frame)
        return True

    async def results(self) -> AsyncIterator[RecognitionResult]:
        while True:
            item = await self._results.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True
        if self._end_on_close:
            self._results.put_nowait(_END)
        if self.close_delay:
            await asyncio.sleep(self.close_delay)

    def push_result(self, *transcripts: str, is_final: bool = False) -> None:
        self._results.put_nowait(
            RecognitionResult(
                alternatives=tuple(
                    RecognitionAlternative(transcript=t, confidence=0.9) for t in transcripts
                ),
                is_final=is_final,
            )
        )

    def fail(self, exc: Exception) -> None:
        self._results.put_nowait(exc)

    def end(self) -> None:
        self._results.put_nowait(_END)


class FakeRecognizer:
    def __init__(self, end_on_close: bool = True) -> None:
        self.handles: list[FakeStreamHandle] = []
        self.configs: list[StreamingConfig] = []
        self.open_errors: list[Exception] = []
        self._end_on_close = end_on_close

    @property
    def current(self) -> FakeStreamHandle:
        return self.handles[-1]

    async def open_stream(self, config: StreamingConfig) -> FakeStreamHandle:
        self.configs.append(config)
        if self.open_errors:
            raise self.open_errors.pop(0)
        handle = FakeStreamHandle(config, end_on_close=self._end_on_close)
        self.handles.append(handle)
        return handle


@pytest.fixture
def silence_frames():
    return [generate_silence() for _ in range(10)]


@pytest.fixture
def fake_source():
    return FakeAudioSource()


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer()
