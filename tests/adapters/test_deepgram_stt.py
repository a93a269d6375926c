import asyncio
from types import SimpleNamespace

import pytest
from deepgram.listen.v1.socket_client import EventType

from live_captions.adapters import deepgram_stt
from live_captions.adapters.deepgram_stt import DeepgramRecognizer, DeepgramStreamHandle
from live_captions.domain.errors import BackendFatal, StreamExpiry
from live_captions.ports.recognizer import (
    RecognitionAlternative,
    RecognitionResult,
    StreamingConfig,
)


class FakeResultsEvent(SimpleNamespace):
    pass


def results_event(*transcripts, is_final=False, speech_final=False):
    return FakeResultsEvent(
        channel=SimpleNamespace(
            alternatives=[SimpleNamespace(transcript=t, confidence=0.8) for t in transcripts],
        ),
        is_final=is_final,
        speech_final=speech_final,
    )


class FakeSocket:
    def __init__(self) -> None:
        self.handlers = {}
        self.sent: list[bytes] = []
        self.listening = False

    def on(self, event, handler) -> None:
        self.handlers[event] = handler

    async def start_listening(self) -> None:
        self.listening = True
        await asyncio.Event().wait()

    async def _send(self, frame: bytes) -> None:
        self.sent.append(frame)


class FakeConnection:
    def __init__(self, socket: FakeSocket) -> None:
        self.socket = socket
        self.exits = 0

    async def __aenter__(self) -> FakeSocket:
        return self.socket

    async def __aexit__(self, *args) -> None:
        self.exits += 1


@pytest.fixture(autouse=True)
def fake_results_type(monkeypatch):
    monkeypatch.setattr(deepgram_stt, "ListenV1ResultsEvent", FakeResultsEvent)


@pytest.fixture
def socket():
    return FakeSocket()


@pytest.fixture
def connection(socket):
    return FakeConnection(socket)


async def collect(handle):
    return [result async for result in handle.results()]


class TestDeepgramStreamHandle:
    @pytest.mark.asyncio
    async def test_results_mapped_from_messages(self, connection, socket):
        handle = DeepgramStreamHandle(connection, socket)
        handle.begin()

        await socket.handlers[EventType.MESSAGE](results_event("hel"))
        await socket.handlers[EventType.MESSAGE](results_event("hello", "yellow", is_final=True))
        await socket.handlers[EventType.MESSAGE](results_event("done", speech_final=True))
        await socket.handlers[EventType.CLOSE]()

        results = await asyncio.wait_for(collect(handle), timeout=1.0)
        assert results == [
            RecognitionResult(alternatives=(RecognitionAlternative("hel", 0.8),), is_final=False),
            RecognitionResult(
                alternatives=(RecognitionAlternative("hello", 0.8), RecognitionAlternative("yellow", 0.8)),
                is_final=True,
            ),
            RecognitionResult(alternatives=(RecognitionAlternative("done", 0.8),), is_final=True),
        ]
        await handle.close()

    @pytest.mark.asyncio
    async def test_empty_and_non_result_messages_skipped(self, connection, socket):
        handle = DeepgramStreamHandle(connection, socket)
        handle.begin()

        await socket.handlers[EventType.MESSAGE](results_event(""))
        await socket.handlers[EventType.MESSAGE](SimpleNamespace(type="Metadata"))
        await socket.handlers[EventType.MESSAGE](results_event("kept", is_final=True))
        await socket.handlers[EventType.CLOSE]()

        results = await asyncio.wait_for(collect(handle), timeout=1.0)
        assert [r.alternatives[0].transcript for r in results] == ["kept"]
        await handle.close()

    @pytest.mark.asyncio
    async def test_error_raised_as_backend_fatal(self, connection, socket):
        handle = DeepgramStreamHandle(connection, socket)
        handle.begin()

        await socket.handlers[EventType.ERROR](RuntimeError("401 invalid credentials"))

        with pytest.raises(BackendFatal, match="invalid credentials"):
            await asyncio.wait_for(collect(handle), timeout=1.0)
        await handle.close()

    @pytest.mark.asyncio
    async def test_deadline_error_classified_as_expiry(self, connection, socket):
        handle = DeepgramStreamHandle(connection, socket)
        handle.begin()

        await socket.handlers[EventType.ERROR]("Deadline exceeded waiting for audio")

        with pytest.raises(StreamExpiry):
            await asyncio.wait_for(collect(handle), timeout=1.0)
        await handle.close()

    @pytest.mark.asyncio
    async def test_frames_sent_in_order_and_flushed_on_close(self, connection, socket):
        handle = DeepgramStreamHandle(connection, socket)
        handle.begin()
        frames = [bytes([i]) * 8 for i in range(5)]

        assert all(handle.try_write(frame) for frame in frames)
        await handle.close()

        assert socket.sent == frames
        assert not handle.try_write(b"\x00" * 8)

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_ends_results(self, connection, socket):
        handle = DeepgramStreamHandle(connection, socket)
        handle.begin()
        await asyncio.sleep(0)
        assert socket.listening

        await handle.close()
        await handle.close()

        assert handle.closed
        assert connection.exits == 1
        assert await asyncio.wait_for(collect(handle), timeout=1.0) == []


class FakeListenV1:
    def __init__(self, connection: FakeConnection) -> None:
        self._connection = connection
        self.options = {}

    def connect(self, **options) -> FakeConnection:
        self.options = options
        return self._connection


class TestDeepgramRecognizer:
    @pytest.mark.asyncio
    async def test_open_stream_maps_config(self, monkeypatch, connection):
        listen = FakeListenV1(connection)
        keys = []

        def client(api_key):
            keys.append(api_key)
            return SimpleNamespace(listen=SimpleNamespace(v1=listen))

        monkeypatch.setattr(deepgram_stt, "AsyncDeepgramClient", client)
        recognizer = DeepgramRecognizer(api_key="dg-key")

        handle = await recognizer.open_stream(StreamingConfig(language_code="pt-BR"))

        assert keys == ["dg-key"]
        assert listen.options["model"] == "nova-2"
        assert listen.options["language"] == "pt-BR"
        assert listen.options["encoding"] == "linear16"
        assert listen.options["sample_rate"] == "16000"
        assert listen.options["interim_results"] == "true"
        assert set(connection.socket.handlers) == {EventType.MESSAGE, EventType.ERROR, EventType.CLOSE}
        await handle.close()

    @pytest.mark.asyncio
    async def test_explicit_model_passed_through(self, monkeypatch, connection):
        listen = FakeListenV1(connection)
        monkeypatch.setattr(
            deepgram_stt,
            "AsyncDeepgramClient",
            lambda api_key: SimpleNamespace(listen=SimpleNamespace(v1=listen)),
        )

        handle = await DeepgramRecognizer("k").open_stream(StreamingConfig(language_code="en-US", model="nova-3"))

        assert listen.options["model"] == "nova-3"
        await handle.close()
