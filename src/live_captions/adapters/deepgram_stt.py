import asyncio
import logging
from collections.abc import AsyncIterator

from deepgram import AsyncDeepgramClient
from deepgram.extensions.types.sockets.listen_v1_results_event import ListenV1ResultsEvent
from deepgram.listen.v1.socket_client import EventType

from live_captions.adapters.queued_stream import DEFAULT_MAX_PENDING, PendingFrames
from live_captions.domain.errors import as_backend_error
from live_captions.ports.recognizer import (
    RecognitionAlternative,
    RecognitionResult,
    StreamingConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "nova-2"
CLOSE_TIMEOUT_SECONDS = 2.0

_END = object()


class DeepgramStreamHandle:
    def __init__(self, context_manager, socket, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._context_manager = context_manager
        self._socket = socket
        self._pending = PendingFrames(max_pending)
        self._events: asyncio.Queue = asyncio.Queue()
        self._listener_task: asyncio.Task | None = None
        self._sender_task: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def begin(self) -> None:
        self._socket.on(EventType.MESSAGE, self._on_message)
        self._socket.on(EventType.ERROR, self._on_error)
        self._socket.on(EventType.CLOSE, self._on_close)
        self._listener_task = asyncio.create_task(self._socket.start_listening())
        self._sender_task = asyncio.create_task(self._send_loop())

    def try_write(self, frame: bytes) -> bool:
        return self._pending.offer(frame)

    async def results(self) -> AsyncIterator[RecognitionResult]:
        while True:
            event = await self._events.get()
            if event is _END:
                return
            if isinstance(event, Exception):
                raise as_backend_error(event)
            yield event

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pending.close()

        if self._sender_task:
            try:
                await asyncio.wait_for(self._sender_task, timeout=CLOSE_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Timed out flushing audio to Deepgram")
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            await asyncio.gather(self._listener_task, return_exceptions=True)

        try:
            await self._context_manager.__aexit__(None, None, None)
        except Exception:
            logger.warning("Error closing Deepgram socket", exc_info=True)
        self._events.put_nowait(_END)
        logger.info("Deepgram stream closed")

    async def _send_loop(self) -> None:
        async for frame in self._pending.drain():
            try:
                await self._socket._send(frame)
            except Exception:
                logger.warning("Failed to send audio to Deepgram")

    async def _on_message(self, message) -> None:
        if not isinstance(message, ListenV1ResultsEvent):
            return
        try:
            alternatives = message.channel.alternatives
            if not alternatives or not alternatives[0].transcript:
                return
            result = RecognitionResult(
                alternatives=tuple(
                    RecognitionAlternative(transcript=alt.transcript, confidence=alt.confidence or 0.0)
                    for alt in alternatives
                ),
                is_final=bool(message.is_final or message.speech_final),
            )
        except AttributeError:
            return
        await self._events.put(result)

    async def _on_error(self, error) -> None:
        logger.error("Deepgram error: %s", error)
        await self._events.put(error if isinstance(error, Exception) else RuntimeError(str(error)))

    async def _on_close(self, *_args) -> None:
        await self._events.put(_END)


class DeepgramRecognizer:
    def __init__(self, api_key: str, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._api_key = api_key
        self._max_pending = max_pending

    async def open_stream(self, config: StreamingConfig) -> DeepgramStreamHandle:
        client = AsyncDeepgramClient(api_key=self._api_key)
        context_manager = client.listen.v1.connect(
            model=DEFAULT_MODEL if config.model == "default" else config.model,
            language=config.language_code,
            encoding=config.encoding.lower(),
            sample_rate=str(config.sample_rate_hertz),
            channels=str(config.audio_channel_count),
            interim_results=str(config.interim_results).lower(),
            punctuate=str(config.enable_automatic_punctuation).lower(),
            profanity_filter=str(config.profanity_filter).lower(),
            smart_format="true",
        )
        socket = await context_manager.__aenter__()
        handle = DeepgramStreamHandle(context_manager, socket, self._max_pending)
        handle.begin()
        logger.info("Deepgram stream opened (language=%s)", config.language_code)
        return handle
