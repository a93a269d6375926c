import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from live_captions.domain.errors import SessionActiveError
from live_captions.domain.events import CaptionEvent
from live_captions.domain.session import (
    MAX_STREAM_AGE_SECONDS,
    RECONNECT_DELAY_SECONDS,
    REFRESH_CHECK_SECONDS,
    RecognitionSession,
)
from live_captions.domain.audio_buffer import DEFAULT_CAPACITY
from live_captions.ports.audio import AudioSourcePort
from live_captions.ports.recognizer import RecognizerPort, StreamingConfig

logger = logging.getLogger(__name__)

_UNSET = object()


class CaptionSession:
    """Start/stop facade producing one ordered stream of caption events.

    ``start()`` while a session is already active is a no-op that logs a
    warning. ``stop()`` is idempotent and does nothing if no session was
    ever started. Events from every session run by this facade go to the
    same channel, which is meant for a single consumer.
    """

    def __init__(
        self,
        source_factory: Callable[[str | None], AudioSourcePort],
        recognizer: RecognizerPort,
        language_code: str = "en-US",
        device_id: str | None = None,
        buffer_capacity: int = DEFAULT_CAPACITY,
        max_stream_age_seconds: float = MAX_STREAM_AGE_SECONDS,
        refresh_check_seconds: float = REFRESH_CHECK_SECONDS,
        reconnect_delay_seconds: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._source_factory = source_factory
        self._recognizer = recognizer
        self._language_code = language_code
        self._device_id = device_id
        self._buffer_capacity = buffer_capacity
        self._max_stream_age_seconds = max_stream_age_seconds
        self._refresh_check_seconds = refresh_check_seconds
        self._reconnect_delay_seconds = reconnect_delay_seconds
        self._events: asyncio.Queue[CaptionEvent] = asyncio.Queue()
        self._session: RecognitionSession | None = None
        self._start_lock = asyncio.Lock()

    @property
    def language_code(self) -> str:
        return self._language_code

    @property
    def device_id(self) -> str | None:
        return self._device_id

    @property
    def is_active(self) -> bool:
        return self._session is not None and self._session.is_active

    @property
    def session(self) -> RecognitionSession | None:
        return self._session

    def configure(self, language_code: str | None = None, device_id: str | None | object = _UNSET) -> None:
        if self.is_active:
            raise SessionActiveError("Stop the caption session before changing its configuration")
        if language_code is not None:
            self._language_code = language_code
        if device_id is not _UNSET:
            self._device_id = device_id
        logger.info("Configured language=%s device=%s", self._language_code, self._device_id)

    async def start(self) -> None:
        async with self._start_lock:
            if self.is_active:
                logger.warning("Caption session already active, ignoring start")
                return

            source = self._source_factory(self._device_id)
            self._session = RecognitionSession(
                source=source,
                recognizer=self._recognizer,
                config=StreamingConfig(language_code=self._language_code),
                emit=self._events.put_nowait,
                buffer_capacity=self._buffer_capacity,
                max_stream_age_seconds=self._max_stream_age_seconds,
                refresh_check_seconds=self._refresh_check_seconds,
                reconnect_delay_seconds=self._reconnect_delay_seconds,
            )
            await self._session.start()

    async def stop(self) -> None:
        if self._session is None:
            return
        await self._session.stop()

    async def events(self) -> AsyncIterator[CaptionEvent]:
        while True:
            event = await self._events.get()
            yield event
