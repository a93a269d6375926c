import asyncio
import logging
import time
from collections.abc import Callable

from live_captions.domain.audio_buffer import AudioBuffer, DEFAULT_CAPACITY
from live_captions.domain.errors import (
    CaptionError,
    DeviceUnavailable,
    SourceTerminated,
    as_backend_error,
    is_stream_expiry,
)
from live_captions.domain.events import (
    CaptionEvent,
    FinalTranscript,
    InterimTranscript,
    SessionError,
    SessionStarted,
    SessionStopped,
)
from live_captions.domain.state import SessionState, validate_transition
from live_captions.ports.audio import AudioSourcePort
from live_captions.ports.recognizer import (
    RecognitionResult,
    RecognizerPort,
    StreamHandle,
    StreamingConfig,
)

logger = logging.getLogger(__name__)

# The backend closes streams at 240s; refresh with a 10s margin.
MAX_STREAM_AGE_SECONDS = 230.0
REFRESH_CHECK_SECONDS = 10.0
RECONNECT_DELAY_SECONDS = 0.1
MAX_REOPEN_ATTEMPTS = 3


class RecognitionSession:
    """One continuous recognition session over a sequence of backend streams.

    Audio frames from the source are written to the current stream handle.
    While no handle is writable they wait in a bounded buffer, which is
    drained in order into the next handle. Streams are replaced before the
    backend's duration cap, and when the backend ends or expires a stream.
    """

    def __init__(
        self,
        source: AudioSourcePort,
        recognizer: RecognizerPort,
        config: StreamingConfig,
        emit: Callable[[CaptionEvent], None],
        buffer_capacity: int = DEFAULT_CAPACITY,
        max_stream_age_seconds: float = MAX_STREAM_AGE_SECONDS,
        refresh_check_seconds: float = REFRESH_CHECK_SECONDS,
        reconnect_delay_seconds: float = RECONNECT_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._recognizer = recognizer
        self._config = config
        self._emit = emit
        self._buffer = AudioBuffer(buffer_capacity)
        self._max_stream_age = max_stream_age_seconds
        self._refresh_check = refresh_check_seconds
        self._reconnect_delay = reconnect_delay_seconds
        self._clock = clock

        self._state = SessionState.IDLE
        self._stopping = False
        self._handle: StreamHandle | None = None
        self._stream_started_at: float = 0.0
        self._reconnect_count = 0

        self._audio_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._result_tasks: set[asyncio.Task] = set()
        self._closing_tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> StreamingConfig:
        return self._config

    @property
    def is_active(self) -> bool:
        return self._state in (
            SessionState.STARTING,
            SessionState.CONNECTED,
            SessionState.RECONNECTING,
        )

    @property
    def stream_age(self) -> float:
        if self._handle is None:
            return 0.0
        return self._clock() - self._stream_started_at

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    @property
    def buffered_frames(self) -> int:
        return len(self._buffer)

    @property
    def evicted_frames(self) -> int:
        return self._buffer.evicted

    def _transition_to(self, target: SessionState) -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target

    async def start(self) -> None:
        """Start capture and open the first stream.

        Returns once the first stream is established. On failure the session
        emits ``error`` then ``stop`` and the error is re-raised.
        """
        self._transition_to(SessionState.STARTING)
        try:
            await self._start_source()
            if self._stopping:
                # stop() ran while the source was starting and found nothing to release
                await self._stop_source()
                return
            handle = await self._open_stream()
        except CaptionError as exc:
            await self._fail(exc)
            raise

        if self._stopping:
            await self._close_handle(handle)
            return

        self._attach(handle)
        self._transition_to(SessionState.CONNECTED)
        self._emit(SessionStarted())
        logger.info(
            "Recognition started (language=%s, rate=%d)",
            self._config.language_code,
            self._config.sample_rate_hertz,
        )

        self._audio_task = asyncio.create_task(self._pump_audio())

    async def stop(self) -> None:
        """Tear the session down from any state.

        Safe to call repeatedly and from within the session's own tasks;
        only the first call emits ``stop``.
        """
        if self._stopping:
            return
        self._stopping = True
        if self._state is not SessionState.STOPPED:
            self._transition_to(SessionState.STOPPED)

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._refresh_task, self._reconnect_task, self._audio_task, *self._result_tasks)
            if task is not None and task is not current
        ]
        for task in tasks:
            task.cancel()

        handle, self._handle = self._handle, None
        if handle is not None:
            await self._close_handle(handle)

        await self._stop_source()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._closing_tasks:
            await asyncio.gather(*self._closing_tasks, return_exceptions=True)

        self._buffer.clear()
        self._emit(SessionStopped())
        logger.info("Recognition stopped (reconnects=%d)", self._reconnect_count)

    async def _fail(self, exc: CaptionError) -> None:
        if self._stopping:
            return
        logger.error("Recognition failed: %s", exc)
        self._emit(SessionError(message=str(exc)))
        await self.stop()

    async def _start_source(self) -> None:
        try:
            await self._source.start()
        except CaptionError:
            raise
        except Exception as exc:
            raise DeviceUnavailable(f"Audio source failed to start: {exc}") from exc

    async def _stop_source(self) -> None:
        try:
            await self._source.stop()
        except Exception:
            logger.exception("Error stopping audio source")

    async def _open_stream(self) -> StreamHandle:
        try:
            return await self._recognizer.open_stream(self._config)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise as_backend_error(exc) from exc

    async def _close_handle(self, handle: StreamHandle) -> None:
        try:
            await handle.close()
        except Exception:
            logger.warning("Error closing recognition stream", exc_info=True)

    def _retire(self, handle: StreamHandle) -> None:
        task = asyncio.create_task(self._close_handle(handle))
        self._closing_tasks.add(task)
        task.add_done_callback(self._closing_tasks.discard)

    def _attach(self, handle: StreamHandle) -> None:
        self._handle = handle
        self._stream_started_at = self._clock()
        task = asyncio.create_task(self._consume_results(handle))
        self._result_tasks.add(task)
        task.add_done_callback(self._result_tasks.discard)

        if self._refresh_task is not None and self._refresh_task is not asyncio.current_task():
            self._refresh_task.cancel()
        self._refresh_task = asyncio.create_task(self._refresh_loop(handle))

    def _route_frame(self, frame: bytes) -> None:
        self._buffer.append(frame)
        self._flush_buffer()

    def _flush_buffer(self) -> None:
        handle = self._handle
        if handle is None or self._state is not SessionState.CONNECTED:
            return
        while self._buffer:
            if not handle.try_write(self._buffer.peek()):
                break
            self._buffer.popleft()

    async def _pump_audio(self) -> None:
        try:
            async for frame in self._source.read_frames():
                if self._stopping:
                    break
                self._route_frame(frame)
        except asyncio.CancelledError:
            raise
        except CaptionError as exc:
            await self._fail(exc)
            return
        except Exception as exc:
            await self._fail(SourceTerminated(str(exc) or type(exc).__name__))
            return

        if not self._stopping:
            await self._fail(SourceTerminated("Audio source ended unexpectedly"))

    async def _refresh_loop(self, handle: StreamHandle) -> None:
        """Replace ``handle`` once it reaches the maximum stream age.

        Armed per stream, and never sleeps past the stream's deadline.
        """
        while handle is self._handle and not self._stopping:
            remaining = self._max_stream_age - self.stream_age
            await asyncio.sleep(min(self._refresh_check, max(remaining, 0.0)))
            if handle is self._handle and self.stream_age >= self._max_stream_age:
                logger.info("Reconnect: refreshing stream after %.1fs", self.stream_age)
                self._schedule_reconnect()
                return

    async def _consume_results(self, handle: StreamHandle) -> None:
        try:
            async for result in handle.results():
                self._handle_result(result)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if handle is not self._handle:
                logger.debug("Ignoring error from retired stream: %s", exc)
                return
            if is_stream_expiry(exc):
                logger.info("Reconnect: stream expired (%s)", exc)
                self._schedule_reconnect()
                return
            await self._fail(as_backend_error(exc))
            return

        if handle is self._handle and not self._stopping:
            logger.info("Reconnect: stream ended by backend")
            self._schedule_reconnect()

    def _handle_result(self, result: RecognitionResult) -> None:
        if self._stopping or not result.alternatives:
            return
        text = result.alternatives[0].transcript
        if result.is_final:
            logger.info("Final: %s", text)
            self._emit(FinalTranscript(text=text))
        else:
            logger.debug("Interim: %s", text)
            self._emit(InterimTranscript(text=text))

    def _schedule_reconnect(self) -> None:
        if self._stopping or self._state is not SessionState.CONNECTED:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        old_handle, self._handle = self._handle, None
        self._transition_to(SessionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect(old_handle))

    async def _reconnect(self, old_handle: StreamHandle | None) -> None:
        if old_handle is not None:
            self._retire(old_handle)

        handle = None
        attempts = 0
        while handle is None:
            await asyncio.sleep(self._reconnect_delay)
            if self._stopping:
                return
            attempts += 1
            try:
                handle = await self._open_stream()
            except CaptionError as exc:
                if is_stream_expiry(exc) and attempts < MAX_REOPEN_ATTEMPTS:
                    logger.warning("Reconnect attempt %d expired, retrying: %s", attempts, exc)
                    continue
                await self._fail(exc)
                return

        if self._stopping:
            await self._close_handle(handle)
            return

        self._attach(handle)
        self._transition_to(SessionState.CONNECTED)
        self._reconnect_count += 1
        pending = len(self._buffer)
        self._flush_buffer()
        logger.info("Reconnect: stream replaced, replayed %d buffered frames", pending - len(self._buffer))
