import asyncio
import logging
from collections.abc import AsyncIterator

import numpy as np
import sounddevice as sd
import janus

from live_captions.domain.errors import DeviceUnavailable
from live_captions.domain.pcm import float_to_pcm16

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 2048
SUPPORTED_BLOCK_SIZES = (2048, 4096)


class SounddeviceSource:
    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = 16000,
        block_size: int = DEFAULT_BLOCK_SIZE,
        queue_size: int = 64,
    ) -> None:
        if block_size not in SUPPORTED_BLOCK_SIZES:
            raise ValueError(f"block_size must be one of {SUPPORTED_BLOCK_SIZES}")
        self._device = device
        self._sample_rate = sample_rate
        self._block_size = block_size
        self._queue_size = queue_size
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[bytes] | None = None
        self._stopping = False
        self._dropped_frames = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._block_size

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    async def start(self) -> None:
        self._stopping = False
        self._queue = janus.Queue(maxsize=self._queue_size)
        queue = self._queue

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if self._stopping:
                return
            if status:
                logger.warning("Audio capture status: %s", status)
            try:
                queue.sync_q.put_nowait(float_to_pcm16(indata))
            except janus.SyncQueueFull:
                self._dropped_frames += 1
                logger.warning("Capture queue full, dropped frame (%d total)", self._dropped_frames)
            except janus.SyncQueueShutDown:
                pass

        try:
            device = self._resolve_device()
            self._stream = sd.InputStream(
                device=device,
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._block_size,
                callback=audio_callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._stream = None
            self._queue.close()
            self._queue = None
            raise DeviceUnavailable(f"Cannot open capture device {self._device!r}: {exc}") from exc

        logger.info(
            "Audio capture started (device=%s, rate=%d, block=%d)",
            device, self._sample_rate, self._block_size,
        )

    async def stop(self) -> None:
        self._stopping = True
        if self._stream:
            self._stream.stop()
            self._stream.close()
            self._stream = None
            logger.info("Audio capture stopped")
        if self._queue:
            self._queue.close()
            await self._queue.wait_closed()
            self._queue = None

    async def read_frames(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if not queue:
            return
        while not self._stopping:
            try:
                frame = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except janus.AsyncQueueShutDown:
                break
            if self._stopping:
                break
            yield frame

    def _resolve_device(self) -> str | int | None:
        if self._device is None or self._device == "":
            return None
        if isinstance(self._device, int):
            return self._device
        try:
            return int(self._device)
        except ValueError:
            pass
        for index, dev in list_input_devices():
            if self._device.lower() in dev.lower():
                logger.info("Resolved device '%s' -> %d (%s)", self._device, index, dev)
                return index
        raise ValueError(f"no input device matching '{self._device}'")


def list_input_devices() -> list[tuple[int, str]]:
    return [
        (i, dev["name"])
        for i, dev in enumerate(sd.query_devices())
        if dev["max_input_channels"] > 0
    ]
