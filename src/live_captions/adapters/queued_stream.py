import asyncio
import collections
from collections.abc import AsyncIterator

DEFAULT_MAX_PENDING = 16


class PendingFrames:
    """Bounded hand-off between ``try_write`` and a stream's sender.

    Writers never wait: ``offer`` returns False when the queue is full or
    closed so the caller can keep the frame. ``drain`` yields frames in order
    until the queue is closed and empty.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._frames: collections.deque[bytes] = collections.deque()
        self._max_pending = max_pending
        self._available = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._frames)

    def offer(self, frame: bytes) -> bool:
        if self._closed or len(self._frames) >= self._max_pending:
            return False
        self._frames.append(frame)
        self._available.set()
        return True

    def close(self) -> None:
        self._closed = True
        self._available.set()

    async def drain(self) -> AsyncIterator[bytes]:
        while True:
            while self._frames:
                yield self._frames.popleft()
            if self._closed:
                return
            self._available.clear()
            await self._available.wait()
