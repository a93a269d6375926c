import collections
import logging

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 30


class AudioBuffer:
    """Bounded FIFO of PCM frames waiting for a writable stream.

    When full, appending evicts the oldest frame so that recent audio wins
    over stale audio during an outage.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._frames: collections.deque[bytes] = collections.deque()
        self._capacity = capacity
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted(self) -> int:
        return self._evicted

    def __len__(self) -> int:
        return len(self._frames)

    def __bool__(self) -> bool:
        return bool(self._frames)

    def append(self, frame: bytes) -> None:
        if len(self._frames) >= self._capacity:
            self._frames.popleft()
            self._evicted += 1
            if self._evicted % 10 == 1:
                logger.debug("Audio buffer full, evicted %d frames so far", self._evicted)
        self._frames.append(frame)

    def peek(self) -> bytes:
        return self._frames[0]

    def popleft(self) -> bytes:
        return self._frames.popleft()

    def clear(self) -> None:
        self._frames.clear()
