import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator

from live_captions.domain.errors import SourceTerminated, ToolMissing
from live_captions.domain.pcm import pcm16_frame_bytes

logger = logging.getLogger(__name__)

DEFAULT_FRAME_SIZE = 2048
TERMINATE_TIMEOUT_SECONDS = 2.0
STDERR_DRAIN_SECONDS = 1.0
STDERR_TAIL_LINES = 5


def build_sox_command(
    binary: str = "sox",
    input_type: str | None = None,
    device: str | None = None,
    sample_rate: int = 16000,
) -> list[str]:
    command = [binary, "-q"]
    if input_type:
        command += ["-t", input_type, device or "default"]
    elif device:
        command += [device]
    else:
        command += ["-d"]
    command += [
        "-r", str(sample_rate),
        "-c", "1",
        "-e", "signed-integer",
        "-b", "16",
        "-L",
        "-t", "raw",
        "-",
    ]
    return command


class SoxProcessSource:
    """Audio source reading raw PCM from a ``sox`` recording subprocess.

    The process's stderr is collected while it runs so that an unexpected
    exit can report what ``sox`` said about it.
    """

    def __init__(
        self,
        device: str | None = None,
        sample_rate: int = 16000,
        frame_size: int = DEFAULT_FRAME_SIZE,
        binary: str = "sox",
        input_type: str | None = None,
    ) -> None:
        self._device = device
        self._sample_rate = sample_rate
        self._frame_size = frame_size
        self._binary = binary
        self._input_type = input_type
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stopping = False

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._frame_size

    def command(self) -> list[str]:
        return build_sox_command(
            binary=self._binary,
            input_type=self._input_type,
            device=self._device,
            sample_rate=self._sample_rate,
        )

    async def start(self) -> None:
        self._stopping = False
        self._stderr_tail.clear()
        command = self.command()
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ToolMissing(f"Cannot launch recording tool '{command[0]}': {exc}") from exc

        if self._stopping:
            logger.info("Recording stopped while starting, terminating pid %d", process.pid)
            await _terminate(process)
            return

        self._process = process
        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._collect_stderr(process.stderr))
        logger.info("Recording process started (pid=%d): %s", process.pid, " ".join(command))

    async def stop(self) -> None:
        self._stopping = True
        process, self._process = self._process, None
        stderr_task, self._stderr_task = self._stderr_task, None
        if process is None:
            return
        await _terminate(process)
        if stderr_task is not None:
            stderr_task.cancel()
            await asyncio.gather(stderr_task, return_exceptions=True)
        logger.info("Recording process stopped (code=%s)", process.returncode)

    async def read_frames(self) -> AsyncIterator[bytes]:
        process = self._process
        if process is None or process.stdout is None:
            return
        frame_bytes = pcm16_frame_bytes(self._frame_size)
        while not self._stopping:
            try:
                frame = await process.stdout.readexactly(frame_bytes)
            except asyncio.IncompleteReadError:
                break
            if self._stopping:
                return
            yield frame

        if self._stopping:
            return
        returncode = await process.wait()
        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(self._stderr_task, timeout=STDERR_DRAIN_SECONDS)
            except asyncio.TimeoutError:
                pass
        message = f"Recording stopped unexpectedly (exit code {returncode})"
        if self._stderr_tail:
            message += f": {self._stderr_tail[-1]}"
        raise SourceTerminated(message)

    async def _collect_stderr(self, stream: asyncio.StreamReader) -> None:
        async for line in stream:
            text = line.decode(errors="replace").strip()
            if text:
                logger.debug("sox: %s", text)
                self._stderr_tail.append(text)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=TERMINATE_TIMEOUT_SECONDS)
    except ProcessLookupError:
        pass
    except asyncio.TimeoutError:
        logger.warning("Recording process did not exit, killing it")
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
