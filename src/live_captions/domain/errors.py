"""Exceptions raised by caption sessions and their audio/recognition adapters."""

EXPIRY_MARKERS = (
    "deadline",
    "maximum allowed stream duration",
)


class CaptionError(Exception):
    """Base class for caption session errors."""


class DeviceUnavailable(CaptionError):
    """Raised when the capture device cannot be opened."""


class ToolMissing(CaptionError):
    """Raised when the external recording tool cannot be launched."""


class SourceTerminated(CaptionError):
    """Raised when the audio source dies while the session is recording."""


class StreamExpiry(CaptionError):
    """Raised when the backend ends a stream because of its duration limit."""


class BackendFatal(CaptionError):
    """Raised for any backend error that is not a stream expiry."""


class SessionActiveError(CaptionError):
    """Raised when reconfiguring a session that is still running."""


def is_stream_expiry(exc: BaseException) -> bool:
    if isinstance(exc, StreamExpiry):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in EXPIRY_MARKERS)


def as_backend_error(exc: Exception) -> CaptionError:
    if isinstance(exc, CaptionError):
        return exc
    if is_stream_expiry(exc):
        return StreamExpiry(str(exc))
    return BackendFatal(str(exc) or type(exc).__name__)
