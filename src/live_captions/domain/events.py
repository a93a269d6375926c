from dataclasses import asdict, dataclass
from typing import ClassVar


@dataclass(frozen=True)
class CaptionEvent:
    kind: ClassVar[str] = ""

    def to_message(self) -> dict:
        return {"type": self.kind, **asdict(self)}


@dataclass(frozen=True)
class SessionStarted(CaptionEvent):
    kind: ClassVar[str] = "start"


@dataclass(frozen=True)
class InterimTranscript(CaptionEvent):
    kind: ClassVar[str] = "interim"
    text: str = ""


@dataclass(frozen=True)
class FinalTranscript(CaptionEvent):
    kind: ClassVar[str] = "final"
    text: str = ""


@dataclass(frozen=True)
class SessionError(CaptionEvent):
    kind: ClassVar[str] = "error"
    message: str = ""


@dataclass(frozen=True)
class SessionStopped(CaptionEvent):
    kind: ClassVar[str] = "stop"
