from enum import Enum, auto


class SessionState(Enum):
    IDLE = auto()
    STARTING = auto()
    CONNECTED = auto()
    RECONNECTING = auto()
    STOPPED = auto()


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.STARTING, SessionState.STOPPED},
    SessionState.STARTING: {SessionState.CONNECTED, SessionState.STOPPED},
    SessionState.CONNECTED: {SessionState.RECONNECTING, SessionState.STOPPED},
    SessionState.RECONNECTING: {SessionState.CONNECTED, SessionState.STOPPED},
    SessionState.STOPPED: set(),
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
