"""Exception hierarchy for the sync engine."""


class SyncError(Exception):
    """Base class for all collabsync errors."""


class TransportError(SyncError):
    """Raised when the socket cannot be opened or fails underneath us."""


class TransportClosed(TransportError):
    """Raised by a transport when the peer closed the connection."""

    def __init__(self, code: int, reason: str = "") -> None:
        super().__init__(f"Connection closed ({code}){': ' + reason if reason else ''}")
        self.code = code
        self.reason = reason


class ProtocolError(SyncError):
    """Raised when an inbound frame is not a valid envelope or payload."""


class ReconnectExhaustedError(SyncError):
    """Raised when the reconnect budget is spent and the user must retry manually."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Connection lost after {attempts} reconnection attempts")
        self.attempts = attempts
