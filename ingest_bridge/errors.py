"""
Bridge Errors

Exception taxonomy for the ingestion bridge.

Only BadRequest is ever visible to the peer (as an HTTP 400).
Everything else is operational: recovered locally and logged.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""
    pass


class BadRequest(BridgeError):
    """Raised when the ingestion endpoint receives a non-upgrade request."""
    def __init__(self, path: str, reason: str = "WebSocket upgrade required"):
        self.path = path
        self.reason = reason
        super().__init__(f"Bad request at {path}: {reason}")


class TransportAborted(BridgeError):
    """Raised when the connection dropped without a close handshake."""
    def __init__(self, conn_id: str, code: int | None = None):
        self.conn_id = conn_id
        self.code = code
        super().__init__(f"Transport aborted for {conn_id} (code={code})")


class PersistenceFailure(BridgeError):
    """Raised when the durability write of a single envelope failed."""
    def __init__(self, sender_id: str, sequence: int, cause: BaseException):
        self.sender_id = sender_id
        self.sequence = sequence
        self.cause = cause
        super().__init__(
            f"Failed to persist event #{sequence} from {sender_id}: {cause}"
        )


class DecodeFailure(BridgeError):
    """Raised when the diagnostic decode of a payload failed."""
    def __init__(self, sender_id: str, sequence: int, cause: BaseException):
        self.sender_id = sender_id
        self.sequence = sequence
        self.cause = cause
        super().__init__(
            f"Failed to decode event #{sequence} from {sender_id}: {cause}"
        )


class QueueClosedError(BridgeError):
    """Raised when enqueueing onto a queue that was already completed."""
    def __init__(self, conn_id: str):
        self.conn_id = conn_id
        super().__init__(f"Event queue already completed for {conn_id}")


class InvalidStateTransition(BridgeError):
    """Raised when a session state transition would move backward."""
    def __init__(self, conn_id: str, current: str, target: str):
        self.conn_id = conn_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid session transition for {conn_id}: {current} -> {target}"
        )
