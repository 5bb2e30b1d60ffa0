"""
Poll-level errors.

Only these reach the caller of a poll; every other anomaly (unparseable SQL,
missing counters, unreadable CPU metrics) degrades to a default value.
"""

# Driver error codes meaning the session handle is gone for good:
# DPY-1001 not connected to database, DPY-4011 connection closed by the
# database or network
CONNECTION_INVALID_SIGNATURES = ("DPY-1001", "DPY-4011")


def is_connection_invalid(error: BaseException) -> bool:
    message = str(error)
    return any(signature in message for signature in CONNECTION_INVALID_SIGNATURES)


class SamplerError(Exception):
    """Base class for errors surfaced by a poll."""


class ConnectionNotFoundError(SamplerError):
    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__("Connection not found.")


class ConnectionLostError(SamplerError):
    """The database session is dead; the connection has been removed."""

    def __init__(self, connection_id: str, message: str):
        self.connection_id = connection_id
        super().__init__(f"Connection lost: {message}")


class PollFailedError(SamplerError):
    """Primary and fallback queries both failed; the connection is still usable."""


class PollInProgressError(SamplerError):
    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"A poll is already running for connection '{connection_id}'")
