"""
Broker error taxonomy.

``NoWorkerAvailable`` is an expected outcome, not a fault: callers turn it
into a callback offer. ``InvalidSessionState`` is logged and the triggering
event dropped.
"""


class BrokerError(Exception):
    """Base class for every error raised by the broker core."""


class ConflictError(BrokerError):
    """An atomic state transition found a different prior state than expected."""

    def __init__(self, message: str, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class NoWorkerAvailable(BrokerError):
    def __init__(self, message: str = "All our agents are currently busy. Please leave your contact info for a callback."):
        super().__init__(message)
        self.message = message


class InvalidSessionState(BrokerError):
    def __init__(self, session_id: str, status, operation: str):
        super().__init__(f"Cannot {operation} session {session_id} in state {status}")
        self.session_id = session_id
        self.status = status
        self.operation = operation


class PersistenceError(BrokerError):
    """The durable store could not confirm a write."""


class AuthError(BrokerError):
    """Credentials were rejected by the auth collaborator."""
