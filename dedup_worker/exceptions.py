"""
Error taxonomy for the duplicate-detection worker.

Each failure class maps to a broker outcome:
- MalformedMessageError: dead-lettered and acked
- InvalidIdentityError: logged and acked
- RetrievalError, PersistenceError, PublishError: nacked with requeue
- ConnectionFatalError: stops the worker process
"""

from uuid import UUID


class DedupWorkerError(Exception):
    """Base class for worker errors."""
    pass


class MalformedMessageError(DedupWorkerError):
    """Raised when a delivery body cannot be decoded into an event."""

    def __init__(self, message: str, body: bytes = b""):
        super().__init__(message)
        self.body = body


class InvalidIdentityError(DedupWorkerError):
    """Raised when an event carries no usable customer id."""

    def __init__(self, message: str, event_id: UUID | None = None):
        super().__init__(message)
        self.event_id = event_id


class RetrievalError(DedupWorkerError):
    """Raised when the search backend fails or answers with an invalid response."""

    def __init__(self, message: str, customer_id: UUID | None = None, status_code: int | None = None):
        super().__init__(message)
        self.customer_id = customer_id
        self.status_code = status_code


class PersistenceError(DedupWorkerError):
    """Raised when staged suspicions cannot be committed."""

    def __init__(self, message: str, staged: int = 0):
        super().__init__(message)
        self.staged = staged


class PublishError(DedupWorkerError):
    """Raised when a downstream event cannot be sent to the broker."""

    def __init__(self, message: str, queue: str | None = None):
        super().__init__(message)
        self.queue = queue


class ConnectionFatalError(DedupWorkerError):
    """Raised when the broker connection budget is exhausted."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts
