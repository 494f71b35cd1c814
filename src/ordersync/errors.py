"""
Exception hierarchy for order synchronization.

Every error raised by the sync core derives from SyncError so the event
bus and the callback surface can handle them uniformly. Two attributes
travel with each error:

    subject          - the external order reference the failure relates to
                       (None when the failure is not tied to one order)
    skip_auto_retry  - True when a queued task must not be retried
"""


class SyncError(Exception):
    """Base exception for order synchronization errors."""

    skip_auto_retry = False

    def __init__(self, message: str = "", subject=None):
        super().__init__(message)
        self.subject = subject

    @property
    def message(self) -> str:
        return self.args[0] if self.args else ""

    def __str__(self):
        message = super().__str__()
        if self.subject:
            return f"{message} (subject: {self.subject})"
        return message


class TransportError(SyncError):
    """Raised when the remote system cannot be reached or returns an HTTP error."""
    pass


class AuthError(TransportError):
    """Raised when the remote system rejects the configured credentials."""
    pass


class RuleError(SyncError):
    """Raised when a classification rule is malformed or nothing can be classified."""
    pass


class TransformError(SyncError):
    """Raised when an order transform fails or returns an unusable order."""
    pass


class LockError(SyncError):
    """Raised when the import lock cannot be acquired in time."""
    pass


class PollError(SyncError):
    """Raised when an incremental sync pass fails."""
    pass


class SubmitError(SyncError):
    """Raised when an order could not be submitted to the local system."""

    skip_auto_retry = True


class ValidationError(SyncError):
    """Raised for invalid configuration values, dates or query filters."""
    pass
