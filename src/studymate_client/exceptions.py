"""Error types raised by the client."""

from typing import Optional


class StudyMateError(Exception):
    """Base class for client errors."""
    pass


class BackendError(StudyMateError):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendUnavailable(BackendError):
    """Raised when the backend cannot be reached at all."""
    pass


class AuthenticationRequired(StudyMateError):
    """Raised when an authenticated endpoint is called without a token."""
    pass


class AttachmentRejected(StudyMateError):
    """Raised when a file cannot be added to the attachment tray."""

    def __init__(self, name: str, reason: str):
        super().__init__(f'"{name}" {reason}')
        self.name = name
        self.reason = reason
