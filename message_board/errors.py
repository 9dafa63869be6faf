"""
Error taxonomy for the message board.

All errors are user-reportable and non-retryable. The store raises them
and the HTTP layer maps them to status codes (see main.py).
"""


class MessageBoardError(Exception):
    """Base exception for message board errors."""

    pass


class ValidationError(MessageBoardError):
    """Raised when input is malformed (empty content, bad page size)."""

    pass


class NotFoundError(MessageBoardError):
    """Raised when a referenced message does not exist."""

    pass


class AuthorizationError(MessageBoardError):
    """Raised when the caller is not the author of the target message."""

    pass
