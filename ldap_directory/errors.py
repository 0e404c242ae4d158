"""
Exception hierarchy for directory operations.

Every error raised by the client derives from DirectoryError, so callers can
catch the whole family at once or pick the specific failure they care about.
"""


class DirectoryError(Exception):
    """Base exception for directory client errors."""
    pass


class DirectoryConnectionError(DirectoryError, ConnectionError):
    """Raised when the directory is unreachable or rejects the bind."""
    pass


class DirectoryQueryError(DirectoryError):
    """Raised when a search is malformed or fails at the transport level."""
    pass


class NotFoundError(DirectoryError, LookupError):
    """Raised when a single-entry lookup finds no matching account or attribute."""
    pass


class FormatError(DirectoryError, ValueError):
    """Raised when a distinguished name or attribute value cannot be parsed."""
    pass


class OperationError(DirectoryError):
    """Raised when the directory rejects a write such as a password change."""
    pass
