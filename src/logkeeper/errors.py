"""
Errors raised by the log store.
"""


class StorageError(RuntimeError):
    """I/O or constraint failure reported by the underlying SQLite engine."""


class ConfigurationError(ValueError):
    """A stored setting could not be parsed (e.g. a non-numeric logsTTL)."""


class DuplicateUserError(ValueError):
    """A user with the given email already exists."""


class AuthenticationError(ValueError):
    """Email and password do not match a stored user."""
