"""
Exception hierarchy for the key-value-pair store library.

All exceptions inherit from KVPSError, which provides optional context
for structured error handling and logging.

Failures reported by the underlying backends (OSError, botocore errors,
sqlite3 errors, ...) are not wrapped: they propagate as raised by the
backend client.
"""

from __future__ import annotations

from typing import Any


class KVPSError(Exception):
    """Base exception for all store errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(KVPSError):
    """Raised when the library is set up inconsistently.

    Examples:
        - A store factory that declares no schemes
        - A store that declares a capability it does not implement
    """

    pass


class InvalidConnectionStringError(KVPSError):
    """Raised when a connection string has no usable scheme structure.

    Context should include:
        - expected: The required shape (the text itself may carry credentials)
    """

    pass


class ProviderNotFoundError(InvalidConnectionStringError):
    """Raised when no factory is registered for a connection string's scheme.

    Context should include:
        - scheme: The scheme that was looked up
    """

    pass


class InvalidOptionError(KVPSError):
    """Raised when a connection option is missing or cannot be coerced.

    Examples:
        - A required option such as ``username`` is absent or blank
        - ``port=abc`` for a numeric option
        - ``pathmapped=maybe`` for a boolean option

    Context should include:
        - option: The option name
        - expected: The declared type of the option
    """

    pass


class InvalidKeyError(KVPSError):
    """Raised when a key cannot be mapped to or from its backend-native form.

    Examples:
        - A filesystem key that escapes the root directory
        - A remote key that lacks the expected prefix
    """

    pass


class InvalidCursorError(KVPSError):
    """Raised when a resume cursor is malformed or belongs to another backend.

    Context should include:
        - cursor: The rejected cursor value
        - expected: The version tag the backend expected
    """

    pass
