"""
Exception hierarchy for Clover CLI.
Auth failures, transport failures and unreadable configuration.
"""
from enum import Enum
from typing import Any, Optional


LOGIN_HINT = "Run 'clover auth login' to authenticate."


class CloverError(Exception):
    """Base exception for Clover CLI errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Any = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)

    def __str__(self):
        if self.status_code:
            return f"Clover API Error ({self.status_code}): {self.message}"
        return self.message


class AuthReason(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    NO_REFRESH_TOKEN = "no_refresh_token"
    UNAUTHORIZED = "unauthorized"


class AuthError(CloverError):
    """No usable credential, or the credential was rejected."""

    def __init__(self, reason: AuthReason, message: str, status_code: Optional[int] = None):
        self.reason = reason
        super().__init__(message, status_code=status_code)

    def __str__(self):
        return f"{self.message}. {LOGIN_HINT}"


class TransportKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    HTTP = "http"
    NETWORK = "network"


class TransportError(CloverError):
    """Non-2xx response, exhausted rate-limit retries or a network failure."""

    def __init__(
        self,
        kind: TransportKind,
        message: str,
        status_code: Optional[int] = None,
        response: Any = None,
    ):
        self.kind = kind
        super().__init__(message, status_code=status_code, response=response)


class ConfigError(CloverError):
    """Persisted configuration is unreadable or corrupt."""
