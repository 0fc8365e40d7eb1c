"""
Clover CLI - OAuth2 authentication and Python SDK for the Clover REST API.

This package provides both a command-line interface and a Python SDK for
working with Clover merchants: stored per-merchant OAuth credentials,
transparent token refresh, rate-limit backoff and bulk, date-windowed
retrieval of list endpoints.

CLI Usage:
    $ clover auth login --client-id APPID --client-secret SECRET
    $ clover merchants list
    $ clover payments list --from 2024-01-01 --to 2024-12-31 --limit 5000
    $ clover reports sales --period last-month

SDK Usage:
    from clover_cli import create_client

    client = create_client()
    payments = client.fetch_all('payments', from_ms=start_ms, to_ms=end_ms)

    for payment in payments:
        print(f"{payment['id']}: {payment['amount']}")
"""

__version__ = "0.1.0"

from .errors import AuthError, AuthReason, CloverError, ConfigError, TransportError, TransportKind
from .config import CredentialRecord, CredentialStore
from .auth import TokenManager, is_expired, perform_oauth_flow
from .fetcher import BulkFetcher, split_windows
from .client import CloverClient, Transport, create_client

__all__ = [
    # Client
    "CloverClient",
    "Transport",
    "create_client",
    "BulkFetcher",
    "split_windows",
    # Credentials
    "CredentialRecord",
    "CredentialStore",
    "TokenManager",
    "is_expired",
    "perform_oauth_flow",
    # Errors
    "CloverError",
    "AuthError",
    "AuthReason",
    "TransportError",
    "TransportKind",
    "ConfigError",
]
