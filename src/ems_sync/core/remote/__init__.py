"""
Remote store endpoint access.

Public API:
    - RemoteStore: async GET/POST client for the web-hook endpoint
    - RetryConfig / with_retry / is_retryable_error: backoff helpers for fetches
"""

from ems_sync.core.remote.client import DEFAULT_FETCH_TIMEOUT, DEFAULT_WRITE_TIMEOUT, RemoteStore
from ems_sync.core.remote.retry import RetryConfig, is_retryable_error, with_retry

__all__ = [
    "DEFAULT_FETCH_TIMEOUT",
    "DEFAULT_WRITE_TIMEOUT",
    "RemoteStore",
    "RetryConfig",
    "is_retryable_error",
    "with_retry",
]
