"""
Custom exceptions for the headless.ly client.

Provides structured error handling with retry classification and observability.
"""

from __future__ import annotations

import httpx


class HeadlessError(Exception):
    """Base error for the headless.ly client."""

    pass


class ValidationError(HeadlessError):
    """Invalid client configuration (e.g. missing api_key)."""

    pass


class RetryableError(HeadlessError):
    """Temporary errors that should be retried with backoff."""

    pass


class DeliveryError(RetryableError):
    """Network failure, timeout or HTTP 5xx while delivering a batch."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RejectionError(HeadlessError):
    """HTTP 4xx from the ingest endpoint. Never retried."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class UnknownEntityError(HeadlessError):
    """Entity type is not registered with the client."""

    def __init__(self, entity_type: str):
        super().__init__(f"Unknown entity type: {entity_type}")
        self.entity_type = entity_type


def classify_status(status_code: int) -> str:
    """Return "ok", "retry" or "reject" for an HTTP status code."""
    if 200 <= status_code < 300:
        return "ok"
    if 400 <= status_code < 500:
        return "reject"
    return "retry"


def map_http_error(e: Exception | httpx.Response) -> HeadlessError:
    if isinstance(e, httpx.Response):
        outcome = classify_status(e.status_code)
        if outcome == "reject":
            return RejectionError(f"HTTP {e.status_code}", e.status_code)
        return DeliveryError(f"HTTP {e.status_code}", e.status_code)
    if isinstance(e, HeadlessError):
        return e
    if isinstance(e, httpx.TimeoutException):
        return DeliveryError(f"timeout: {e}")
    if isinstance(e, (httpx.TransportError, OSError)):
        return DeliveryError(f"network error: {e}")
    return DeliveryError(f"{type(e).__name__}: {e}")
