"""
headless.ly Client Library

Product analytics, error tracking, feature flags and realtime entity
subscriptions for Python services, delivered over one batched HTTP path.

Usage:
    from hl_client import create_client

    async with create_client({"api_key": "hl_xxx"}) as hl:
        hl.track("signup", {"plan": "pro"})
        if hl.is_feature_enabled("new-checkout"):
            ...
"""

from .client import HeadlessClient, create_client
from .config import ClientConfig
from .errors import (
    DeliveryError,
    HeadlessError,
    RejectionError,
    RetryableError,
    UnknownEntityError,
    ValidationError,
)
from .forwarding import (
    Forwarder,
    HttpForwarder,
    PostHogForwarder,
    SegmentForwarder,
    WebhookForwarder,
)
from .models import Breadcrumb, Event, ExceptionPayload, FeatureFlag, StackFrame
from .realtime import EntityRegistry, Subscription
from .storage import FileStorage, MemoryStorage, Storage

__version__ = "1.0.0"
__all__ = [
    "HeadlessClient",
    "create_client",
    "ClientConfig",
    "HeadlessError",
    "ValidationError",
    "RetryableError",
    "DeliveryError",
    "RejectionError",
    "UnknownEntityError",
    "Forwarder",
    "HttpForwarder",
    "WebhookForwarder",
    "SegmentForwarder",
    "PostHogForwarder",
    "Breadcrumb",
    "Event",
    "ExceptionPayload",
    "FeatureFlag",
    "StackFrame",
    "EntityRegistry",
    "Subscription",
    "Storage",
    "MemoryStorage",
    "FileStorage",
]
