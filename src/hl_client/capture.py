"""
Exception and message capture.

Builds frozen ``ExceptionPayload`` objects from the error, the current
breadcrumb snapshot and the active scope (tags, extra, user).
"""

from __future__ import annotations

import traceback
from typing import Any, Dict, List, Optional

from .breadcrumbs import BreadcrumbRing
from .models import ExceptionPayload, StackFrame
from .utils import parse_stack


def frames_from_exception(exc: BaseException) -> List[StackFrame]:
    """Frames of the exception's traceback, oldest call first."""
    if exc.__traceback__ is None:
        return []
    return [
        StackFrame(
            function=fs.name,
            file=fs.filename,
            line=fs.lineno,
            column=getattr(fs, "colno", None),
        )
        for fs in traceback.extract_tb(exc.__traceback__)
    ]


class ErrorCapture:
    """Scope holder and payload builder for exception reports."""

    def __init__(self, breadcrumbs: BreadcrumbRing, tags: Optional[Dict[str, str]] = None):
        self._breadcrumbs = breadcrumbs
        self.tags: Dict[str, str] = dict(tags or {})
        self.extra: Dict[str, Any] = {}
        self.user: Optional[Dict[str, Any]] = None

    # ---------- scope ----------

    def set_tag(self, key: str, value: str) -> None:
        self.tags[key] = value

    def set_tags(self, tags: Dict[str, str]) -> None:
        self.tags.update(tags)

    def set_extra(self, key: str, value: Any) -> None:
        self.extra[key] = value

    def set_user(self, user: Optional[Dict[str, Any]]) -> None:
        self.user = dict(user) if user is not None else None

    def clear(self) -> None:
        self.tags = {}
        self.extra = {}
        self.user = None

    # ---------- payloads ----------

    def exception_payload(
        self,
        error: Any,
        *,
        tags: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
        stack: Optional[str] = None,
    ) -> ExceptionPayload:
        """Build a payload for ``error``.

        Non-exception values are coerced to a message string. ``stack`` lets
        callers relay a raw stack string captured elsewhere; it is parsed
        best-effort and takes precedence over the live traceback.
        """
        if isinstance(error, BaseException):
            err_type = type(error).__name__
            message = str(error)
            frames = frames_from_exception(error)
        else:
            err_type = "Error"
            message = str(error)
            frames = []
        if stack:
            frames = [StackFrame(**f) for f in parse_stack(stack)]
        return self._payload(err_type, message, frames, tags, extra)

    def message_payload(
        self,
        message: str,
        *,
        tags: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> ExceptionPayload:
        return self._payload("Message", message, [], tags, extra)

    def _payload(
        self,
        err_type: str,
        message: str,
        frames: List[StackFrame],
        tags: Optional[Dict[str, str]],
        extra: Optional[Dict[str, Any]],
    ) -> ExceptionPayload:
        return ExceptionPayload(
            type=err_type,
            message=message,
            stacktrace=frames,
            breadcrumbs=self._breadcrumbs.snapshot(),
            tags={**self.tags, **(tags or {})},
            extra={**self.extra, **(extra or {})},
            user=dict(self.user) if self.user is not None else None,
        )
