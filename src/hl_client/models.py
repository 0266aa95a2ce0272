"""
Pydantic data models for the headless.ly client.

All models serialize to the camelCase wire format via ``to_wire()``.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils import utc_now

EventType = Literal["track", "page", "identify", "alias", "group", "exception", "message"]
Severity = Literal["fatal", "error", "warning", "info", "debug"]
FlagValue = Union[bool, str, int, float, Dict[str, Any]]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Breadcrumb(WireModel):
    """Diagnostic trail entry attached to exception reports."""

    category: Optional[str] = None
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    level: Optional[Severity] = None
    data: Optional[Dict[str, Any]] = None


class StackFrame(WireModel):
    function: Optional[str] = None
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None


class ExceptionPayload(WireModel):
    """Exception report. Frozen once built; breadcrumbs are a snapshot."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: str
    message: str
    stacktrace: List[StackFrame] = Field(default_factory=list)
    breadcrumbs: List[Breadcrumb] = Field(default_factory=list)
    tags: Dict[str, str] = Field(default_factory=dict)
    extra: Dict[str, Any] = Field(default_factory=dict)
    user: Optional[Dict[str, Any]] = None


class Event(WireModel):
    """Outbound event with identity and environment context."""

    type: EventType
    event: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None
    traits: Optional[Dict[str, Any]] = None
    group_id: Optional[str] = None
    group_traits: Optional[Dict[str, Any]] = None
    distinct_id: str
    anonymous_id: str
    user_id: Optional[str] = None
    session_id: str
    url: Optional[str] = None
    path: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    # exception / message events only
    event_id: Optional[str] = None
    level: Optional[Severity] = None
    exception: Optional[ExceptionPayload] = None
    release: Optional[str] = None
    environment: Optional[str] = None

    @field_validator("distinct_id")
    @classmethod
    def _non_empty(cls, v):
        if not v:
            raise ValueError("distinct_id must not be empty")
        return v


class FeatureFlag(WireModel):
    key: str
    value: FlagValue
