"""Pydantic schemas for request/response validation and internal payloads.

This module defines Pydantic models for API input validation and output serialization,
plus the immutable payloads handed between the core and its collaborators
(click facts, Kafka click events, cached links).

Schema Hierarchy
=================
::
    URLCreate (Input)
    ├─ url: str (validated by the service, not here)
    ├─ custom_code: str | None ("" / None = generate one)
    └─ expires_at: datetime | None

    URLUpdate (Input)
    ├─ target_url: str | None
    ├─ is_active: bool | None
    └─ expires_at: datetime | None

    URLResponse (Output)
    ├─ short_code, short_url, target_url
    ├─ is_active
    └─ created_at, expires_at

    URLInfoResponse (Output)
    └─ URLResponse + click_count, last_clicked

    ClickContext (Internal)  ──▶  ClickFact (Internal, frozen)  ──▶  ClickEvent (Kafka)

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/shorten")
    async def shorten_url(payload: URLCreate): ...

**Step 2 — Response serialization**::
    return URLResponse.from_link(link, settings.BASE_URL)

Key Behaviours
===============
- URL and custom code rules live in ``shortener.validation`` so the service
  raises typed errors instead of generic 422 responses.
- ``ClickFact`` is frozen; once built it is only handed off.
- All datetime fields are timezone-aware on output.

Classes:
    URLCreate:  Input schema for URL shortening requests.
    URLUpdate:  Input schema for partial updates.
    URLResponse:  Output schema for created / updated links.
    URLInfoResponse:  Output schema for link metadata with click facts.
    CodeAvailabilityResponse:  Output schema for custom code checks.
    HealthResponse:  Output schema for health checks.
    ErrorResponse:  Output schema for typed errors.
    ClickContext:  Request facts captured at redirect time.
    ClickFact:  One immutable click record.
    ClickEvent:  Kafka click event payload.
    CachedLinkPayload:  Redis cache payload for a short link.
"""

import datetime

from pydantic import BaseModel, ConfigDict, Field

from shortener.enums import HealthStatus

__all__ = [
    "URLCreate",
    "URLUpdate",
    "URLResponse",
    "URLInfoResponse",
    "CodeAvailabilityResponse",
    "HealthResponse",
    "ErrorResponse",
    "ClickContext",
    "ClickFact",
    "ClickEvent",
    "CachedLinkPayload",
]


def _aware(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


class URLCreate(BaseModel):
    url: str
    custom_code: str | None = None
    expires_at: datetime.datetime | None = None


class URLUpdate(BaseModel):
    target_url: str | None = None
    is_active: bool | None = None
    expires_at: datetime.datetime | None = None


class URLResponse(BaseModel):
    short_code: str
    short_url: str
    target_url: str
    is_active: bool
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None

    @classmethod
    def from_link(cls, link, base_url: str) -> "URLResponse":
        return cls(
            short_code=link.code,
            short_url=f"{base_url.rstrip('/')}/{link.code}",
            target_url=link.target_url,
            is_active=link.is_active,
            created_at=_aware(link.created_at),
            expires_at=_aware(link.expires_at),
        )


class URLInfoResponse(URLResponse):
    click_count: int = 0
    last_clicked: datetime.datetime | None = None


class CodeAvailabilityResponse(BaseModel):
    code: str
    available: bool
    reason: str | None = None


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
    code_length: int


class ErrorResponse(BaseModel):
    error: str
    message: str
    code: int


class ClickContext(BaseModel):
    """Request facts captured at redirect time, before any privacy filtering."""

    ip: str | None = None
    user_agent: str | None = None
    referrer: str | None = None
    utm_params: dict[str, str] = Field(default_factory=dict)
    query_params: dict[str, str] = Field(default_factory=dict)
    do_not_track: bool = False


class ClickFact(BaseModel):
    """One immutable click record, column-for-column with ``click_events``."""

    model_config = ConfigDict(frozen=True)

    short_link_id: int
    occurred_at: datetime.datetime
    ip: str | None = None
    user_agent: str | None = None
    referrer: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None
    query_params: str | None = None


class ClickEvent(BaseModel):
    """Kafka click event payload, keyed by short_code for partition affinity."""

    short_code: str = Field(..., description="Short code being clicked, e.g. 'abc1234'")
    delta: int = Field(
        1,
        description="How many clicks to add for this short_code (typically 1).",
        ge=1,
    )
    occurred_at: datetime.datetime


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a short link."""

    id: int
    code: str
    target_url: str
    is_active: bool
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None

    model_config = {"from_attributes": True}
