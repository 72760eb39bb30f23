"""Shared enums for the short-link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CreationPath", "RedirectOutcome", "ClickOutcome"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DISABLED = "disabled"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    EXHAUSTED = "exhausted"
    ERROR = "error"


class CreationPath(StrEnum):
    """How a short code was chosen."""

    RANDOM = "random"
    CUSTOM = "custom"


class RedirectOutcome(StrEnum):
    """Redirect resolution outcomes, one per externally visible status."""

    REDIRECTED = "redirected"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    INVALID = "invalid"


class ClickOutcome(StrEnum):
    """What happened to a click fact handed to the recorder."""

    RECORDED = "recorded"
    DROPPED = "dropped"
    SKIPPED = "skipped"
    FAILED = "failed"
