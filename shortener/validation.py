"""Target URL and custom code validation.

Validation Flow — validate_url()
================================
::
    ┌─────────────┐
    │ empty?       │──yes──▶ InvalidURLError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ > 2048 chars?│──yes──▶ URLTooLongError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ http(s) +    │──no───▶ InvalidURLError
    │ host?        │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ malicious    │──yes──▶ MaliciousURLError
    │ pattern?     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ well-formed  │──no───▶ InvalidURLError
    │ (validators) │
    └─────────────┘

How to Use
===========
**Step 1 — Validate then normalize a target**::
    validate_url(raw)
    target = normalize_url(raw)

**Step 2 — Validate a caller-supplied code**::
    validate_custom_code(payload.custom_code)   # "" / None means "generate one"

Key Behaviours
===============
- ``normalize_url`` is idempotent and never changes path case, query or fragment.
- Reserved words are matched case-insensitively.
- Store-backed checks (dynamic reserved codes, availability) live in the service.
"""

import logging
import re
from urllib.parse import urlsplit, urlunsplit

import validators

from shortener.errors import (
    CustomCodeTooLongError,
    CustomCodeTooShortError,
    InvalidCustomCodeError,
    InvalidURLError,
    MaliciousURLError,
    ReservedCodeError,
    URLTooLongError,
)

__all__ = [
    "MAX_URL_LENGTH",
    "MIN_CUSTOM_CODE_LENGTH",
    "MAX_CUSTOM_CODE_LENGTH",
    "RESERVED_CODES",
    "ROUTE_CODES",
    "validate_url",
    "normalize_url",
    "validate_custom_code",
    "is_custom_code_format",
    "is_reserved_word",
]

logger = logging.getLogger("urlshortener.validation")

MAX_URL_LENGTH = 2048
MIN_CUSTOM_CODE_LENGTH = 2
MAX_CUSTOM_CODE_LENGTH = 50

ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_PORTS = {"http": ":80", "https": ":443"}

# Paths served by fixed routes are reserved so a stored code can always redirect.
ROUTE_CODES = frozenset({"health", "metrics", "docs", "redoc"})
RESERVED_CODES = frozenset({"api", "www", "admin", "root", "null", "undefined"}) | ROUTE_CODES

CUSTOM_CODE_PATTERN = re.compile(r"[a-zA-Z0-9_-]+")

MALICIOUS_PATTERNS = (
    re.compile(r"(javascript|data|vbscript):", re.IGNORECASE),
    re.compile(r"\.exe($|\?|#)", re.IGNORECASE),
    re.compile(r"\.bat($|\?|#)", re.IGNORECASE),
    re.compile(r"\.scr($|\?|#)", re.IGNORECASE),
    re.compile(r"\.zip($|\?|#)", re.IGNORECASE),
)


# ============================================================================
# TARGET URLS
# ============================================================================


def validate_url(url: str) -> None:
    """Check that ``url`` is an absolute http(s) URL that is safe to redirect to.

    The final check is ``validators.url``, whose host grammar is stricter than
    a bare non-empty host: hostnames with underscores such as
    ``my_host.example.com`` are rejected.

    Args:
        url: Raw target URL as submitted by the caller

    Raises:
        InvalidURLError: Empty, unparsable, wrong scheme or missing host
        URLTooLongError: Longer than ``MAX_URL_LENGTH`` characters
        MaliciousURLError: Matches a script-injection or executable pattern
    """
    if not url or not url.strip():
        raise InvalidURLError("URL is required")

    if len(url) > MAX_URL_LENGTH:
        raise URLTooLongError(f"URL is too long: {len(url)} chars (max {MAX_URL_LENGTH})")

    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError as exc:
        raise InvalidURLError("Invalid URL format") from exc

    if not parts.scheme:
        raise InvalidURLError("URL is missing a scheme")
    if parts.scheme not in ALLOWED_SCHEMES:
        raise InvalidURLError(f"Unsupported URL scheme: {parts.scheme}")
    if not hostname:
        raise InvalidURLError("URL is missing a host")

    for index, pattern in enumerate(MALICIOUS_PATTERNS, start=1):
        if pattern.search(url):
            logger.warning(f"Malicious URL rejected (pattern {index}): {url[:100]}")
            raise MaliciousURLError(f"Potentially malicious URL detected (pattern {index})")

    if not validators.url(url, simple_host=True, strict_query=False):
        raise InvalidURLError("Invalid URL format")


def normalize_url(url: str) -> str:
    """Return the canonical form of ``url``.

    Adds ``https://`` when no http(s) scheme is present, lowercases scheme and
    host, drops a bare ``/`` path and strips the scheme's default port.

    Example:
        >>> normalize_url("HTTP://EXAMPLE.COM:80/")
        'http://example.com'
    """
    lowered = url.lower()
    if not lowered.startswith("http://") and not lowered.startswith("https://"):
        url = "https://" + url

    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise InvalidURLError("Invalid URL format") from exc

    scheme = parts.scheme.lower()
    userinfo, at, hostport = parts.netloc.rpartition("@")
    hostport = hostport.lower()

    default_port = DEFAULT_PORTS.get(scheme)
    if default_port and hostport.endswith(default_port):
        hostport = hostport[: -len(default_port)]

    path = "" if parts.path == "/" else parts.path
    return urlunsplit((scheme, f"{userinfo}{at}{hostport}", path, parts.query, parts.fragment))


# ============================================================================
# CUSTOM CODES
# ============================================================================


def is_reserved_word(code: str) -> bool:
    return code.lower() in RESERVED_CODES


def is_custom_code_format(code: str, max_length: int = MAX_CUSTOM_CODE_LENGTH) -> bool:
    """True when ``code`` has a length and alphabet a custom code may use."""
    return (
        isinstance(code, str)
        and MIN_CUSTOM_CODE_LENGTH <= len(code) <= max_length
        and CUSTOM_CODE_PATTERN.fullmatch(code) is not None
    )


def validate_custom_code(code: str | None, max_length: int = MAX_CUSTOM_CODE_LENGTH) -> None:
    """Validate format, length and static reserved words of a custom code.

    An empty code is not an error: it means the caller has no preference and
    a random code will be generated instead.
    """
    if not code:
        return

    if len(code) < MIN_CUSTOM_CODE_LENGTH:
        raise CustomCodeTooShortError(
            f"Custom code is too short: {len(code)} chars (min {MIN_CUSTOM_CODE_LENGTH})"
        )
    if len(code) > max_length:
        raise CustomCodeTooLongError(f"Custom code is too long: {len(code)} chars (max {max_length})")
    if not CUSTOM_CODE_PATTERN.fullmatch(code):
        raise InvalidCustomCodeError("Custom code may only contain letters, digits, '_' or '-'")
    if is_reserved_word(code):
        raise ReservedCodeError(code)
