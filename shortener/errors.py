"""Typed error taxonomy for the short-link core.

Every operation raises a subclass of ``ShortenerError``. Each class carries the
HTTP status it maps to, so the HTTP layer picks a response by type and never
inspects message text.

Error Hierarchy
===============
::
    ShortenerError
    ├─ InvalidInputError (400)
    │  ├─ InvalidURLError
    │  ├─ URLTooLongError
    │  ├─ MaliciousURLError
    │  ├─ InvalidCodeError
    │  ├─ InvalidCodeLengthError
    │  ├─ CustomCodeTooShortError
    │  ├─ CustomCodeTooLongError
    │  └─ InvalidCustomCodeError
    ├─ ConflictError (409)
    │  ├─ ReservedCodeError
    │  └─ CodeAlreadyTakenError
    ├─ LinkNotFoundError (404)
    ├─ LinkInactiveError (403)
    ├─ LinkExpiredError (410)
    ├─ ResourceExhaustedError (503)
    │  └─ TooManyRetriesError
    └─ DependencyError (500)
       ├─ StoreError
       └─ RandomGenerationError

    UniqueViolationError   (store → resolver only, never reaches HTTP)

Key Behaviours
===============
- ``public_message`` is what clients see. Dependency errors always expose a
  generic message; the detailed text stays in logs.
- ``UniqueViolationError`` is not a ``ShortenerError``: the resolver converts it
  into a retry (random path) or ``CodeAlreadyTakenError`` (custom path).
"""

__all__ = [
    "ShortenerError",
    "InvalidInputError",
    "InvalidURLError",
    "URLTooLongError",
    "MaliciousURLError",
    "InvalidCodeError",
    "InvalidCodeLengthError",
    "CustomCodeTooShortError",
    "CustomCodeTooLongError",
    "InvalidCustomCodeError",
    "ConflictError",
    "ReservedCodeError",
    "CodeAlreadyTakenError",
    "LinkNotFoundError",
    "LinkInactiveError",
    "LinkExpiredError",
    "ResourceExhaustedError",
    "TooManyRetriesError",
    "DependencyError",
    "StoreError",
    "RandomGenerationError",
    "UniqueViolationError",
]


class ShortenerError(Exception):
    status_code: int = 500
    error: str = "internal_error"

    @property
    def public_message(self) -> str:
        return str(self)


# ============================================================================
# CLIENT ERRORS
# ============================================================================


class InvalidInputError(ShortenerError):
    status_code = 400
    error = "invalid_input"


class InvalidURLError(InvalidInputError):
    error = "invalid_url"


class URLTooLongError(InvalidInputError):
    error = "url_too_long"


class MaliciousURLError(InvalidInputError):
    error = "malicious_url"


class InvalidCodeError(InvalidInputError):
    error = "invalid_code"


class InvalidCodeLengthError(InvalidInputError):
    error = "invalid_code_length"


class CustomCodeTooShortError(InvalidInputError):
    error = "custom_code_too_short"


class CustomCodeTooLongError(InvalidInputError):
    error = "custom_code_too_long"


class InvalidCustomCodeError(InvalidInputError):
    error = "invalid_custom_code"


class ConflictError(ShortenerError):
    status_code = 409
    error = "conflict"


class ReservedCodeError(ConflictError):
    error = "reserved_code"

    def __init__(self, code: str) -> None:
        super().__init__(f"Code '{code}' is reserved")
        self.code = code


class CodeAlreadyTakenError(ConflictError):
    error = "code_taken"

    def __init__(self, code: str) -> None:
        super().__init__(f"Code '{code}' is already taken")
        self.code = code


# ============================================================================
# REDIRECT OUTCOMES
# ============================================================================


class LinkNotFoundError(ShortenerError):
    status_code = 404
    error = "not_found"

    def __init__(self, code: str) -> None:
        super().__init__(f"Short link '{code}' not found")
        self.code = code


class LinkInactiveError(ShortenerError):
    status_code = 403
    error = "inactive"

    def __init__(self, code: str) -> None:
        super().__init__(f"Short link '{code}' is inactive")
        self.code = code


class LinkExpiredError(ShortenerError):
    status_code = 410
    error = "expired"

    def __init__(self, code: str) -> None:
        super().__init__(f"Short link '{code}' has expired")
        self.code = code


# ============================================================================
# SERVICE CONDITIONS
# ============================================================================


class ResourceExhaustedError(ShortenerError):
    status_code = 503
    error = "resource_exhausted"


class TooManyRetriesError(ResourceExhaustedError):
    error = "too_many_retries"

    def __init__(self, attempts: int, last_code: str | None) -> None:
        super().__init__(f"Too many collision retries ({attempts}); last collision on '{last_code}'")
        self.attempts = attempts
        self.last_code = last_code

    @property
    def public_message(self) -> str:
        return "Could not allocate a short code, please retry"


class DependencyError(ShortenerError):
    status_code = 500
    error = "dependency_failure"

    @property
    def public_message(self) -> str:
        return "Internal server error"


class StoreError(DependencyError):
    pass


class RandomGenerationError(DependencyError):
    pass


class UniqueViolationError(Exception):
    """Raised by the store when an insert hits the unique index on ``code``."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Short code already exists: {code}")
        self.code = code
