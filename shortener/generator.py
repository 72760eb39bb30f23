"""Short code generation backed by the operating system CSPRNG.

A code of length ``L`` is a uniformly random integer in ``[0, 62**L)`` rendered in
base 62 and left-padded to exactly ``L`` symbols. Drawing one integer for the
whole keyspace (instead of one random symbol per position) keeps the
distribution exactly uniform with no modulo bias.

Flow Diagram — generate()
=========================
::
    ┌──────────────────┐
    │ secrets.randbelow │
    │ (62 ** length)    │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ divmod by 62      │
    │ until exhausted   │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ rjust with 'a'    │
    │ to fixed width    │
    └──────────────────┘

How to Use
===========
**Step 1 — Build a generator**::
    generator = CodeGenerator(length=7)

**Step 2 — Generate codes**::
    code = generator.generate()          # e.g. 'kQ3zaP0'
    codes = generator.generate_batch(50) # 50 distinct codes

**Step 3 — Grow the keyspace**::
    bigger = generator.with_length(generator.length + 1)

Key Behaviours
===============
- Instances are frozen; growing the length returns a new instance.
- Alphabet order is ``a..z A..Z 0..9``; ``a`` is the zero symbol.
- A failing random source raises ``RandomGenerationError`` and is not retried.
"""

import secrets
import string
from dataclasses import dataclass

from shortener.errors import InvalidCodeLengthError, RandomGenerationError

__all__ = [
    "BASE62_ALPHABET",
    "DEFAULT_CODE_LENGTH",
    "MIN_CODE_LENGTH",
    "MAX_CODE_LENGTH",
    "CodeGenerator",
    "encode_base62",
    "is_valid_code",
]

BASE62_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits
BASE = len(BASE62_ALPHABET)

DEFAULT_CODE_LENGTH = 7  # 62^7 ≈ 3.5e12
MIN_CODE_LENGTH = 4
MAX_CODE_LENGTH = 12

_ALPHABET_SET = frozenset(BASE62_ALPHABET)


def encode_base62(number: int, width: int = 0) -> str:
    """Encode a non-negative integer in base 62, left-padded to ``width``.

    Args:
        number: Number to encode (must be non-negative)
        width: Minimum output length, padded with the zero symbol

    Returns:
        str: Base62 encoded string

    Example:
        >>> encode_base62(62)
        'ba'
        >>> encode_base62(1, width=4)
        'aaab'
    """
    if number < 0:
        raise ValueError("Number must be non-negative")

    if number == 0:
        return BASE62_ALPHABET[0].rjust(width, BASE62_ALPHABET[0])

    result = []
    while number > 0:
        number, remainder = divmod(number, BASE)
        result.append(BASE62_ALPHABET[remainder])

    return "".join(result[::-1]).rjust(width, BASE62_ALPHABET[0])


def is_valid_code(code: str) -> bool:
    """Return True when ``code`` could have come out of a ``CodeGenerator``."""
    if not isinstance(code, str):
        return False
    if len(code) < MIN_CODE_LENGTH or len(code) > MAX_CODE_LENGTH:
        return False
    return all(char in _ALPHABET_SET for char in code)


@dataclass(frozen=True)
class CodeGenerator:
    length: int = DEFAULT_CODE_LENGTH

    def __post_init__(self) -> None:
        if not isinstance(self.length, int) or not MIN_CODE_LENGTH <= self.length <= MAX_CODE_LENGTH:
            raise InvalidCodeLengthError(
                f"Code length must be between {MIN_CODE_LENGTH} and {MAX_CODE_LENGTH}, got {self.length!r}"
            )

    @property
    def keyspace_size(self) -> int:
        return BASE**self.length

    def generate(self) -> str:
        try:
            value = secrets.randbelow(self.keyspace_size)
        except (OSError, NotImplementedError) as exc:
            raise RandomGenerationError("Failed to draw from the secure random source") from exc
        return encode_base62(value, self.length)

    def generate_batch(self, count: int) -> list[str]:
        """Generate ``count`` codes that are distinct within the batch.

        No store lookup happens here; callers that persist the codes still go
        through the collision resolver.
        """
        if count <= 0:
            raise ValueError("count must be positive")

        codes: list[str] = []
        seen: set[str] = set()
        while len(codes) < count:
            code = self.generate()
            if code not in seen:
                seen.add(code)
                codes.append(code)
        return codes

    def with_length(self, length: int) -> "CodeGenerator":
        return CodeGenerator(length=length)
