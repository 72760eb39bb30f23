"""Short code generator tests."""

import dataclasses
from unittest.mock import patch

import pytest

from shortener.errors import InvalidCodeLengthError, RandomGenerationError
from shortener.generator import (
    BASE62_ALPHABET,
    MAX_CODE_LENGTH,
    MIN_CODE_LENGTH,
    CodeGenerator,
    encode_base62,
    is_valid_code,
)

# ============================================================================
# BASE62 ENCODING
# ============================================================================


def test_alphabet_order() -> None:
    assert len(BASE62_ALPHABET) == 62
    assert BASE62_ALPHABET.startswith("abc")
    assert BASE62_ALPHABET[26:29] == "ABC"
    assert BASE62_ALPHABET.endswith("789")


def test_encode_base62_basic() -> None:
    assert encode_base62(0) == "a"
    assert encode_base62(1) == "b"
    assert encode_base62(61) == "9"
    assert encode_base62(62) == "ba"


def test_encode_base62_padding() -> None:
    assert encode_base62(0, width=4) == "aaaa"
    assert encode_base62(1, width=4) == "aaab"
    assert encode_base62(62**4 - 1, width=4) == "9999"


def test_encode_base62_negative() -> None:
    with pytest.raises(ValueError, match="Number must be non-negative"):
        encode_base62(-1)


# ============================================================================
# CODE GENERATOR
# ============================================================================


def test_generate_has_exact_length_and_alphabet() -> None:
    generator = CodeGenerator(7)
    for _ in range(200):
        code = generator.generate()
        assert len(code) == 7
        assert set(code) <= set(BASE62_ALPHABET)


def test_generate_draws_one_integer_over_whole_keyspace() -> None:
    generator = CodeGenerator(7)
    with patch("shortener.generator.secrets.randbelow", return_value=0) as randbelow:
        assert generator.generate() == "aaaaaaa"
    randbelow.assert_called_once_with(62**7)

    with patch("shortener.generator.secrets.randbelow", return_value=62**7 - 1):
        assert generator.generate() == "9999999"


@pytest.mark.parametrize("length", [MIN_CODE_LENGTH - 1, MAX_CODE_LENGTH + 1, 0, -7])
def test_invalid_length_rejected(length: int) -> None:
    with pytest.raises(InvalidCodeLengthError):
        CodeGenerator(length)


def test_keyspace_size() -> None:
    assert CodeGenerator(4).keyspace_size == 62**4
    assert CodeGenerator(12).keyspace_size == 62**12


def test_random_source_failure() -> None:
    generator = CodeGenerator(7)
    with patch("shortener.generator.secrets.randbelow", side_effect=OSError("no entropy")):
        with pytest.raises(RandomGenerationError):
            generator.generate()


def test_generate_default_length_is_distinct() -> None:
    generator = CodeGenerator()
    codes = {generator.generate() for _ in range(1000)}
    assert len(codes) == 1000
    assert all(len(code) == generator.length for code in codes)


def test_generate_batch_is_distinct() -> None:
    codes = CodeGenerator(4).generate_batch(500)
    assert len(codes) == 500
    assert len(set(codes)) == 500


def test_generate_batch_retries_duplicates() -> None:
    generator = CodeGenerator(4)
    with patch("shortener.generator.secrets.randbelow", side_effect=[5, 5, 5, 9]):
        assert generator.generate_batch(2) == ["aaaf", "aaaj"]


@pytest.mark.parametrize("count", [0, -1])
def test_generate_batch_rejects_non_positive(count: int) -> None:
    with pytest.raises(ValueError):
        CodeGenerator().generate_batch(count)


def test_with_length_returns_new_instance() -> None:
    generator = CodeGenerator(7)
    grown = generator.with_length(8)
    assert grown.length == 8
    assert generator.length == 7
    assert grown is not generator


def test_generator_is_immutable() -> None:
    generator = CodeGenerator(7)
    with pytest.raises(dataclasses.FrozenInstanceError):
        generator.length = 9  # type: ignore[misc]


# ============================================================================
# CODE SHAPE
# ============================================================================


@pytest.mark.parametrize("code", ["abcd", "aB3xY9z", "Z" * 12, "0000"])
def test_is_valid_code_accepts(code: str) -> None:
    assert is_valid_code(code)


@pytest.mark.parametrize("code", ["abc", "a" * 13, "abc-def", "abc_def", "abc def", "", None, 1234])
def test_is_valid_code_rejects(code) -> None:
    assert not is_valid_code(code)


def test_generated_codes_are_valid() -> None:
    for length in range(MIN_CODE_LENGTH, MAX_CODE_LENGTH + 1):
        code = CodeGenerator(length).generate()
        assert len(code) == length
        assert is_valid_code(code)
