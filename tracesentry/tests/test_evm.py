"""Tests for tracesentry.trace.evm — word, address and memory helpers."""

from __future__ import annotations

import pytest

from tracesentry.trace.evm import (
    CALL_CLASS_OPS,
    EXTERNAL_CALL_OPS,
    extract_address,
    flatten_memory,
    is_precompile,
    normalize_word,
    read_memory,
    same_address,
    selector_of,
    stack_at,
    to_hex,
    word_to_int,
)


class TestOpcodeClasses:

    def test_external_calls_are_call_class(self):
        assert EXTERNAL_CALL_OPS < CALL_CLASS_OPS
        assert CALL_CLASS_OPS - EXTERNAL_CALL_OPS == {"CREATE", "CREATE2"}


class TestWords:

    @pytest.mark.parametrize("word, expected", [
        ("0x10", 16),
        ("10", 16),
        ("0XfF", 255),
        ("", 0),
        ("0x", 0),
        (None, None),
        ("0xzz", None),
        (7, 7),
    ])
    def test_word_to_int(self, word, expected):
        assert word_to_int(word) == expected

    @pytest.mark.parametrize("value, expected", [
        (1000, "0x3e8"),
        ("1000", "0x3e8"),
        ("0xABC", "0xabc"),
        (None, None),
        ("not-a-number", None),
    ])
    def test_to_hex(self, value, expected):
        assert to_hex(value) == expected

    def test_normalize_word(self):
        assert normalize_word("0x5") == "0" * 63 + "5"
        assert normalize_word("ABCD") == "0" * 60 + "abcd"
        assert normalize_word(None) == "0" * 64

    def test_stack_at(self):
        stack = ("0x1", "0x2")
        assert stack_at(stack, 0) == "0x1"
        assert stack_at(stack, 2) is None
        assert stack_at(stack, -1) is None


class TestAddresses:

    def test_extract_from_full_word(self):
        word = "0x" + "ff" * 12 + "AbCdEf0123456789abcdef0123456789ABCDEF01"
        assert extract_address(word) == "0xabcdef0123456789abcdef0123456789abcdef01"

    def test_extract_from_short_word(self):
        assert extract_address("0x1") == "0x" + "0" * 39 + "1"

    def test_extract_invalid(self):
        assert extract_address("0xnope") is None
        assert extract_address(None) is None

    def test_precompiles(self):
        assert is_precompile("0x" + "0" * 39 + "1")
        assert is_precompile("0x" + "0" * 39 + "9")
        assert not is_precompile("0x" + "0" * 38 + "0a")
        assert not is_precompile(None)

    def test_same_address_case_insensitive(self):
        assert same_address("0xABC", "0xabc")
        assert not same_address(None, None)
        assert not same_address("0xabc", "0xabd")

    def test_selector_of(self):
        assert selector_of("0xA9059CBB000000") == "0xa9059cbb"
        assert selector_of("0x1234") is None
        assert selector_of(None) is None


class TestMemory:

    def test_flatten(self):
        memory = ("11" * 32, "0x" + "22" * 32)
        assert flatten_memory(memory) == bytes([0x11] * 32 + [0x22] * 32)

    def test_flatten_short_and_bad_words(self):
        flat = flatten_memory(("ff", "zz"))
        assert flat == bytes(31) + b"\xff" + bytes(32)

    def test_read_padded(self):
        assert read_memory(("ab" * 32,), 30, 4) == b"\xab\xab\x00\x00"

    def test_read_unpadded(self):
        assert read_memory(("ab" * 32,), 30, 4, pad=False) == b"\xab\xab"

    def test_read_invalid_window(self):
        assert read_memory(("ab" * 32,), 0, 0) == b""
        assert read_memory(("ab" * 32,), -1, 4) == b""
