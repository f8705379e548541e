"""EVM opcode classes and word/memory helpers used by trace analysis."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


# ── Opcode Classes ───────────────────────────────────────────────────────────

# Instructions that create a new execution context
CALL_CLASS_OPS: frozenset[str] = frozenset({
    "CALL", "CALLCODE", "DELEGATECALL", "STATICCALL", "CREATE", "CREATE2",
})

# Call-class instructions that transfer control to existing code
EXTERNAL_CALL_OPS: frozenset[str] = frozenset({
    "CALL", "CALLCODE", "DELEGATECALL", "STATICCALL",
})

ABNORMAL_HALT_OPS: frozenset[str] = frozenset({"REVERT", "INVALID"})
NORMAL_HALT_OPS: frozenset[str] = frozenset({"RETURN", "STOP", "SELFDESTRUCT"})
HALT_OPS: frozenset[str] = ABNORMAL_HALT_OPS | NORMAL_HALT_OPS

# "REQUIRE" is not an EVM opcode; some tracers emit it for solc's require()
CALL_CHECK_OPS: frozenset[str] = frozenset({"ISZERO", "REVERT", "JUMPI", "REQUIRE"})
AUTH_CONTROL_OPS: frozenset[str] = frozenset({"JUMPI", "REVERT", "REQUIRE"})

ARITHMETIC_OPS: frozenset[str] = frozenset({"ADD", "SUB", "MUL", "DIV"})

STORAGE_WRITE_OP = "SSTORE"
ORIGIN_OP = "ORIGIN"
DELEGATECALL_OP = "DELEGATECALL"
ADDRESS_PUSH_OP = "PUSH20"

# Solidity >=0.8 built-in panic: Panic(uint256)
PANIC_SELECTOR = "0x4e487b71"
PANIC_ARITHMETIC_CODE = 0x11

# Mainnet precompiles (Hardhat/Anvil use the same set)
PRECOMPILES: frozenset[str] = frozenset(
    "0x" + f"{n:040x}" for n in range(1, 10)
)

ZERO_ADDRESS = "0x" + "0" * 40


# ── Word Helpers ─────────────────────────────────────────────────────────────


def word_to_int(word: str | int | None) -> int | None:
    """Parse a stack/memory word (hex string, with or without 0x) to int.

    Returns None for missing or unparseable words.
    """
    if word is None:
        return None
    if isinstance(word, bool):
        return None
    if isinstance(word, int):
        return word
    text = word.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if not text:
        return 0
    try:
        return int(text, 16)
    except ValueError:
        return None


def to_hex(value: str | int | None) -> str | None:
    """Normalize a quantity to ``0x``-prefixed lowercase hex.

    Decimal strings (as produced by ``tx.value.toString()``) are accepted.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return hex(value)
    text = value.strip().lower()
    if text.startswith("0x"):
        return text
    try:
        return hex(int(text, 10))
    except ValueError:
        return None


def normalize_word(word: str | None) -> str:
    """Return a word as 64 lowercase hex chars without prefix."""
    if not word:
        return "0" * 64
    text = word.lower()
    if text.startswith("0x"):
        text = text[2:]
    return text.rjust(64, "0")


def extract_address(word: str | None) -> str | None:
    """Take the low 20 bytes of a stack word as a lowercase address."""
    if word is None:
        return None
    text = word.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if word_to_int(text) is None:
        return None
    text = text[-40:] if len(text) >= 40 else text.rjust(40, "0")
    return "0x" + text


def stack_at(stack: tuple[str, ...] | list[str], position: int) -> str | None:
    """Return the word ``position`` slots below the top, or None."""
    if 0 <= position < len(stack):
        return stack[position]
    return None


# ── Memory Helpers ───────────────────────────────────────────────────────────


def flatten_memory(memory_words: tuple[str, ...] | list[str] | None) -> bytes:
    """Concatenate 32-byte memory words into one byte string."""
    if not memory_words:
        return b""
    chunks: list[bytes] = []
    for word in memory_words:
        text = (word or "").lower()
        if text.startswith("0x"):
            text = text[2:]
        text = text.rjust(64, "0")[-64:]
        try:
            chunks.append(bytes.fromhex(text))
        except ValueError:
            logger.debug("Unreadable memory word %r treated as zero", word)
            chunks.append(bytes(32))
    return b"".join(chunks)


def read_memory(
    memory_words: tuple[str, ...] | list[str] | None,
    offset: int,
    size: int,
    pad: bool = True,
) -> bytes:
    """Slice ``[offset, offset + size)`` out of flattened memory.

    Over-reads are zero-padded when ``pad`` is set, otherwise truncated.
    """
    if size <= 0 or offset < 0:
        return b""
    data = flatten_memory(memory_words)[offset:offset + size]
    if pad and len(data) < size:
        data += bytes(size - len(data))
    return data


def selector_of(calldata: str | None) -> str | None:
    """First four bytes of calldata as ``0x`` + 8 hex chars."""
    if not calldata or len(calldata) < 10:
        return None
    return calldata[:10].lower()


def is_precompile(address: str | None) -> bool:
    return bool(address) and address.lower() in PRECOMPILES


def same_address(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()
