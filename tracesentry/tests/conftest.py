"""Shared fixtures for the TraceSentry test suite."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from tracesentry.analyzer.base_detector import DetectorContext
from tracesentry.core.config import Settings
from tracesentry.core.types import Finding, Severity, StepRecord, TransactionMeta
from tracesentry.trace.frames import build_call_frames

SENDER = "0x" + "11" * 20
VICTIM = "0x" + "22" * 20
ATTACKER = "0x" + "33" * 20
LIBRARY = "0x" + "44" * 20
ECRECOVER = "0x" + "00" * 19 + "01"


def word(value: int) -> str:
    """Stack word as tracers print it (short ``0x`` hex)."""
    return hex(value)


def addr_word(address: str) -> str:
    """Left-pad an address into a full 32-byte stack word."""
    return "0x" + address[2:].rjust(64, "0")


def call_stack(to: str, value: int = 0, in_offset: int = 0, in_size: int = 0) -> tuple[str, ...]:
    """Top-first CALL operands: gas, to, value, inOffset, inSize, outOffset, outSize."""
    return (word(50_000), addr_word(to), word(value), word(in_offset), word(in_size), "0x0", "0x0")


def delegatecall_stack(to: str, in_offset: int = 0, in_size: int = 0) -> tuple[str, ...]:
    """Top-first DELEGATECALL operands: gas, to, inOffset, inSize, outOffset, outSize."""
    return (word(50_000), addr_word(to), word(in_offset), word(in_size), "0x0", "0x0")


def sstore_stack(slot: int, value: int) -> tuple[str, ...]:
    return (word(slot), word(value))


# ── Step Builders ────────────────────────────────────────────────────────────


@pytest.fixture
def make_step() -> Callable[..., StepRecord]:
    """Factory for a single StepRecord with sensible defaults."""

    def _make(
        index: int,
        op: str,
        depth: int = 1,
        stack: tuple[str, ...] = (),
        memory: tuple[str, ...] = (),
        gas_cost: int = 3,
    ) -> StepRecord:
        return StepRecord(
            index=index,
            pc=index,
            op=op,
            gas=1_000_000 - index,
            gas_cost=gas_cost,
            depth=depth,
            stack=stack,
            memory=memory,
        )

    return _make


@pytest.fixture
def make_steps(make_step) -> Callable[..., list[StepRecord]]:
    """Build an indexed step list from ``(op, depth[, stack[, memory]])`` tuples."""

    def _make(*rows: tuple[Any, ...]) -> list[StepRecord]:
        steps = []
        for index, row in enumerate(rows):
            op, depth, *rest = row
            stack = rest[0] if len(rest) > 0 else ()
            memory = rest[1] if len(rest) > 1 else ()
            steps.append(make_step(index, op, depth, stack, memory))
        return steps

    return _make


# ── Context Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the cached singleton."""
    return Settings()


@pytest.fixture
def tx_meta() -> TransactionMeta:
    return TransactionMeta(from_address=SENDER, to=VICTIM, input="0x", value=0)


@pytest.fixture
def framed_context(settings, tx_meta) -> Callable[[list[StepRecord]], DetectorContext]:
    """DetectorContext with frames reconstructed from the given steps."""

    def _make(steps: list[StepRecord], **overrides: Any) -> DetectorContext:
        return DetectorContext(
            steps=steps,
            call_frames=build_call_frames(steps, tx_meta),
            meta=tx_meta,
            settings=Settings(**overrides) if overrides else settings,
        )

    return _make


@pytest.fixture
def flat_context(settings, tx_meta) -> Callable[[list[StepRecord]], DetectorContext]:
    """DetectorContext without frame data."""

    def _make(steps: list[StepRecord], **overrides: Any) -> DetectorContext:
        return DetectorContext(
            steps=steps,
            call_frames=None,
            meta=tx_meta,
            settings=Settings(**overrides) if overrides else settings,
        )

    return _make


# ── Finding Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def make_finding() -> Callable[..., Finding]:
    def _make(
        id: str = "VUL-0001",
        rule: str = "UncheckedExternalCall",
        severity: Severity = Severity.MEDIUM,
        title: str = "Unchecked External Call: CALL",
        evidence: dict[str, Any] | list[Any] | None = None,
        tags: list[str] | None = None,
    ) -> Finding:
        return Finding(
            id=id,
            rule=rule,
            severity=severity,
            title=title,
            description=f"{title} at step 4",
            evidence=evidence if evidence is not None else {"call_step": 4},
            recommendation="Check the return value.",
            tags=tags if tags is not None else ["unchecked-call"],
        )

    return _make
