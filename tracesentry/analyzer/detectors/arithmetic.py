"""Arithmetic overflow/underflow detector — SWC-101.

Solidity >=0.8 reverts checked arithmetic with ``Panic(uint256)`` carrying
code ``0x11``. When such a payload can be decoded from a REVERT's memory
window the finding is high-confidence; otherwise a weaker heuristic looks
for arithmetic immediately followed by an abnormal halt.
"""

from __future__ import annotations

import logging

from tracesentry.analyzer.base_detector import BaseDetector, DetectorContext
from tracesentry.core.types import Finding, Rule, Severity, StepRecord
from tracesentry.trace.evm import (
    ABNORMAL_HALT_OPS,
    ARITHMETIC_OPS,
    PANIC_ARITHMETIC_CODE,
    PANIC_SELECTOR,
    read_memory,
    stack_at,
    word_to_int,
)

logger = logging.getLogger(__name__)

_PANIC_PAYLOAD_BYTES = 4 + 32


def revert_payload(step: StepRecord, max_bytes: int) -> bytes | None:
    """Read the REVERT data window ``[offset, offset + size)`` from memory.

    Returns None when the operands are missing, the window is empty or
    larger than ``max_bytes``, or memory does not cover it.
    """
    offset = word_to_int(stack_at(step.stack, 0))
    size = word_to_int(stack_at(step.stack, 1))
    if offset is None or size is None or size <= 0 or size > max_bytes:
        return None
    data = read_memory(step.memory, offset, size, pad=False)
    return data or None


def decode_panic(payload: bytes | None) -> tuple[str, int] | None:
    """Decode ``Panic(uint256)`` revert data into (selector, code)."""
    if payload is None or len(payload) < _PANIC_PAYLOAD_BYTES:
        return None
    selector = "0x" + payload[:4].hex()
    if selector != PANIC_SELECTOR:
        return None
    return selector, int.from_bytes(payload[4:_PANIC_PAYLOAD_BYTES], "big")


class ArithmeticDetector(BaseDetector):
    """Detect arithmetic overflow/underflow from panic payloads or halts."""

    DETECTOR_ID = "SWC-101-001"
    NAME = "Arithmetic Overflow/Underflow"
    DESCRIPTION = (
        "Decodes REVERT payloads for Panic(0x11); when none is present, flags "
        "ADD/SUB/MUL/DIV steps shortly followed by REVERT or INVALID."
    )
    SWC_ID = "SWC-101"
    RULE = Rule.ARITHMETIC
    SEVERITY = Severity.HIGH
    CATEGORY = "arithmetic"
    RECOMMENDATION = (
        "Upgrade to Solidity >=0.8 for built-in overflow checks. For earlier versions, "
        "use SafeMath library. Ensure all arithmetic operations are properly bounded "
        "and validated."
    )
    TAGS = ("dynamic", "overflow")

    def detect(self, context: DetectorContext) -> list[Finding]:
        findings = self._detect_panics(context)
        if findings:
            return findings
        return self._detect_heuristic(context)

    # ── Primary: Panic(0x11) decoding ────────────────────────────────────

    def _detect_panics(self, context: DetectorContext) -> list[Finding]:
        settings = context.settings
        findings: list[Finding] = []

        for step in context.steps:
            if step.op != "REVERT":
                continue
            panic = decode_panic(revert_payload(step, settings.panic_max_payload_bytes))
            if panic is None:
                continue
            selector, code = panic
            if code != PANIC_ARITHMETIC_CODE:
                logger.debug("Non-arithmetic panic 0x%x at step %d", code, step.index)
                continue

            frame_id = context.frame_of(step.index)
            preceding = self._preceding_arithmetic(context, step.index, frame_id)
            lookback = min(settings.panic_arithmetic_lookback, step.index)
            if preceding:
                ops = ", ".join(p["op"] for p in preceding)
                tail = (
                    f"Found {len(preceding)} arithmetic operations ({ops}) in preceding "
                    f"{lookback} steps."
                )
            else:
                tail = "No preceding arithmetic operations detected in lookback window."

            findings.append(self._make_finding(
                context,
                title="Arithmetic Overflow/Underflow Panic Detected",
                description=(
                    f"Solidity 0.8 panic detected at step {step.index} with selector "
                    f"{selector} and code 0x{code:x} (arithmetic overflow/underflow). "
                    "The transaction reverted due to arithmetic operation exceeding "
                    f"valid range. {tail}"
                ),
                evidence={
                    "revert_step": step.index,
                    "panic_selector": selector,
                    "panic_code": code,
                    "panic_code_meaning": "Arithmetic Overflow/Underflow",
                    "frame_id": frame_id,
                    "preceding_arithmetic_ops": preceding,
                },
                tags=["panic-detected"],
            ))

        return findings

    @staticmethod
    def _preceding_arithmetic(
        context: DetectorContext, revert_step: int, frame_id: int | None
    ) -> list[dict]:
        settings = context.settings
        start = max(0, revert_step - settings.panic_arithmetic_lookback)
        ops: list[dict] = []
        for index in range(start, revert_step):
            step = context.steps[index]
            if step.op in ARITHMETIC_OPS and context.frame_of(index) == frame_id:
                ops.append({"step": step.index, "op": step.op, "pc": step.pc})
        return ops[:settings.max_preceding_arithmetic]

    # ── Fallback: arithmetic followed by abnormal halt ───────────────────

    def _detect_heuristic(self, context: DetectorContext) -> list[Finding]:
        window = context.settings.arithmetic_fallback_window
        steps = context.steps
        findings: list[Finding] = []

        for i, step in enumerate(steps):
            if step.op not in ARITHMETIC_OPS:
                continue
            halt = next((s for s in steps[i + 1:i + 1 + window] if s.op in ABNORMAL_HALT_OPS), None)
            if halt is None:
                continue

            findings.append(self._make_finding(
                context,
                title=f"Possible {step.op} Overflow/Underflow (Heuristic)",
                description=(
                    f"Arithmetic operation ({step.op}) at step {step.index} followed by "
                    f"{halt.op} at step {halt.index}. May indicate overflow check in "
                    "Solidity >=0.8 or SafeMath library. No Panic selector confirmed."
                ),
                evidence={
                    "arithmetic_step": step.index,
                    "arithmetic_op": step.op,
                    "failure_step": halt.index,
                    "failure_op": halt.op,
                    "steps_between": halt.index - step.index,
                },
                severity=Severity.MEDIUM,
                tags=["heuristic"],
            ))

        return findings
