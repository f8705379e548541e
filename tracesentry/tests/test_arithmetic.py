"""Tests for ArithmeticDetector (SWC-101-001) and panic payload decoding."""

from __future__ import annotations

from conftest import ATTACKER, call_stack, word
from tracesentry.analyzer.detectors.arithmetic import ArithmeticDetector, decode_panic, revert_payload
from tracesentry.core.types import Severity

# Panic(uint256) laid out from memory offset 0: selector in bytes 0..3, code in 4..35
PANIC_OVERFLOW_MEMORY = ("4e487b71" + "00" * 28, "00000011" + "00" * 28)
PANIC_DIV_ZERO_MEMORY = ("4e487b71" + "00" * 28, "00000012" + "00" * 28)
ERROR_STRING_MEMORY = ("08c379a0" + "00" * 28, "00" * 32)

PANIC_REVERT_STACK = (word(0), word(36))


def _panic_findings(findings):
    return [f for f in findings if "panic-detected" in f.tags]


def _heuristic_findings(findings):
    return [f for f in findings if "heuristic" in f.tags]


# ── Payload decoding ─────────────────────────────────────────────────────────


class TestPanicDecoding:

    def test_decode_overflow(self, make_step):
        step = make_step(0, "REVERT", stack=PANIC_REVERT_STACK, memory=PANIC_OVERFLOW_MEMORY)
        assert decode_panic(revert_payload(step, 200)) == ("0x4e487b71", 0x11)

    def test_other_selector_not_decoded(self, make_step):
        step = make_step(0, "REVERT", stack=PANIC_REVERT_STACK, memory=ERROR_STRING_MEMORY)
        assert decode_panic(revert_payload(step, 200)) is None

    def test_oversized_payload_skipped(self, make_step):
        step = make_step(0, "REVERT", stack=(word(0), word(500)), memory=PANIC_OVERFLOW_MEMORY)
        assert revert_payload(step, 200) is None

    def test_empty_payload(self, make_step):
        step = make_step(0, "REVERT", stack=(word(0), word(0)), memory=PANIC_OVERFLOW_MEMORY)
        assert revert_payload(step, 200) is None

    def test_truncated_memory_not_padded(self, make_step):
        step = make_step(0, "REVERT", stack=PANIC_REVERT_STACK, memory=PANIC_OVERFLOW_MEMORY[:1])
        payload = revert_payload(step, 200)
        assert len(payload) == 32
        assert decode_panic(payload) is None

    def test_missing_operands(self, make_step):
        step = make_step(0, "REVERT", stack=(word(0),), memory=PANIC_OVERFLOW_MEMORY)
        assert revert_payload(step, 200) is None

    def test_unparseable_operand(self, make_step):
        step = make_step(0, "REVERT", stack=("0xnothex", word(36)), memory=PANIC_OVERFLOW_MEMORY)
        assert revert_payload(step, 200) is None


# ── Detector ─────────────────────────────────────────────────────────────────


class TestArithmeticDetector:

    def test_panic_yields_one_high_finding(self, make_steps, framed_context):
        steps = make_steps(
            ("PUSH1", 1),
            ("ADD", 1),
            ("SUB", 1),
            ("PUSH1", 1),
            ("REVERT", 1, PANIC_REVERT_STACK, PANIC_OVERFLOW_MEMORY),
        )
        findings = ArithmeticDetector().detect(framed_context(steps))

        assert len(findings) == 1
        finding = findings[0]
        assert finding.rule == "ArithmeticOverflowUnderflow"
        assert finding.severity == Severity.HIGH
        assert finding.evidence["revert_step"] == 4
        assert finding.evidence["panic_code"] == 0x11
        assert finding.evidence["frame_id"] == 0
        assert [op["op"] for op in finding.evidence["preceding_arithmetic_ops"]] == ["ADD", "SUB"]
        assert "step 4" in finding.description
        assert "ADD, SUB" in finding.description
        assert finding.tags == ["dynamic", "overflow", "panic-detected"]

    def test_panic_correlates_same_frame_only(self, make_steps, framed_context):
        steps = make_steps(
            ("CALL", 1, call_stack(ATTACKER)),
            ("MUL", 2),
            ("STOP", 2),
            ("REVERT", 1, PANIC_REVERT_STACK, PANIC_OVERFLOW_MEMORY),
        )
        findings = ArithmeticDetector().detect(framed_context(steps))

        assert len(findings) == 1
        assert findings[0].evidence["preceding_arithmetic_ops"] == []
        assert "No preceding arithmetic" in findings[0].description

    def test_preceding_ops_capped(self, make_steps, flat_context):
        steps = make_steps(*[("ADD", 1)] * 8, ("REVERT", 1, PANIC_REVERT_STACK, PANIC_OVERFLOW_MEMORY))
        findings = ArithmeticDetector().detect(flat_context(steps))
        assert len(findings[0].evidence["preceding_arithmetic_ops"]) == 5

    def test_panic_suppresses_fallback(self, make_steps, flat_context):
        steps = make_steps(
            ("ADD", 1),
            ("INVALID", 1),
            ("DIV", 1),
            ("REVERT", 1, PANIC_REVERT_STACK, PANIC_OVERFLOW_MEMORY),
        )
        findings = ArithmeticDetector().detect(flat_context(steps))
        assert len(_panic_findings(findings)) == 1
        assert _heuristic_findings(findings) == []

    def test_non_arithmetic_panic_falls_back(self, make_steps, flat_context):
        steps = make_steps(
            ("DIV", 1),
            ("PUSH1", 1),
            ("REVERT", 1, PANIC_REVERT_STACK, PANIC_DIV_ZERO_MEMORY),
        )
        findings = ArithmeticDetector().detect(flat_context(steps))

        assert _panic_findings(findings) == []
        assert len(_heuristic_findings(findings)) == 1

    def test_undecodable_payload_no_primary_finding(self, make_steps, flat_context):
        steps = make_steps(
            ("PUSH1", 1),
            ("REVERT", 1, PANIC_REVERT_STACK, ERROR_STRING_MEMORY),
        )
        assert ArithmeticDetector().detect(flat_context(steps)) == []

    def test_fallback_heuristic(self, make_steps, flat_context):
        steps = make_steps(
            ("SUB", 1),
            ("PUSH1", 1),
            ("DUP1", 1),
            ("INVALID", 1),
        )
        findings = ArithmeticDetector().detect(flat_context(steps))

        assert len(findings) == 1
        finding = findings[0]
        assert finding.severity == Severity.MEDIUM
        assert finding.title == "Possible SUB Overflow/Underflow (Heuristic)"
        assert finding.evidence == {
            "arithmetic_step": 0,
            "arithmetic_op": "SUB",
            "failure_step": 3,
            "failure_op": "INVALID",
            "steps_between": 3,
        }

    def test_fallback_window(self, make_steps, flat_context):
        inside = make_steps(("MUL", 1), *[("PUSH1", 1)] * 4, ("REVERT", 1))
        outside = make_steps(("MUL", 1), *[("PUSH1", 1)] * 5, ("REVERT", 1))
        detector = ArithmeticDetector()
        assert len(detector.detect(flat_context(inside))) == 1
        assert detector.detect(flat_context(outside)) == []

    def test_fallback_one_finding_per_op(self, make_steps, flat_context):
        steps = make_steps(("ADD", 1), ("MUL", 1), ("REVERT", 1))
        findings = ArithmeticDetector().detect(flat_context(steps))
        assert [f.evidence["arithmetic_step"] for f in findings] == [0, 1]

    def test_clean_trace(self, make_steps, flat_context):
        steps = make_steps(("ADD", 1), ("PUSH1", 1), ("STOP", 1))
        assert ArithmeticDetector().detect(flat_context(steps)) == []
