"""Tests for the access-control detectors (SWC-115-001, SWC-112-001)."""

from __future__ import annotations

from conftest import ATTACKER, LIBRARY, addr_word, call_stack, delegatecall_stack
from tracesentry.analyzer.detectors.access_control import DelegatecallTargetDetector, TxOriginDetector
from tracesentry.core.types import Severity


# ── tx.origin ────────────────────────────────────────────────────────────────


class TestTxOriginDetector:

    def test_origin_without_control_is_low(self, make_steps, flat_context):
        steps = make_steps(("ORIGIN", 1), ("POP", 1), ("STOP", 1))
        findings = TxOriginDetector().detect(flat_context(steps))

        assert len(findings) == 1
        finding = findings[0]
        assert finding.rule == "TxOriginAuthHeuristic"
        assert finding.severity == Severity.LOW
        assert finding.evidence["nearby_controls"] == []
        assert "step 0" in finding.description

    def test_origin_gating_branch_is_medium(self, make_steps, framed_context):
        steps = make_steps(("ORIGIN", 1), ("CALLER", 1), ("EQ", 1), ("JUMPI", 1), ("STOP", 1))
        findings = TxOriginDetector().detect(framed_context(steps))

        assert len(findings) == 1
        finding = findings[0]
        assert finding.severity == Severity.MEDIUM
        assert finding.evidence["frame_id"] == 0
        assert finding.evidence["nearby_controls"] == [{"step": 3, "op": "JUMPI", "pc": 3}]
        assert "JUMPI" in finding.description

    def test_controls_in_other_frames_ignored(self, make_steps, framed_context):
        steps = make_steps(
            ("ORIGIN", 1),
            ("CALL", 1, call_stack(ATTACKER)),
            ("JUMPI", 2),
            ("REVERT", 2),
            ("POP", 1),
        )
        findings = TxOriginDetector().detect(framed_context(steps))
        assert findings[0].severity == Severity.LOW
        assert findings[0].evidence["nearby_controls"] == []

    def test_controls_capped(self, make_steps, flat_context):
        steps = make_steps(("ORIGIN", 1), *[("JUMPI", 1)] * 6)
        findings = TxOriginDetector().detect(flat_context(steps))
        assert [c["step"] for c in findings[0].evidence["nearby_controls"]] == [1, 2, 3]

    def test_control_at_window_edge_counts(self, make_steps, flat_context):
        steps = make_steps(("ORIGIN", 1), ("PUSH1", 1), ("PUSH1", 1), ("JUMPI", 1))
        findings = TxOriginDetector().detect(flat_context(steps, origin_control_window=3))
        assert findings[0].severity == Severity.MEDIUM
        assert [c["step"] for c in findings[0].evidence["nearby_controls"]] == [3]

    def test_window_excludes_far_controls(self, make_steps, flat_context):
        steps = make_steps(("ORIGIN", 1), ("PUSH1", 1), ("PUSH1", 1), ("PUSH1", 1), ("JUMPI", 1))
        findings = TxOriginDetector().detect(flat_context(steps, origin_control_window=3))
        assert findings[0].severity == Severity.LOW

    def test_every_origin_reported(self, make_steps, flat_context):
        steps = make_steps(("ORIGIN", 1), ("POP", 1), ("ORIGIN", 1), ("POP", 1))
        findings = TxOriginDetector().detect(flat_context(steps))
        assert [f.evidence["step"] for f in findings] == [0, 2]


# ── DELEGATECALL target ──────────────────────────────────────────────────────


class TestDelegatecallTargetDetector:

    def test_dynamic_target_is_high(self, make_steps, framed_context):
        steps = make_steps(
            ("SLOAD", 1),
            ("DELEGATECALL", 1, delegatecall_stack(LIBRARY)),
            ("STOP", 2),
            ("STOP", 1),
        )
        findings = DelegatecallTargetDetector().detect(framed_context(steps))

        assert len(findings) == 1
        finding = findings[0]
        assert finding.rule == "DelegatecallTargetHeuristic"
        assert finding.severity == Severity.HIGH
        assert finding.evidence["target_address"] == LIBRARY
        assert finding.evidence["target_is_constant"] is False
        assert finding.evidence["frame_id"] == 0
        assert LIBRARY in finding.description

    def test_constant_target_is_medium(self, make_steps, framed_context):
        steps = make_steps(
            ("PUSH20", 1),
            ("PUSH1", 1, (addr_word(LIBRARY),)),
            ("DELEGATECALL", 1, delegatecall_stack(LIBRARY)),
            ("STOP", 2),
            ("STOP", 1),
        )
        findings = DelegatecallTargetDetector().detect(framed_context(steps))

        assert findings[0].severity == Severity.MEDIUM
        assert findings[0].evidence["target_is_constant"] is True

    def test_pushed_constant_must_match_target(self, make_steps, flat_context):
        steps = make_steps(
            ("PUSH20", 1),
            ("PUSH1", 1, (addr_word(ATTACKER),)),
            ("DELEGATECALL", 1, delegatecall_stack(LIBRARY)),
        )
        findings = DelegatecallTargetDetector().detect(flat_context(steps))
        assert findings[0].severity == Severity.HIGH

    def test_push_outside_lookback_ignored(self, make_steps, flat_context):
        steps = make_steps(
            ("PUSH20", 1),
            ("PUSH1", 1, (addr_word(LIBRARY),)),
            ("PUSH1", 1),
            ("DELEGATECALL", 1, delegatecall_stack(LIBRARY)),
        )
        findings = DelegatecallTargetDetector().detect(
            flat_context(steps, delegatecall_constant_lookback=2)
        )
        assert findings[0].severity == Severity.HIGH

    def test_push_in_other_frame_ignored(self, make_steps, framed_context):
        steps = make_steps(
            ("CALL", 1, call_stack(ATTACKER)),
            ("PUSH20", 2),
            ("POP", 2, (addr_word(LIBRARY),)),
            ("STOP", 2),
            ("DELEGATECALL", 1, delegatecall_stack(LIBRARY)),
            ("STOP", 1),
        )
        findings = DelegatecallTargetDetector().detect(framed_context(steps))
        assert findings[0].severity == Severity.HIGH

    def test_short_stack_reports_unknown_target(self, make_steps, flat_context):
        steps = make_steps(("DELEGATECALL", 1, ("0x5208",)))
        findings = DelegatecallTargetDetector().detect(flat_context(steps))

        assert findings[0].severity == Severity.HIGH
        assert findings[0].evidence["target_address"] == "unknown"
        assert "dynamic address" in findings[0].description
