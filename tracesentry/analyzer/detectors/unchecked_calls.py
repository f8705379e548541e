"""Unchecked external call detector — SWC-104."""

from __future__ import annotations

from tracesentry.analyzer.base_detector import BaseDetector, DetectorContext
from tracesentry.core.types import Finding, Rule, Severity
from tracesentry.trace.evm import CALL_CHECK_OPS, EXTERNAL_CALL_OPS


class UncheckedCallDetector(BaseDetector):
    """Detect external calls whose success flag is never inspected.

    A call is considered checked when a comparison, conditional jump or
    revert shows up within the configured number of steps after it.
    """

    DETECTOR_ID = "SWC-104-001"
    NAME = "Unchecked External Call"
    DESCRIPTION = (
        "Flags CALL/STATICCALL/DELEGATECALL/CALLCODE steps not followed by any "
        "ISZERO, JUMPI or REVERT within the lookahead window."
    )
    SWC_ID = "SWC-104"
    RULE = Rule.UNCHECKED_CALL
    SEVERITY = Severity.MEDIUM
    CATEGORY = "unchecked-returns"
    RECOMMENDATION = (
        "Always check return value of external calls. Use require() or handle "
        "failure cases explicitly."
    )
    TAGS = ("unchecked-call",)

    def detect(self, context: DetectorContext) -> list[Finding]:
        findings: list[Finding] = []
        window = context.settings.unchecked_call_window
        steps = context.steps

        for i, call in enumerate(steps):
            if call.op not in EXTERNAL_CALL_OPS:
                continue
            if any(s.op in CALL_CHECK_OPS for s in steps[i + 1:i + 1 + window]):
                continue

            findings.append(self._make_finding(
                context,
                title=f"Unchecked External Call: {call.op}",
                description=(
                    f"External call ({call.op}) at step {call.index} has no apparent return "
                    f"value check in the following {window} steps. Call may fail silently."
                ),
                evidence={
                    "call_step": call.index,
                    "call_op": call.op,
                    "pc": call.pc,
                    "checked_within_steps": window,
                    "found_check": False,
                },
            ))

        return findings
