"""Reentrancy detectors — SWC-107.

An external call followed by storage writes in the same execution context
lets the callee (or anything it calls) re-enter while state is stale.
The frame-aware detector works on the reconstructed call tree; the legacy
detector is a flat-trace fallback used only when no frame data exists.
"""

from __future__ import annotations

from collections import defaultdict

from tracesentry.analyzer.base_detector import BaseDetector, DetectorContext
from tracesentry.core.types import Finding, Frame, Rule, Severity, StepRecord
from tracesentry.trace.evm import (
    DELEGATECALL_OP,
    EXTERNAL_CALL_OPS,
    STORAGE_WRITE_OP,
    extract_address,
    is_precompile,
    same_address,
    stack_at,
)
from tracesentry.trace.steps import StorageWrite

_RECOMMENDATION = (
    "Use checks-effects-interactions pattern. Emit events before external calls. "
    "Consider reentrancy guards (OpenZeppelin)."
)


def _call_target(context: DetectorContext, call: StepRecord) -> str | None:
    """Target of a call step, preferring the frame the call opened."""
    child = context.frames_by_start.get(call.index)
    if child is not None and child.to:
        return child.to
    return extract_address(stack_at(call.stack, 1))


class ReentrancyFrameDetector(BaseDetector):
    """Detect state writes after an external call within one frame."""

    DETECTOR_ID = "SWC-107-001"
    NAME = "Reentrancy: External Call Before State Update (Frame-Aware)"
    DESCRIPTION = (
        "Flags frames that write storage after making an external call while "
        "nested execution could have re-entered, and slots written repeatedly "
        "after such a call."
    )
    SWC_ID = "SWC-107"
    RULE = Rule.REENTRANCY_FRAME
    SEVERITY = Severity.HIGH
    CATEGORY = "reentrancy"
    RECOMMENDATION = _RECOMMENDATION
    TAGS = ("reentrancy", "frame-aware")

    def detect(self, context: DetectorContext) -> list[Finding]:
        if not context.has_frames:
            return []

        calls_by_frame: dict[int | None, list[StepRecord]] = defaultdict(list)
        for step in context.steps:
            if step.op in EXTERNAL_CALL_OPS:
                calls_by_frame[context.frame_of(step.index)].append(step)

        findings: list[Finding] = []
        for frame in context.frames:
            calls = calls_by_frame.get(frame.id, [])
            writes = context.writes_by_frame.get(frame.id, [])
            if not calls or not writes:
                continue

            for call in calls:
                after = [w for w in writes if w.step > call.index]
                if not after:
                    continue

                target = _call_target(context, call)
                is_delegate = call.op == DELEGATECALL_OP
                if not is_delegate and (
                    is_precompile(target) or same_address(target, frame.to)
                ):
                    continue

                if frame.children or is_delegate:
                    findings.append(self._call_before_write(context, frame, call, target, after))

                findings.extend(self._repeated_writes(context, frame, call, target, after))

        return findings

    def _call_before_write(
        self,
        context: DetectorContext,
        frame: Frame,
        call: StepRecord,
        target: str | None,
        after: list[StorageWrite],
    ) -> Finding:
        write_steps = [w.step for w in after]
        return self._make_finding(
            context,
            title="Potential Reentrancy: External Call Before State Update (Frame-Aware)",
            description=(
                f"Frame {frame.id} ({frame.kind.value}) contains external {call.op} at step "
                f"{call.index} to {target or 'unknown'}, followed by state update(s) at steps "
                f"{', '.join(str(s) for s in write_steps)}. Attacker callback in nested "
                "frame(s) may exploit state inconsistency."
            ),
            evidence={
                "frame_id": frame.id,
                "frame_kind": frame.kind.value,
                "external_call": self._call_evidence(context, call, target),
                "nested_frames": list(frame.children),
                "sstores": [_write_evidence(w) for w in after],
            },
        )

    def _repeated_writes(
        self,
        context: DetectorContext,
        frame: Frame,
        call: StepRecord,
        target: str | None,
        after: list[StorageWrite],
    ) -> list[Finding]:
        by_slot: dict[str, list[StorageWrite]] = defaultdict(list)
        for write in after:
            by_slot[write.slot].append(write)

        findings: list[Finding] = []
        for slot, slot_writes in by_slot.items():
            if len(slot_writes) < 2:
                continue
            steps = [w.step for w in slot_writes]
            findings.append(self._make_finding(
                context,
                title="Potential Reentrancy: Multiple State Updates After External Call",
                description=(
                    f"Frame {frame.id} writes to slot 0x{slot} {len(slot_writes)} times "
                    f"(steps {', '.join(str(s) for s in steps)}) after external {call.op} "
                    f"at step {call.index}. Multiple updates to the same state after an "
                    "external interaction indicate race condition risk."
                ),
                evidence={
                    "frame_id": frame.id,
                    "frame_kind": frame.kind.value,
                    "external_call": self._call_evidence(context, call, target),
                    "multiple_writes": {"slot": slot, "count": len(slot_writes), "steps": steps},
                    "sstores": [_write_evidence(w) for w in slot_writes],
                },
                severity=Severity.MEDIUM,
                tags=["state-race"],
            ))
        return findings

    @staticmethod
    def _call_evidence(context: DetectorContext, call: StepRecord, target: str | None) -> dict:
        child = context.frames_by_start.get(call.index)
        return {
            "step": call.index,
            "op": call.op,
            "pc": call.pc,
            "to": target,
            "value": child.value if child else None,
            "selector": child.selector if child else None,
        }


def _write_evidence(write: StorageWrite) -> dict:
    return {"step": write.step, "slot": write.slot, "value": write.value}


class LegacyReentrancyDetector(BaseDetector):
    """Flat-trace reentrancy check used when call frames are unavailable."""

    DETECTOR_ID = "SWC-107-002"
    NAME = "Reentrancy: External Call Before State Update (Legacy)"
    DESCRIPTION = (
        "Without frame data, flags the first external call followed within a "
        "bounded window by a storage write at the same or shallower depth."
    )
    SWC_ID = "SWC-107"
    RULE = Rule.REENTRANCY_LEGACY
    SEVERITY = Severity.HIGH
    CATEGORY = "reentrancy"
    RECOMMENDATION = _RECOMMENDATION
    TAGS = ("reentrancy", "legacy")

    def detect(self, context: DetectorContext) -> list[Finding]:
        if context.has_frames:
            return []

        window = context.settings.reentrancy_fallback_window
        steps = context.steps
        for i, call in enumerate(steps):
            if call.op not in EXTERNAL_CALL_OPS:
                continue
            for store in steps[i + 1:i + 1 + window]:
                if store.op != STORAGE_WRITE_OP or store.depth > call.depth:
                    continue
                return [self._make_finding(
                    context,
                    title="Potential Reentrancy: External Call Before State Update (legacy)",
                    description=(
                        f"External call at step {call.index} ({call.op}) followed by state "
                        f"update (SSTORE) at step {store.index}. Attacker callback may "
                        "exploit state inconsistency. (No frame data available; using "
                        "legacy detection.)"
                    ),
                    evidence={
                        "pattern": "state_update_after_external_call (legacy)",
                        "call_step": call.index,
                        "call_op": call.op,
                        "call_depth": call.depth,
                        "sstore_step": store.index,
                        "sstore_depth": store.depth,
                        "steps_between": store.index - call.index,
                    },
                )]
        return []
