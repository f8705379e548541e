"""Access control detectors — tx.origin auth (SWC-115) and risky DELEGATECALL (SWC-112)."""

from __future__ import annotations

from tracesentry.analyzer.base_detector import BaseDetector, DetectorContext
from tracesentry.core.types import Finding, Rule, Severity
from tracesentry.trace.evm import (
    ADDRESS_PUSH_OP,
    AUTH_CONTROL_OPS,
    DELEGATECALL_OP,
    ORIGIN_OP,
    extract_address,
    stack_at,
)


class TxOriginDetector(BaseDetector):
    """Detect reads of tx.origin, escalating when they gate control flow."""

    DETECTOR_ID = "SWC-115-001"
    NAME = "Authorization through tx.origin"
    DESCRIPTION = (
        "Flags every ORIGIN opcode. Severity rises when a conditional jump or "
        "revert follows in the same frame, suggesting an authorization check."
    )
    SWC_ID = "SWC-115"
    RULE = Rule.TX_ORIGIN
    SEVERITY = Severity.LOW
    CATEGORY = "access-control"
    RECOMMENDATION = (
        "Never use tx.origin for access control. Use msg.sender instead. If tx.origin "
        "is necessary, validate against authenticated context."
    )
    TAGS = ("access-control", "tx-origin")

    def detect(self, context: DetectorContext) -> list[Finding]:
        findings: list[Finding] = []
        for step in context.steps:
            if step.op != ORIGIN_OP:
                continue

            frame_id = context.frame_of(step.index)
            controls = self._nearby_controls(context, step.index, frame_id)
            severity = Severity.MEDIUM if controls else Severity.LOW

            description = f"ORIGIN opcode detected at step {step.index} in frame {frame_id}. "
            if controls:
                ops = ", ".join(c["op"] for c in controls)
                description += f"Found nearby control flow ops ({ops}) suggesting auth check. "
            description += (
                "Using tx.origin for access control is dangerous as it can be exploited "
                "in delegatecall chains and cross-contract transactions."
            )

            findings.append(self._make_finding(
                context,
                title="Use of tx.origin in Access Control Logic",
                description=description,
                evidence={
                    "step": step.index,
                    "pc": step.pc,
                    "frame_id": frame_id,
                    "nearby_controls": controls,
                },
                severity=severity,
            ))
        return findings

    @staticmethod
    def _nearby_controls(context: DetectorContext, origin_step: int, frame_id: int | None) -> list[dict]:
        """JUMPI/REVERT steps in the same frame shortly after ``origin_step``."""
        settings = context.settings
        nearby: list[dict] = []
        end = min(origin_step + 1 + settings.origin_control_window, len(context.steps))
        for index in range(origin_step + 1, end):
            if context.frame_of(index) != frame_id:
                continue
            step = context.steps[index]
            if step.op in AUTH_CONTROL_OPS:
                nearby.append({"step": step.index, "op": step.op, "pc": step.pc})
                if len(nearby) >= settings.max_origin_controls:
                    break
        return nearby


class DelegatecallTargetDetector(BaseDetector):
    """Detect DELEGATECALLs, downgrading those with a hard-coded target."""

    DETECTOR_ID = "SWC-112-001"
    NAME = "Risky DELEGATECALL Target"
    DESCRIPTION = (
        "Flags every DELEGATECALL. A target pushed as a PUSH20 constant shortly "
        "before the call in the same frame lowers the severity."
    )
    SWC_ID = "SWC-112"
    RULE = Rule.DELEGATECALL_TARGET
    SEVERITY = Severity.HIGH
    CATEGORY = "delegatecall"
    RECOMMENDATION = (
        "Avoid delegatecall if possible. If necessary, ensure target address is a "
        "constant that is whitelisted and audited. Use access control patterns to "
        "restrict who can call delegatecall functions."
    )
    TAGS = ("delegatecall", "execution-control")

    def detect(self, context: DetectorContext) -> list[Finding]:
        findings: list[Finding] = []
        for step in context.steps:
            if step.op != DELEGATECALL_OP:
                continue

            frame_id = context.frame_of(step.index)
            target = extract_address(stack_at(step.stack, 1))
            constant = target is not None and self._pushed_as_constant(
                context, target, step.index, frame_id
            )

            description = (
                f"DELEGATECALL at step {step.index} in frame {frame_id} targets "
                f"{target or 'dynamic address'}. "
            )
            description += (
                "Target appears to be hardcoded (constant), reducing risk. "
                if constant
                else "Target address appears to be dynamic or unverified. "
            )
            description += (
                "DELEGATECALL executes target code in caller context, risking unauthorized "
                "state changes and reentrancy. Ensure target is whitelisted and audited."
            )

            findings.append(self._make_finding(
                context,
                title="Risky DELEGATECALL: Execution Control Risk",
                description=description,
                evidence={
                    "step": step.index,
                    "pc": step.pc,
                    "frame_id": frame_id,
                    "target_address": target or "unknown",
                    "target_is_constant": constant,
                },
                severity=Severity.MEDIUM if constant else Severity.HIGH,
            ))
        return findings

    @staticmethod
    def _pushed_as_constant(
        context: DetectorContext, target: str, call_step: int, frame_id: int | None
    ) -> bool:
        """True if a same-frame PUSH20 of ``target`` precedes ``call_step``.

        The pushed immediate is visible at the top of the next step's stack.
        """
        start = max(0, call_step - context.settings.delegatecall_constant_lookback)
        for index in range(start, call_step):
            step = context.steps[index]
            if step.op != ADDRESS_PUSH_OP or context.frame_of(index) != frame_id:
                continue
            following = context.step(index + 1)
            if following is None:
                continue
            if extract_address(stack_at(following.stack, 0)) == target:
                return True
        return False
