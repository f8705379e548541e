"""Call-frame reconstruction from a flat instruction trace.

The builder walks the steps once, keeping an explicit stack of open frames
keyed by the trace depth at which each frame's opening call executed:

  * a call-class opcode pushes a child frame;
  * a step that runs at or above an open frame's entry depth closes it
    (and every frame above it), inferring the outcome if still unknown;
  * a halt opcode sets the status of the currently active frame directly,
    because depth alone cannot tell "caller resumed" from "callee halted".

Anything still open at the end of the stream is closed at the last step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tracesentry.core.types import (
    Frame,
    FrameIssue,
    FrameKind,
    FrameStatus,
    StepRecord,
    TransactionMeta,
)
from tracesentry.trace.evm import (
    ABNORMAL_HALT_OPS,
    CALL_CLASS_OPS,
    NORMAL_HALT_OPS,
    extract_address,
    flatten_memory,
    selector_of,
    stack_at,
    to_hex,
    word_to_int,
)

logger = logging.getLogger(__name__)

# Calldata windows larger than this are not materialized
MAX_INPUT_BYTES = 1 << 20

# Top-first stack positions of each call-class operand; None when the
# opcode has no such operand.
_CALL_OPERANDS: dict[str, tuple[int | None, int | None, int, int, int]] = {
    # op: (to, value, in_offset, in_size, min_stack)
    "CALL": (1, 2, 3, 4, 7),
    "CALLCODE": (1, 2, 3, 4, 7),
    "DELEGATECALL": (1, None, 2, 3, 6),
    "STATICCALL": (1, None, 2, 3, 6),
    "CREATE": (None, 0, 1, 2, 3),
    "CREATE2": (None, 0, 1, 2, 4),
}


@dataclass
class CallFrames:
    """Frame tree plus the parallel step → frame id index."""

    frames: list[Frame] = field(default_factory=list)
    step_to_frame: list[int] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return bool(self.frames) and bool(self.step_to_frame)

    @property
    def root(self) -> Frame | None:
        return self.frames[0] if self.frames else None

    def by_id(self) -> dict[int, Frame]:
        return {f.id: f for f in self.frames}

    def frame_of(self, step_index: int) -> int | None:
        if 0 <= step_index < len(self.step_to_frame):
            return self.step_to_frame[step_index]
        return None


def read_call_input(memory: tuple[str, ...], offset: int | None, size: int | None) -> str | None:
    """Read a calldata/initcode window from memory as ``0x`` hex."""
    if offset is None or size is None:
        return None
    if size == 0:
        return "0x"
    if size > MAX_INPUT_BYTES:
        return None
    flat = flatten_memory(memory)
    data = flat[offset:offset + size] if offset < len(flat) else b""
    data += bytes(size - len(data))
    return "0x" + data.hex()


class FrameBuilder:
    """Rebuild the nested call tree of one transaction from its steps."""

    def __init__(self, steps: list[StepRecord], meta: TransactionMeta | None = None) -> None:
        self.steps = steps
        self.meta = meta or TransactionMeta()
        self._frames: list[Frame] = []
        self._open: list[Frame] = []
        self._step_to_frame: list[int] = []

    def build(self) -> CallFrames:
        if not self.steps:
            return CallFrames()

        last_index = len(self.steps) - 1
        root = self._open_root(last_index)

        for i, step in enumerate(self.steps):
            if i > 0:
                self._close_exited(step, i)

            current = self._open[-1]
            self._step_to_frame.append(current.id)
            if step.gas_cost > 0:
                current.gas_spent += step.gas_cost

            if step.op in CALL_CLASS_OPS:
                self._open_child(step, i, current)
            elif step.op in ABNORMAL_HALT_OPS:
                current.status = FrameStatus.FAILED
                current.error_kind = step.op
            elif step.op in NORMAL_HALT_OPS and current.status == FrameStatus.UNKNOWN:
                current.status = FrameStatus.SUCCESS

        while len(self._open) > 1:
            self._close(self._open.pop(), last_index)

        root.end_step = last_index
        if root.status == FrameStatus.UNKNOWN:
            root.status = FrameStatus.SUCCESS

        logger.debug(
            "Reconstructed %d frames over %d steps", len(self._frames), len(self.steps)
        )
        return CallFrames(frames=self._frames, step_to_frame=self._step_to_frame)

    # ── Frame lifecycle ──────────────────────────────────────────────────

    def _open_root(self, last_index: int) -> Frame:
        meta = self.meta
        root = Frame(
            id=0,
            parent_id=None,
            depth=0,
            entry_depth=0,
            kind=FrameKind.ROOT,
            from_address=meta.from_address.lower() if meta.from_address else None,
            to=meta.to.lower() if meta.to else None,
            value=to_hex(meta.value) or "0x0",
            input=meta.input,
            selector=selector_of(meta.input),
            start_step=0,
            end_step=last_index,
        )
        self._frames.append(root)
        self._open.append(root)
        return root

    def _open_child(self, step: StepRecord, index: int, parent: Frame) -> Frame:
        to, value, calldata = self._call_arguments(step)
        kind = FrameKind(step.op)
        child = Frame(
            id=len(self._frames),
            parent_id=parent.id,
            depth=parent.depth + 1,
            entry_depth=step.depth,
            kind=kind,
            from_address=parent.to,
            to=to,
            value=value,
            input=calldata,
            selector=None if kind in (FrameKind.CREATE, FrameKind.CREATE2) else selector_of(calldata),
            start_step=index,
            end_step=index,
        )
        self._frames.append(child)
        parent.children.append(child.id)
        self._open.append(child)
        return child

    def _close_exited(self, step: StepRecord, index: int) -> None:
        """Pop every frame whose body no longer encloses ``step``.

        A frame opened at trace depth ``d`` runs its body at ``d + 1``, so
        any step at depth ``<= d`` lies outside it. This also closes calls
        that never entered a deeper context (precompiles, code-less
        accounts) at their own call step.
        """
        while len(self._open) > 1 and self._open[-1].entry_depth >= step.depth:
            frame = self._open.pop()
            if frame.status == FrameStatus.UNKNOWN:
                if step.op in ABNORMAL_HALT_OPS:
                    frame.status = FrameStatus.FAILED
                    frame.error_kind = step.op
                else:
                    frame.status = FrameStatus.SUCCESS
            self._close(frame, index - 1)

    @staticmethod
    def _close(frame: Frame, end_step: int) -> None:
        frame.end_step = max(frame.start_step, end_step)
        if frame.status == FrameStatus.UNKNOWN:
            frame.status = FrameStatus.SUCCESS

    # ── Operand decoding ─────────────────────────────────────────────────

    @staticmethod
    def _call_arguments(step: StepRecord) -> tuple[str | None, str | None, str | None]:
        """Decode (to, value, input) for a call-class step.

        Stacks shorter than the opcode's arity yield ``(None, None, None)``
        for calls; DELEGATECALL/STATICCALL carry an implicit zero value.
        """
        to_pos, value_pos, off_pos, size_pos, min_stack = _CALL_OPERANDS[step.op]
        stack = step.stack
        if len(stack) < min_stack:
            return None, None, None

        to = extract_address(stack_at(stack, to_pos)) if to_pos is not None else None
        if value_pos is None:
            value = "0x0"
        else:
            raw_value = word_to_int(stack_at(stack, value_pos))
            value = hex(raw_value) if raw_value is not None else None

        calldata = read_call_input(
            step.memory,
            word_to_int(stack_at(stack, off_pos)),
            word_to_int(stack_at(stack, size_pos)),
        )
        return to, value, calldata


def build_call_frames(
    steps: list[StepRecord], meta: TransactionMeta | None = None
) -> CallFrames:
    """Convenience wrapper around :class:`FrameBuilder`."""
    return FrameBuilder(steps, meta).build()


def validate_frames(frames: list[Frame], last_step: int | None = None) -> list[FrameIssue]:
    """Check structural integrity of a frame list.

    Returns advisory issues; never raises.
    """
    issues: list[FrameIssue] = []
    by_id = {f.id: f for f in frames}

    for frame in frames:
        if frame.parent_id is not None and frame.parent_id not in by_id:
            issues.append(FrameIssue(
                frame_id=frame.id, message=f"invalid parentId {frame.parent_id}",
            ))

        for child_id in frame.children:
            if child_id not in by_id:
                issues.append(FrameIssue(
                    frame_id=frame.id, message=f"invalid child {child_id}",
                ))

        parent = by_id.get(frame.parent_id) if frame.parent_id is not None else None
        if parent is not None and frame.depth != parent.depth + 1:
            issues.append(FrameIssue(
                frame_id=frame.id,
                message=f"depth {frame.depth} != parent depth {parent.depth} + 1",
            ))

        if frame.end_step < frame.start_step:
            issues.append(FrameIssue(frame_id=frame.id, message="endStep < startStep"))

        if frame.start_step < 0 or (last_step is not None and frame.end_step > last_step):
            issues.append(FrameIssue(
                frame_id=frame.id,
                message=f"step range [{frame.start_step}, {frame.end_step}] outside trace",
            ))

    return issues
