"""Step ingestion — turn raw ``structLogs`` into ``StepRecord`` objects.

Node tracers (geth, Hardhat, Anvil) emit ``debug_traceTransaction`` results
whose ``stack`` lists are ordered bottom-to-top. Everything downstream of
this module assumes top-first stacks, so the order is flipped here once.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from tracesentry.core.errors import MalformedTraceError
from tracesentry.core.types import OpcodeProfile, StepRecord
from tracesentry.trace.evm import STORAGE_WRITE_OP, normalize_word, stack_at

logger = logging.getLogger(__name__)

StackOrder = Literal["bottom_first", "top_first"]


@dataclass(frozen=True)
class StorageWrite:
    """A single SSTORE observed in the trace."""

    step: int
    slot: str
    value: str


def _quantity(raw: Any) -> int:
    """Parse gas-like quantities that may arrive as int, hex or decimal text."""
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw)
    text = str(raw).strip().lower()
    try:
        return int(text, 16) if text.startswith("0x") else int(text, 10)
    except ValueError:
        return 0


def _word(raw: Any) -> str:
    """Stack/memory entries are hex text; numeric entries are re-encoded as hex."""
    if isinstance(raw, int):
        return hex(raw)
    return str(raw)


def extract_struct_logs(trace: Mapping[str, Any] | list[Any] | None) -> list[Any]:
    """Locate the structLogs array in the shapes node tooling produces."""
    if trace is None:
        return []
    if isinstance(trace, list):
        return trace
    if not isinstance(trace, Mapping):
        raise MalformedTraceError(f"Unsupported trace container: {type(trace).__name__}")
    for container in (trace.get("result"), trace.get("tx"), trace):
        if isinstance(container, Mapping) and isinstance(container.get("structLogs"), list):
            return container["structLogs"]
    return []


def step_from_struct_log(
    index: int,
    log: Mapping[str, Any],
    stack_order: StackOrder = "bottom_first",
) -> StepRecord:
    """Build a StepRecord from one structLog entry, tolerating missing keys."""
    stack = [_word(w) for w in (log.get("stack") or [])]
    if stack_order == "bottom_first":
        stack.reverse()
    memory = [_word(w) for w in (log.get("memory") or [])]
    return StepRecord(
        index=index,
        pc=_quantity(log.get("pc")),
        op=str(log.get("op") or "UNKNOWN").upper(),
        gas=_quantity(log.get("gas")),
        gas_cost=_quantity(log.get("gasCost")),
        depth=_quantity(log.get("depth")),
        stack=tuple(stack),
        memory=tuple(memory),
    )


def parse_struct_logs(
    struct_logs: Iterable[Any] | None,
    stack_order: StackOrder = "bottom_first",
) -> list[StepRecord]:
    """Convert a structLogs array into StepRecords indexed from 0."""
    if struct_logs is None:
        return []
    if isinstance(struct_logs, (str, bytes)) or not isinstance(struct_logs, Iterable):
        raise MalformedTraceError("structLogs must be a sequence of step objects")

    steps: list[StepRecord] = []
    for index, log in enumerate(struct_logs):
        if isinstance(log, StepRecord):
            steps.append(log if log.index == index else log.model_copy(update={"index": index}))
        elif isinstance(log, Mapping):
            steps.append(step_from_struct_log(index, log, stack_order))
        else:
            raise MalformedTraceError(
                f"structLogs[{index}] is {type(log).__name__}, expected an object"
            )
    logger.debug("Parsed %d trace steps", len(steps))
    return steps


def storage_writes(steps: list[StepRecord]) -> list[StorageWrite]:
    """Collect every SSTORE with its slot and value (64-hex, no prefix).

    Steps whose stack is too short to hold both operands are skipped.
    """
    writes: list[StorageWrite] = []
    for step in steps:
        if step.op != STORAGE_WRITE_OP:
            continue
        slot = stack_at(step.stack, 0)
        value = stack_at(step.stack, 1)
        if slot is None or value is None:
            continue
        writes.append(StorageWrite(
            step=step.index,
            slot=normalize_word(slot),
            value=normalize_word(value),
        ))
    return writes


def opcode_profile(steps: list[StepRecord], limit: int = 10) -> list[OpcodeProfile]:
    """Rank opcodes by summed gas cost (ties broken by execution count)."""
    counts: dict[str, int] = defaultdict(int)
    gas: dict[str, int] = defaultdict(int)
    for step in steps:
        counts[step.op] += 1
        gas[step.op] += step.gas_cost

    ranked = sorted(counts, key=lambda op: (-gas[op], -counts[op], op))
    return [
        OpcodeProfile(op=op, count=counts[op], gas_cost_sum=gas[op])
        for op in ranked[:limit]
    ]
