"""Shared enums and types used across the engine."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Enums ────────────────────────────────────────────────────────────────────


class Severity(str, enum.Enum):
    """Vulnerability severity level."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Position in the total order critical > high > medium > low."""
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, a: "Severity", b: "Severity") -> "Severity":
        return a if a.rank >= b.rank else b


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class FrameKind(str, enum.Enum):
    """Opcode that opened a frame, or ROOT for the transaction itself."""

    ROOT = "ROOT"
    CALL = "CALL"
    CALLCODE = "CALLCODE"
    DELEGATECALL = "DELEGATECALL"
    STATICCALL = "STATICCALL"
    CREATE = "CREATE"
    CREATE2 = "CREATE2"


class FrameStatus(str, enum.Enum):
    """Outcome of an execution context."""

    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"


class Rule(str, enum.Enum):
    """Rule tags shared by trace detectors and normalized static findings."""

    REENTRANCY_FRAME = "ReentrancyHeuristicFrame"
    REENTRANCY_LEGACY = "reentrancy"
    UNCHECKED_CALL = "UncheckedExternalCall"
    TX_ORIGIN = "TxOriginAuthHeuristic"
    DELEGATECALL_TARGET = "DelegatecallTargetHeuristic"
    ARITHMETIC = "ArithmeticOverflowUnderflow"
    ACCESS_CONTROL = "AccessControlIssue"


# ── Trace Schemas ────────────────────────────────────────────────────────────


class StepRecord(BaseModel):
    """One captured machine-state snapshot for a single executed instruction.

    ``stack`` is ordered top-first: ``stack[0]`` is the word the opcode
    pops first. ``memory`` is the list of 32-byte words as hex strings.
    """

    model_config = ConfigDict(frozen=True)

    index: int
    pc: int = 0
    op: str = "UNKNOWN"
    gas: int = 0
    gas_cost: int = 0
    depth: int = 0
    stack: tuple[str, ...] = ()
    memory: tuple[str, ...] = ()


class TransactionMeta(BaseModel):
    """Outer call metadata for the traced transaction."""

    from_address: str | None = None
    to: str | None = None
    input: str | None = None
    value: str | int | None = None


class Frame(BaseModel):
    """Reconstructed scope of one execution context."""

    id: int
    parent_id: int | None = None
    depth: int = 0
    entry_depth: int = 0
    kind: FrameKind = FrameKind.ROOT
    from_address: str | None = None
    to: str | None = None
    value: str | None = None
    input: str | None = None
    selector: str | None = None
    gas_spent: int = 0
    start_step: int = 0
    end_step: int = 0
    status: FrameStatus = FrameStatus.UNKNOWN
    error_kind: str | None = None
    children: list[int] = Field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class FrameIssue(BaseModel):
    """Advisory defect reported by frame validation."""

    frame_id: int
    message: str


# ── Finding Schemas ──────────────────────────────────────────────────────────


class Finding(BaseModel):
    """A suspected defect raised by a detector or an external analyzer."""

    id: str
    rule: str
    severity: Severity
    title: str
    description: str
    evidence: dict[str, Any] | list[Any] = Field(default_factory=dict)
    recommendation: str = ""
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: list[str]) -> list[str]:
        return list(dict.fromkeys(tags))


class FindingsSummary(BaseModel):
    """Finding counts by severity."""

    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    @staticmethod
    def calculate(findings: list[Finding]) -> "FindingsSummary":
        """Count findings per severity level."""
        counts = {sev.value: 0 for sev in Severity}
        for finding in findings:
            counts[finding.severity.value] += 1
        return FindingsSummary(total=len(findings), **counts)


class OpcodeProfile(BaseModel):
    """Execution count and summed gas cost of one opcode."""

    op: str
    count: int = 0
    gas_cost_sum: int = 0


class TraceReport(BaseModel):
    """Result of analysing one transaction trace."""

    frames: list[Frame] = Field(default_factory=list)
    step_to_frame: list[int] = Field(default_factory=list)
    frame_issues: list[FrameIssue] = Field(default_factory=list)
    findings: list[Finding] = Field(default_factory=list)
    summary: FindingsSummary = Field(default_factory=FindingsSummary)
    top_ops: list[OpcodeProfile] = Field(default_factory=list)
    sources: dict[str, int] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
