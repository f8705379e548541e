"""Base detector class — all trace detectors inherit from this."""

from __future__ import annotations

import abc
from collections import defaultdict
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from tracesentry.core.config import Settings, get_settings
from tracesentry.core.ids import IdSequence
from tracesentry.core.types import Finding, Frame, Rule, Severity, StepRecord, TransactionMeta
from tracesentry.trace.frames import CallFrames
from tracesentry.trace.steps import StorageWrite, storage_writes


@dataclass
class DetectorContext:
    """Context passed to every detector during analysis.

    Holds the raw steps, the reconstructed frames (None when frame data is
    unavailable), the run-scoped finding id sequence and the settings that
    carry every lookahead/lookback window.
    """

    steps: list[StepRecord] = field(default_factory=list)
    call_frames: CallFrames | None = None
    meta: TransactionMeta = field(default_factory=TransactionMeta)
    settings: Settings = field(default_factory=get_settings)
    ids: IdSequence = field(default_factory=lambda: IdSequence("VUL"))
    metadata: dict[str, Any] = field(default_factory=dict)

    # ── Helper accessors ─────────────────────────────────────────────────

    @property
    def has_frames(self) -> bool:
        return self.call_frames is not None and self.call_frames.available

    @property
    def frames(self) -> list[Frame]:
        return self.call_frames.frames if self.call_frames else []

    def frame_of(self, step_index: int) -> int | None:
        """Frame id of a step, or None without frame data."""
        if self.call_frames is None:
            return None
        return self.call_frames.frame_of(step_index)

    def step(self, index: int) -> StepRecord | None:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    @cached_property
    def frames_by_id(self) -> dict[int, Frame]:
        return self.call_frames.by_id() if self.call_frames else {}

    @cached_property
    def frames_by_start(self) -> dict[int, Frame]:
        """Non-root frames keyed by the step of their opening call."""
        return {f.start_step: f for f in self.frames if f.parent_id is not None}

    @cached_property
    def storage_writes(self) -> list[StorageWrite]:
        return storage_writes(self.steps)

    @cached_property
    def writes_by_frame(self) -> dict[int | None, list[StorageWrite]]:
        grouped: dict[int | None, list[StorageWrite]] = defaultdict(list)
        for write in self.storage_writes:
            grouped[self.frame_of(write.step)].append(write)
        return grouped


class BaseDetector(abc.ABC):
    """Abstract base class for all trace vulnerability detectors.

    Each detector implements :meth:`detect`, which receives a
    DetectorContext and returns any findings. Detectors are pure: they
    never mutate the context's steps or frames.

    Detector metadata:
        - DETECTOR_ID: Unique identifier (e.g., "SWC-107-001")
        - NAME: Human-readable detector name
        - DESCRIPTION: What this detector looks for
        - SWC_ID: Smart Contract Weakness Classification ID
        - RULE: Rule tag stamped on every finding
        - SEVERITY: Default severity level
        - CATEGORY: High-level category for grouping
        - RECOMMENDATION: Fixed remediation text for the rule
        - TAGS: Tags added to every finding
    """

    DETECTOR_ID: str = ""
    NAME: str = ""
    DESCRIPTION: str = ""
    SWC_ID: str = ""
    RULE: Rule = Rule.ACCESS_CONTROL
    SEVERITY: Severity = Severity.MEDIUM
    CATEGORY: str = ""
    RECOMMENDATION: str = "Review this vulnerability and apply appropriate mitigations."
    TAGS: tuple[str, ...] = ()

    @abc.abstractmethod
    def detect(self, context: DetectorContext) -> list[Finding]:
        """Run the detector against the given context.

        Args:
            context: DetectorContext containing steps, frames and settings

        Returns:
            List of findings detected. Empty if no issues found.
        """
        ...

    def _make_finding(
        self,
        context: DetectorContext,
        title: str,
        description: str,
        evidence: dict[str, Any],
        severity: Severity | None = None,
        tags: list[str] | None = None,
        rule: Rule | None = None,
    ) -> Finding:
        """Helper to create a Finding with this detector's metadata."""
        return Finding(
            id=context.ids.next(),
            rule=(rule or self.RULE).value,
            severity=severity or self.SEVERITY,
            title=title,
            description=description,
            evidence=evidence,
            recommendation=self.RECOMMENDATION,
            tags=[*self.TAGS, *(tags or [])],
        )
