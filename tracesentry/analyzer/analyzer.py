"""Trace analyzer — orchestrates frame reconstruction, detectors and merging.

Pipeline:
  1. Step ingestion (raw structLogs or StepRecords)
  2. Call-frame reconstruction + advisory validation
  3. Registered detectors, each isolated from the others' failures
  4. Static-source normalization (Slither, Mythril)
  5. Merge: fold static findings into matching detector findings
  6. Summary + opcode gas profile
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Mapping
from typing import Any, Iterable, Type

from tracesentry.analyzer.base_detector import BaseDetector, DetectorContext
from tracesentry.analyzer.merger import FindingsMerger
from tracesentry.analyzer.registry import registry
from tracesentry.analyzer.static_sources import normalize_source
from tracesentry.core.config import Settings, get_settings
from tracesentry.core.ids import IdSequence
from tracesentry.core.logging import run_logging
from tracesentry.core.types import (
    Finding,
    FindingsSummary,
    StepRecord,
    TraceReport,
    TransactionMeta,
)
from tracesentry.trace.frames import CallFrames, build_call_frames, validate_frames
from tracesentry.trace.steps import StackOrder, extract_struct_logs, opcode_profile, parse_struct_logs

logger = logging.getLogger(__name__)


class TraceAnalyzer:
    """Analyze one transaction trace end to end.

    Detectors default to every class the registry discovers; pass
    ``detectors`` to run a fixed subset instead.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        detectors: Iterable[Type[BaseDetector]] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        if detectors is None:
            registry.discover()
            self._detectors = registry.get_all()
        else:
            self._detectors = list(detectors)

    @property
    def detectors(self) -> list[Type[BaseDetector]]:
        return list(self._detectors)

    def analyze(
        self,
        trace: Any,
        meta: TransactionMeta | Mapping[str, Any] | None = None,
        static_sources: Mapping[str, Any] | None = None,
        use_frames: bool = True,
        run_id: str | None = None,
        stack_order: StackOrder = "bottom_first",
    ) -> TraceReport:
        """Run the full pipeline against one trace.

        Args:
            trace: StepRecords, a structLogs list, or a debug_traceTransaction
                response containing one
            meta: Outer call metadata (from, to, input, value)
            static_sources: Tool name → raw output, merged in the given order
            use_frames: False forces the flat-trace fallback detectors
            run_id: Correlation id for log records (generated if omitted)
            stack_order: Stack ordering of raw structLogs

        Returns:
            TraceReport with frames, merged findings and summary
        """
        run_id = run_id or uuid.uuid4().hex
        with run_logging(run_id):
            return self._run(trace, meta, static_sources, use_frames, run_id, stack_order)

    def _run(
        self,
        trace: Any,
        meta: TransactionMeta | Mapping[str, Any] | None,
        static_sources: Mapping[str, Any] | None,
        use_frames: bool,
        run_id: str,
        stack_order: StackOrder,
    ) -> TraceReport:
        start_time = time.time()

        steps = self._coerce_steps(trace, stack_order)
        meta = self._coerce_meta(meta)

        # ── Frames ───────────────────────────────────────────────────────
        call_frames: CallFrames | None = None
        frame_issues = []
        if use_frames:
            call_frames = build_call_frames(steps, meta)
            frame_issues = validate_frames(call_frames.frames, len(steps) - 1 if steps else None)
            for issue in frame_issues:
                logger.warning(
                    "Frame %d failed validation: %s", issue.frame_id, issue.message,
                    extra={"frame_id": issue.frame_id},
                )

        context = DetectorContext(
            steps=steps,
            call_frames=call_frames,
            meta=meta,
            settings=self.settings,
            ids=IdSequence("VUL"),
            metadata={"run_id": run_id},
        )

        # ── Detectors ────────────────────────────────────────────────────
        detector_findings, failed = self._run_detectors(context)

        # ── Static sources + merge ───────────────────────────────────────
        merger = FindingsMerger()
        merger.add_detector_findings(detector_findings)
        sources: dict[str, int] = {"detectors": len(detector_findings)}
        for name, payload in (static_sources or {}).items():
            normalized = normalize_source(name, payload)
            sources[name] = len(normalized)
            logger.debug(
                "Normalized %d %s findings", len(normalized), name,
                extra={"source": name, "findings_count": len(normalized)},
            )
            merger.add_static_findings(normalized)

        findings = merger.findings
        duration_ms = round((time.time() - start_time) * 1000, 3)
        logger.info(
            "Trace analysis complete: %d steps, %d frames, %d findings",
            len(steps), len(call_frames.frames) if call_frames else 0, len(findings),
            extra={"findings_count": len(findings), "duration_ms": duration_ms},
        )

        return TraceReport(
            frames=call_frames.frames if call_frames else [],
            step_to_frame=call_frames.step_to_frame if call_frames else [],
            frame_issues=frame_issues,
            findings=findings,
            summary=FindingsSummary.calculate(findings),
            top_ops=opcode_profile(steps, self.settings.top_ops_limit),
            sources=sources,
            metadata={
                "run_id": run_id,
                "steps_count": len(steps),
                "frames_available": context.has_frames,
                "detectors_run": len(self._detectors),
                "failed_detectors": failed,
                "merged_count": merger.merged_count,
                "total_findings_after_merge": len(findings),
                "duration_ms": duration_ms,
            },
        )

    # ── Stages ───────────────────────────────────────────────────────────

    def _run_detectors(self, context: DetectorContext) -> tuple[list[Finding], list[str]]:
        findings: list[Finding] = []
        failed: list[str] = []

        for detector_cls in self._detectors:
            extra = {"detector": detector_cls.DETECTOR_ID}
            try:
                detector = detector_cls()
                found = detector.detect(context)
            except Exception as e:
                logger.warning(
                    "Detector %s failed: %s", detector_cls.DETECTOR_ID, e,
                    exc_info=True, extra=extra,
                )
                failed.append(detector_cls.DETECTOR_ID)
                continue
            if found:
                logger.debug(
                    "Detector %s produced %d findings", detector_cls.DETECTOR_ID, len(found),
                    extra={**extra, "findings_count": len(found)},
                )
            findings.extend(found)

        return findings, failed

    @staticmethod
    def _coerce_steps(trace: Any, stack_order: StackOrder) -> list[StepRecord]:
        if isinstance(trace, Mapping):
            trace = extract_struct_logs(trace)
        return parse_struct_logs(trace, stack_order)

    @staticmethod
    def _coerce_meta(meta: TransactionMeta | Mapping[str, Any] | None) -> TransactionMeta:
        if meta is None:
            return TransactionMeta()
        if isinstance(meta, TransactionMeta):
            return meta
        data = dict(meta)
        if "from" in data and "from_address" not in data:
            data["from_address"] = data.pop("from")
        return TransactionMeta.model_validate(data)
