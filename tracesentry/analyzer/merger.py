"""Findings merger — combines detector findings with normalized static findings.

Findings are keyed by ``(rule, context)``. Detector findings are inserted
first and kept as-is; static findings that collide with an already
registered key are folded into it instead of being reported twice.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from tracesentry.core.types import Finding, Severity

logger = logging.getLogger(__name__)

MERGED_MARKER = "[MERGED]"


def _context_source(evidence: dict[str, Any] | list[Any]) -> dict[str, Any]:
    if isinstance(evidence, dict):
        return evidence
    for item in evidence:
        if isinstance(item, dict):
            return item
    return {}


def extract_context(finding: Finding) -> str:
    """Best-effort location of a finding: frame, else contract/function, else rule."""
    evidence = _context_source(finding.evidence)

    frame_id = evidence.get("frame_id")
    if frame_id is not None:
        return f"frame:{frame_id}"

    context = ""
    if evidence.get("contract"):
        context += f"contract:{evidence['contract']}"
    if evidence.get("function"):
        context += f"function:{evidence['function']}"
    return context or finding.rule


def merge_key(finding: Finding) -> tuple[str, str]:
    return finding.rule, extract_context(finding)


class FindingsMerger:
    """Accumulates findings in insertion order, merging static duplicates.

    Usage::

        merger = FindingsMerger()
        merger.add_detector_findings(detector_findings)
        merger.add_static_findings(slither_findings)
        merger.add_static_findings(mythril_findings)
        report = merger.findings
    """

    def __init__(self) -> None:
        self._findings: list[Finding] = []
        self._by_key: dict[tuple[str, str], Finding] = {}
        self.merged_count = 0

    @property
    def findings(self) -> list[Finding]:
        return list(self._findings)

    def add_detector_findings(self, findings: Iterable[Finding]) -> None:
        """Append detector findings; the first one per key becomes the merge target."""
        for finding in findings:
            self._by_key.setdefault(merge_key(finding), finding)
            self._findings.append(finding)

    def add_static_findings(self, findings: Iterable[Finding]) -> None:
        """Fold each static finding into its key's existing finding, or insert it."""
        for finding in findings:
            key = merge_key(finding)
            existing = self._by_key.get(key)
            if existing is None:
                self._by_key[key] = finding
                self._findings.append(finding)
                continue
            merge_into(existing, finding)
            self.merged_count += 1
            logger.debug("Merged %s into %s under key %s", finding.id, existing.id, key)


def merge_into(existing: Finding, incoming: Finding) -> Finding:
    """Fold ``incoming`` into ``existing`` in place and return it."""
    existing.severity = Severity.highest(existing.severity, incoming.severity)

    evidence = existing.evidence if isinstance(existing.evidence, list) else [existing.evidence]
    if isinstance(incoming.evidence, list):
        evidence.extend(incoming.evidence)
    else:
        evidence.append(incoming.evidence)
    existing.evidence = evidence

    existing.tags = list(dict.fromkeys([*existing.tags, *incoming.tags]))

    if MERGED_MARKER not in existing.title:
        existing.title = f"{MERGED_MARKER} {existing.title}"
    return existing


def merge_findings(
    detector_findings: Iterable[Finding],
    *static_sources: Iterable[Finding],
) -> list[Finding]:
    """Merge detector findings with any number of normalized static sources."""
    merger = FindingsMerger()
    merger.add_detector_findings(detector_findings)
    for source in static_sources:
        merger.add_static_findings(source)
    return merger.findings
