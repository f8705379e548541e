"""Normalization of external static-analysis output (Slither, Mythril).

Both tools emit JSON in their own shapes. Each entry is mapped onto the
trace finding schema by matching its free-text check/title against an
ordered keyword table, so the merger can line static results up with
the dynamic detectors' rules.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from tracesentry.core.ids import IdSequence
from tracesentry.core.types import Finding, Rule, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RulePattern:
    """Maps any of ``keywords`` (substring, case-insensitive) to ``rule``."""

    keywords: tuple[str, ...]
    rule: Rule

    def matches(self, text: str) -> bool:
        return any(k in text for k in self.keywords)


# First match wins; order matters where keywords overlap ("delegatecall" vs "call").
SLITHER_PATTERNS: tuple[RulePattern, ...] = (
    RulePattern(("reentrancy",), Rule.REENTRANCY_FRAME),
    RulePattern(("arithmetic", "overflow", "underflow"), Rule.ARITHMETIC),
    RulePattern(("delegatecall",), Rule.DELEGATECALL_TARGET),
    RulePattern(("tx-origin", "tx.origin"), Rule.TX_ORIGIN),
    RulePattern(("unchecked-call", "unchecked-send", "unchecked-lowlevel"), Rule.UNCHECKED_CALL),
    RulePattern(("access-control", "permission"), Rule.ACCESS_CONTROL),
)

MYTHRIL_PATTERNS: tuple[RulePattern, ...] = (
    RulePattern(("reentrancy",), Rule.REENTRANCY_FRAME),
    RulePattern(("arithmetic", "overflow", "underflow"), Rule.ARITHMETIC),
    RulePattern(("delegatecall",), Rule.DELEGATECALL_TARGET),
    RulePattern(("tx-origin", "tx.origin", "tx_origin"), Rule.TX_ORIGIN),
    RulePattern(("call", "return"), Rule.UNCHECKED_CALL),
    RulePattern(("access", "permission"), Rule.ACCESS_CONTROL),
)

_SEVERITY_MAP: dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "low": Severity.LOW,
    "informational": Severity.LOW,
    "optimization": Severity.LOW,
}

_DEFAULT_RECOMMENDATION = "Review and apply appropriate mitigation measures."

_RECOMMENDATIONS: dict[str, str] = {
    Rule.REENTRANCY_FRAME.value: (
        "Use checks-effects-interactions pattern. Consider reentrancy guards (OpenZeppelin)."
    ),
    Rule.ARITHMETIC.value: (
        "Upgrade to Solidity >=0.8 for built-in overflow checks. Use SafeMath for earlier versions."
    ),
    Rule.DELEGATECALL_TARGET.value: (
        "Ensure delegatecall target is whitelisted and audited. Avoid dynamic targets."
    ),
    Rule.TX_ORIGIN.value: "Never use tx.origin for access control. Use msg.sender instead.",
}


def match_rule(text: str, patterns: tuple[RulePattern, ...]) -> str:
    """Rule value of the first matching pattern, else ``text`` unchanged."""
    lowered = text.lower()
    for pattern in patterns:
        if pattern.matches(lowered):
            return pattern.rule.value
    return text


def map_severity(level: Any) -> Severity:
    """Map a tool's severity/impact label to Severity; unknown → medium."""
    if not isinstance(level, str):
        return Severity.MEDIUM
    return _SEVERITY_MAP.get(level.strip().lower(), Severity.MEDIUM)


def recommendation_for(rule: str) -> str:
    return _RECOMMENDATIONS.get(rule, _DEFAULT_RECOMMENDATION)


def _load(data: Any) -> Any:
    if isinstance(data, (str, bytes)):
        return json.loads(data)
    return data


# ── Slither ──────────────────────────────────────────────────────────────────


def _slither_entries(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        raise ValueError(f"unsupported Slither payload type {type(data).__name__}")
    results = data.get("results", [])
    if isinstance(results, dict):
        results = results.get("detectors", [])
    if not isinstance(results, list):
        raise ValueError("Slither 'results' is neither a list nor a detectors mapping")
    return results


def _slither_location(elements: Any) -> dict[str, str]:
    """Contract/function names from a Slither ``elements`` list."""
    location: dict[str, str] = {}
    if not isinstance(elements, list):
        return location
    for element in elements:
        if not isinstance(element, dict):
            continue
        kind = element.get("type")
        if kind == "function" and "function" not in location:
            location["function"] = element.get("name", "")
            parent = (element.get("type_specific_fields") or {}).get("parent") or {}
            if isinstance(parent, dict) and parent.get("type") == "contract" and "contract" not in location:
                location["contract"] = parent.get("name", "")
        elif kind == "contract" and "contract" not in location:
            location["contract"] = element.get("name", "")
    return {k: v for k, v in location.items() if v}


def normalize_slither(data: Any) -> list[Finding]:
    """Convert Slither JSON (``--json`` output or a bare results list)."""
    ids = IdSequence("STATIC-SLITHER")
    findings: list[Finding] = []

    for entry in _slither_entries(_load(data)):
        if not isinstance(entry, dict) or not entry.get("check"):
            continue
        check = str(entry["check"])
        rule = match_rule(check, SLITHER_PATTERNS)
        elements = entry.get("elements") or []
        description = (entry.get("description") or "").strip()

        findings.append(Finding(
            id=ids.next(),
            rule=rule,
            severity=map_severity(entry.get("impact")),
            title=check,
            description=description or f"Slither detected: {check}",
            evidence={
                "source": "Slither",
                "check": check,
                "impact": entry.get("impact"),
                "confidence": entry.get("confidence"),
                "elements": elements,
                **_slither_location(elements),
            },
            recommendation=recommendation_for(rule),
            tags=["static", "slither", rule],
        ))

    return findings


# ── Mythril ──────────────────────────────────────────────────────────────────


def _mythril_entries(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        raise ValueError(f"unsupported Mythril payload type {type(data).__name__}")
    issues = data.get("issues", [])
    if not isinstance(issues, list):
        raise ValueError("Mythril 'issues' is not a list")
    return issues


def normalize_mythril(data: Any) -> list[Finding]:
    """Convert Mythril ``-o json`` output or a bare issues list."""
    ids = IdSequence("STATIC-MYTHRIL")
    findings: list[Finding] = []

    for issue in _mythril_entries(_load(data)):
        if not isinstance(issue, dict) or not issue.get("title"):
            continue
        title = str(issue["title"])
        rule = match_rule(title, MYTHRIL_PATTERNS)

        evidence: dict[str, Any] = {
            "source": "Mythril",
            "title": title,
            "severity": issue.get("severity"),
            "type": issue.get("type") or "Informational",
        }
        for key in ("swc-id", "address", "contract", "function"):
            if issue.get(key) not in (None, ""):
                evidence[key.replace("-", "_")] = issue[key]

        findings.append(Finding(
            id=ids.next(),
            rule=rule,
            severity=map_severity(issue.get("severity")),
            title=title,
            description=issue.get("description") or f"Mythril detected: {title}",
            evidence=evidence,
            recommendation=recommendation_for(rule),
            tags=["static", "mythril", rule],
        ))

    return findings


NORMALIZERS: dict[str, Callable[[Any], list[Finding]]] = {
    "slither": normalize_slither,
    "mythril": normalize_mythril,
}


def normalize_source(name: str, data: Any) -> list[Finding]:
    """Normalize one named source; unparseable output contributes nothing."""
    normalizer = NORMALIZERS.get(name.lower())
    if normalizer is None:
        logger.warning("Unknown static source %r — skipping", name, extra={"source": name})
        return []
    if data is None:
        return []
    try:
        return normalizer(data)
    except (ValueError, TypeError, AttributeError) as exc:
        logger.warning("Failed to parse %s output: %s", name, exc, extra={"source": name})
        return []
