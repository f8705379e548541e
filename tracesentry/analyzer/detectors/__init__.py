"""Trace vulnerability detectors.

  - Reentrancy (2):     SWC-107-001 (frame-aware), SWC-107-002 (legacy)
  - Unchecked call (1): SWC-104-001
  - Access control (2): SWC-112-001 (delegatecall), SWC-115-001 (tx.origin)
  - Arithmetic (1):     SWC-101-001
"""

from tracesentry.analyzer.detectors.access_control import (
    DelegatecallTargetDetector,
    TxOriginDetector,
)
from tracesentry.analyzer.detectors.arithmetic import ArithmeticDetector
from tracesentry.analyzer.detectors.reentrancy import (
    LegacyReentrancyDetector,
    ReentrancyFrameDetector,
)
from tracesentry.analyzer.detectors.unchecked_calls import UncheckedCallDetector

TRACE_DETECTORS: list[type] = [
    ReentrancyFrameDetector,
    LegacyReentrancyDetector,
    UncheckedCallDetector,
    TxOriginDetector,
    DelegatecallTargetDetector,
    ArithmeticDetector,
]

__all__ = [
    "TRACE_DETECTORS",
    "ReentrancyFrameDetector",
    "LegacyReentrancyDetector",
    "UncheckedCallDetector",
    "TxOriginDetector",
    "DelegatecallTargetDetector",
    "ArithmeticDetector",
]
