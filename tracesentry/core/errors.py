"""Exceptions raised by the trace engine."""

from __future__ import annotations


class TraceError(Exception):
    """Base class for trace engine errors."""


class MalformedTraceError(TraceError):
    """The supplied trace is not a sequence of step records at all.

    Partial or malformed *fields* inside individual steps never raise;
    detectors skip the affected sub-check instead.
    """
