"""Trace vulnerability analysis: detectors, static-source normalization, merging."""

from tracesentry.analyzer.analyzer import TraceAnalyzer

__all__ = ["TraceAnalyzer"]
