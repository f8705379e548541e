"""TraceSentry — call-frame reconstruction and heuristic vulnerability
detection for EVM transaction traces."""

__version__ = "0.1.0"
