"""Trace ingestion and call-frame reconstruction.

  - evm:    opcode classes and word/memory helpers
  - steps:  structLogs → StepRecord conversion, storage writes, gas profile
  - frames: FrameBuilder and frame validation
"""
