"""Inference gateway layer.

Everything between a validated request and the metered external provider:
  - Model Registry (model id → backend version, tier gate, credit multiplier)
  - Admission Controller (guest limits and bot heuristics over Redis)
  - Resilient invocation (bounded retry with exponential backoff)
  - Provider client (Replicate predictions over HTTP)
"""
