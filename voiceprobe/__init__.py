"""
voiceprobe detection service package.

Design intent:
- Keep the detection core (ingestion, analysis, identity, records) framework-free.
- Let the HTTP layer stay a thin adapter over `internal_core`.
"""
