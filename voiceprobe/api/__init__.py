"""
HTTP boundary for the voiceprobe detection service.

Design intent:
- Expose thin, typed endpoints over the detection orchestrator.
- Resolve identity from headers and map domain errors to status codes.
"""
