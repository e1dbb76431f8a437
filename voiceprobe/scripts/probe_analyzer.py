from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from voiceprobe.internal_core.analysis_client import AnalysisClient
from voiceprobe.internal_core.config import load_config
from voiceprobe.internal_core.errors import DetectionError


def main() -> None:
    cfg = load_config()
    parser = argparse.ArgumentParser(description="Probe the external voice-analysis service.")
    parser.add_argument("--base-url", default=cfg.AI_SERVICE_URL, help="analysis service base URL")
    parser.add_argument("--audio", type=Path, default=None, help="optional audio file to analyze")
    parser.add_argument("--language-hint", default=None)
    parser.add_argument("--timeout", type=float, default=cfg.AI_TIMEOUT_SECONDS)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    client = AnalysisClient(
        args.base_url,
        timeout_sec=args.timeout,
        health_timeout_sec=cfg.AI_HEALTH_TIMEOUT_SECONDS,
    )
    healthy = client.check_health()
    print(f"base_url: {args.base_url}")
    print(f"healthy: {healthy}")

    if args.audio is None:
        raise SystemExit(0 if healthy else 1)
    if not args.audio.exists():
        raise SystemExit(f"audio file not found: {args.audio}")

    try:
        result = client.analyze(args.audio, args.audio.name, args.language_hint)
    except DetectionError as exc:
        raise SystemExit(f"analysis failed: {exc.message}")

    print(json.dumps(result.model_dump(mode="json"), indent=2))
    print(f"fallback: {result.fallback}")
    raise SystemExit(1 if result.fallback else 0)


if __name__ == "__main__":
    main()
