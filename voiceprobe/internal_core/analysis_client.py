from __future__ import annotations

"""
Client for the external voice-analysis service.

Design intent:
- One analyze attempt per call, bounded by a long timeout; health probes use a short one.
- Any service-side failure is replaced by a deterministic mock result so callers
  can rely on analysis always producing a classification.
- Replies are validated into `AnalysisResult`; a reply that parses as JSON but
  breaks the schema is an internal fault, not a degraded service.
"""

import base64
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from .config import ServiceConfig
from .contracts import AnalysisResult, Explanation
from .errors import ExternalServiceDegraded, InternalError
from .http_session import SessionProvider

logger = logging.getLogger(__name__)

MOCK_CLASSIFICATION = "HUMAN"
MOCK_CONFIDENCE = 0.85
MOCK_LANGUAGE = "english"


def build_mock_result() -> AnalysisResult:
    return AnalysisResult(
        classification=MOCK_CLASSIFICATION,
        confidence=MOCK_CONFIDENCE,
        language=MOCK_LANGUAGE,
        explanation=Explanation(
            reasoning=[
                "Natural pitch variation detected",
                "Human breathing patterns identified",
                "No synthetic artifacts found",
            ],
            model_scores={"wav2vec2": 0.82, "acoustic": 0.88, "spectral": 0.85},
            pitch_anomaly=False,
            spectral_artifacts=False,
            ensemble_agreement="High",
        ),
        fallback=True,
    )


class AnalysisClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = 300.0,
        health_timeout_sec: float = 5.0,
        mock_mode: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = str(base_url or "").rstrip("/")
        self._timeout_sec = float(timeout_sec)
        self._health_timeout_sec = float(health_timeout_sec)
        self._mock_mode = bool(mock_mode)
        self._sessions = SessionProvider(session)

    @classmethod
    def from_config(cls, cfg: ServiceConfig, session: Optional[requests.Session] = None) -> "AnalysisClient":
        return cls(
            cfg.AI_SERVICE_URL,
            timeout_sec=cfg.AI_TIMEOUT_SECONDS,
            health_timeout_sec=cfg.AI_HEALTH_TIMEOUT_SECONDS,
            mock_mode=cfg.AI_SERVICE_MOCK,
            session=session,
        )

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def check_health(self) -> bool:
        try:
            response = self._sessions.current().get(f"{self._base_url}/health", timeout=self._health_timeout_sec)
            response.raise_for_status()
            payload = response.json()
        except Exception as exc:
            logger.warning("AI service health check failed: %s", exc)
            return False
        healthy = isinstance(payload, dict) and payload.get("status") == "healthy"
        logger.debug("AI service health check result: %s", healthy)
        return healthy

    def analyze(self, audio_path: Path, file_name: str, language_hint: Optional[str] = None) -> AnalysisResult:
        if self._mock_mode:
            logger.info("AI service mock mode enabled, using mock result for %s", file_name)
            return build_mock_result()
        if not self.check_health():
            logger.warning("AI service unavailable, using mock result for %s", file_name)
            return build_mock_result()

        try:
            audio_bytes = Path(audio_path).read_bytes()
        except OSError as exc:
            raise InternalError(f"Failed to read audio resource: {exc}") from exc

        try:
            payload = self._post_analyze(audio_bytes, language_hint)
        except ExternalServiceDegraded as exc:
            logger.warning("AI service call failed for %s, using mock result: %s", file_name, exc.message)
            return build_mock_result()

        result = self._parse_result(payload)
        logger.info(
            "AI service analysis completed - file=%s classification=%s confidence=%.3f",
            file_name,
            result.classification,
            result.confidence,
        )
        return result

    def _post_analyze(self, audio_bytes: bytes, language_hint: Optional[str]) -> Any:
        body: Dict[str, Any] = {"audio_base64": base64.b64encode(audio_bytes).decode("ascii")}
        hint = (language_hint or "").strip()
        if hint:
            body["language_hint"] = hint
        logger.info("Calling AI service with request size: %d bytes", len(body["audio_base64"]))

        try:
            response = self._sessions.current().post(f"{self._base_url}/analyze", json=body, timeout=self._timeout_sec)
            response.raise_for_status()
        except requests.Timeout as exc:
            raise ExternalServiceDegraded(f"timed out after {self._timeout_sec:.0f}s") from exc
        except requests.RequestException as exc:
            raise ExternalServiceDegraded(str(exc)) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise ExternalServiceDegraded("non-JSON response body") from exc

    def _parse_result(self, payload: Any) -> AnalysisResult:
        if not isinstance(payload, dict):
            raise InternalError("AI service returned an unexpected payload.")
        try:
            return AnalysisResult.model_validate({k: v for k, v in payload.items() if k != "fallback"})
        except ValidationError as exc:
            logger.error("AI service reply failed validation: %s", exc)
            raise InternalError("AI service returned an invalid analysis result.") from exc
