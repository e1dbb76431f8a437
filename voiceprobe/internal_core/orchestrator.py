from __future__ import annotations

"""
Detection orchestration: ingestion -> analysis -> timing -> record -> projection.

Every operation takes the caller's principal explicitly. Records are durable
only for registered users; anonymous and API-client analyses get a transient
id and are never stored.
"""

import datetime as _dt
import logging
import math
import uuid
from contextlib import AbstractContextManager
from threading import Lock
from time import perf_counter
from typing import Any, Callable, Dict, Optional

from .analysis_client import AnalysisClient
from .contracts import Detection, DetectionPage, DetectionResponse
from .detection_store import DetectionStore
from .errors import ForbiddenError, InputValidationError, NotFoundError, UnauthenticatedError
from .identity import IdentityContext, Principal
from .ingestion import AudioIngestionResolver, AudioResource

logger = logging.getLogger(__name__)

TRANSIENT_ID_PREFIX = "temp-"


def _utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


class DetectionOrchestrator:
    def __init__(
        self,
        store: DetectionStore,
        resolver: AudioIngestionResolver,
        analysis_client: AnalysisClient,
        *,
        max_page_size: int = 100,
        clock: Callable[[], _dt.datetime] = _utc_now,
    ):
        self._store = store
        self._resolver = resolver
        self._client = analysis_client
        self._max_page_size = int(max_page_size)
        self._clock = clock
        self._clock_lock = Lock()
        self._last_created_at: Optional[_dt.datetime] = None

    # -- analyze ---------------------------------------------------------

    def analyze_from_upload(
        self,
        principal: Optional[Principal],
        payload: bytes,
        filename: Optional[str] = None,
        language_hint: Optional[str] = None,
    ) -> DetectionResponse:
        user = IdentityContext(principal).get_current_user()
        logger.info("Starting voice analysis for user=%s file=%s bytes=%d", user.id, filename, len(payload or b""))
        return self._run(user, self._resolver.from_upload(payload, filename), language_hint)

    def analyze_from_url(
        self,
        principal: Optional[Principal],
        url: str,
        language_hint: Optional[str] = None,
    ) -> DetectionResponse:
        user = IdentityContext(principal).get_current_user()
        logger.info("Starting voice analysis from URL for user=%s", user.id)
        return self._run(user, self._resolver.from_url(url), language_hint)

    def analyze_from_encoded(
        self,
        principal: Optional[Principal],
        payload_b64: str,
        filename: Optional[str] = None,
        language_hint: Optional[str] = None,
    ) -> DetectionResponse:
        user = IdentityContext(principal).optional_user()
        logger.info(
            "Starting encoded voice analysis for user=%s file=%s",
            user.id if user is not None else "anonymous",
            filename,
        )
        return self._run(user, self._resolver.from_encoded(payload_b64, filename), language_hint)

    def _run(
        self,
        principal: Optional[Principal],
        source: AbstractContextManager[AudioResource],
        language_hint: Optional[str],
    ) -> DetectionResponse:
        with source as resource:
            started = perf_counter()
            result = self._client.analyze(resource.path, resource.file_name, language_hint)
            elapsed_ms = max(0, int(round((perf_counter() - started) * 1000.0)))

            owner_id = self._durable_owner(principal)
            detection = Detection(
                id=uuid.uuid4().hex if owner_id else f"{TRANSIENT_ID_PREFIX}{uuid.uuid4()}",
                owner_id=owner_id,
                audio_file_name=resource.file_name,
                audio_source_locator=resource.source_locator,
                classification=result.classification,
                confidence=result.confidence,
                language=result.language,
                explanation=result.explanation,
                processing_time_ms=elapsed_ms,
                created_at=self._next_created_at(),
            )
            if owner_id:
                self._store.save(detection)

        logger.info(
            "Voice analysis completed - id=%s classification=%s confidence=%.3f processing_ms=%d stored=%s",
            detection.id,
            detection.classification,
            detection.confidence,
            detection.processing_time_ms,
            bool(owner_id),
        )
        return DetectionResponse.from_detection(detection)

    @staticmethod
    def _durable_owner(principal: Optional[Principal]) -> Optional[str]:
        if principal is None or principal.is_api_client:
            return None
        return principal.id

    def _next_created_at(self) -> _dt.datetime:
        with self._clock_lock:
            now = self._clock()
            if self._last_created_at is not None and now < self._last_created_at:
                now = self._last_created_at
            self._last_created_at = now
            return now

    # -- records ---------------------------------------------------------

    def _owned_detection(self, principal: Optional[Principal], detection_id: str) -> Detection:
        user = IdentityContext(principal).get_current_user()
        detection = self._store.find_by_id(str(detection_id or ""))
        if detection is None:
            raise NotFoundError(f"Detection not found: {detection_id}")
        if detection.owner_id != user.id:
            logger.warning("Denied access to detection=%s for user=%s", detection.id, user.id)
            raise ForbiddenError("Unauthorized access to detection.")
        return detection

    def get_detection(self, principal: Optional[Principal], detection_id: str) -> DetectionResponse:
        return DetectionResponse.from_detection(self._owned_detection(principal, detection_id))

    def delete_detection(self, principal: Optional[Principal], detection_id: str) -> None:
        detection = self._owned_detection(principal, detection_id)
        if not self._store.delete(detection.id):
            # Lost a race with a concurrent delete of the same record.
            raise NotFoundError(f"Detection not found: {detection_id}")
        logger.info("Deleted detection=%s", detection.id)

    def list_history(self, principal: Optional[Principal], page: int = 0, size: int = 10) -> DetectionPage:
        user = IdentityContext(principal).get_current_user()
        if page < 0:
            raise InputValidationError("page must be >= 0.")
        if size < 1 or size > self._max_page_size:
            raise InputValidationError(f"size must be between 1 and {self._max_page_size}.")

        total = self._store.count_by_owner(user.id)
        items = self._store.find_page_by_owner(user.id, page, size)
        return DetectionPage(
            items=[DetectionResponse.from_detection(item) for item in items],
            page=page,
            size=size,
            total_items=total,
            total_pages=math.ceil(total / size),
        )

    # -- health ----------------------------------------------------------

    def service_health(self) -> Dict[str, Any]:
        healthy = self._client.check_health()
        return {
            "status": "healthy" if healthy else "degraded",
            "backend": "healthy",
            "ai_service": "healthy" if healthy else "unhealthy",
            "mock_mode": self._client.mock_mode,
            "timestamp": _utc_now().isoformat(),
        }
