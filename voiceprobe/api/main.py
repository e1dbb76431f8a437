from __future__ import annotations

"""
HTTP surface for the voiceprobe detection service.

Design intent:
- Keep routing thin: resolve identity from headers, call the orchestrator,
  map domain errors to status codes.
- Never leak whether the analysis result came from the live service or the fallback.
"""

import logging
from typing import Any, Callable, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from voiceprobe.internal_core.analysis_client import AnalysisClient
from voiceprobe.internal_core.config import ServiceConfig, load_config
from voiceprobe.internal_core.contracts import DetectionPage, DetectionResponse
from voiceprobe.internal_core.detection_store import InMemoryDetectionStore
from voiceprobe.internal_core.errors import (
    DetectionError,
    ForbiddenError,
    InputValidationError,
    NotFoundError,
    PayloadTooLargeError,
    UnauthenticatedError,
)
from voiceprobe.internal_core.identity import IdentityResolver, Principal, TokenRegistry, user_principal
from voiceprobe.internal_core.ingestion import AudioIngestionResolver
from voiceprobe.internal_core.orchestrator import DetectionOrchestrator

T = TypeVar("T")


class VoiceAnalysisRequest(BaseModel):
    audio: str = Field(default="", description="Base64 encoded audio")
    filename: str | None = Field(default=None, max_length=255)
    language: str | None = Field(default=None, max_length=32)


app = FastAPI(title="voiceprobe detection service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_ERROR: list[tuple[type[DetectionError], int]] = [
    (PayloadTooLargeError, 413),
    (InputValidationError, 400),
    (UnauthenticatedError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
]


def _get_config() -> ServiceConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, ServiceConfig):
        return existing
    created = load_config()
    try:
        logging.getLogger().setLevel(created.LOG_LEVEL.upper())
    except ValueError:
        logger.warning("Ignoring unknown log level: %s", created.LOG_LEVEL)
    setattr(app.state, "config", created)
    return created


def _get_orchestrator() -> DetectionOrchestrator:
    existing = getattr(app.state, "orchestrator", None)
    if isinstance(existing, DetectionOrchestrator):
        return existing
    cfg = _get_config()
    created = DetectionOrchestrator(
        InMemoryDetectionStore(),
        AudioIngestionResolver.from_config(cfg),
        AnalysisClient.from_config(cfg),
        max_page_size=cfg.MAX_PAGE_SIZE,
    )
    setattr(app.state, "orchestrator", created)
    return created


def _get_identity_resolver() -> IdentityResolver:
    existing = getattr(app.state, "identity_resolver", None)
    if isinstance(existing, IdentityResolver):
        return existing
    cfg = _get_config()
    tokens = TokenRegistry()
    for token, (user_id, display_name) in cfg.bearer_tokens().items():
        tokens.register(token, user_principal(user_id, display_name))
    created = IdentityResolver(cfg.API_KEY, tokens)
    setattr(app.state, "identity_resolver", created)
    return created


def _principal(request: Request) -> Optional[Principal]:
    return _get_identity_resolver().resolve(request.headers).optional_user()


def _to_http_exception(exc: DetectionError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    logger.error("Detection request failed: code=%s message=%s", exc.code, exc.message, exc_info=exc)
    return HTTPException(status_code=500, detail="Analysis failed.")


def _call(fn: Callable[..., T], *args: Any) -> T:
    try:
        return fn(*args)
    except DetectionError as exc:
        raise _to_http_exception(exc) from exc
    except Exception as exc:
        logger.exception("Unexpected failure in %s", getattr(fn, "__name__", "handler"))
        raise HTTPException(status_code=500, detail="Analysis failed.") from exc


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/health")
def service_health() -> dict[str, Any]:
    return _get_orchestrator().service_health()


@app.get("/api/v1/auth/whoami")
def whoami(request: Request) -> dict[str, Any]:
    principal = _principal(request)
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required.")
    return {
        "authenticated": True,
        "id": principal.id,
        "display_name": principal.display_name,
        "roles": sorted(principal.roles),
    }


@app.post("/api/v1/voice/analyze", response_model=DetectionResponse)
async def analyze_voice(
    request: Request,
    filename: str | None = Query(default=None, max_length=255),
    audio_url: str | None = Query(default=None, alias="audioUrl", max_length=4096),
    language_hint: str | None = Query(default=None, alias="languageHint", max_length=32),
) -> DetectionResponse:
    principal = _principal(request)
    orchestrator = _get_orchestrator()
    cfg = _get_config()

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > cfg.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"Audio too large, max allowed is {cfg.MAX_UPLOAD_BYTES / (1024 * 1024):.1f}MB",
        )
    payload = await request.body()
    logger.info(
        "Received audio analysis request - file_present=%s url_present=%s language_hint=%s",
        bool(payload),
        bool(audio_url),
        language_hint,
    )

    if payload:
        return await run_in_threadpool(
            _call, orchestrator.analyze_from_upload, principal, payload, filename, language_hint
        )
    if audio_url and audio_url.strip():
        return await run_in_threadpool(
            _call, orchestrator.analyze_from_url, principal, audio_url.strip(), language_hint
        )
    raise HTTPException(status_code=400, detail="Either an audio body or 'audioUrl' must be provided.")


@app.post("/api/v1/voice/analyze-json", response_model=DetectionResponse)
def analyze_voice_json(payload: VoiceAnalysisRequest, request: Request) -> DetectionResponse:
    if not payload.audio.strip():
        raise HTTPException(status_code=400, detail="Audio data is required.")
    return _call(
        _get_orchestrator().analyze_from_encoded,
        _principal(request),
        payload.audio,
        payload.filename or "api_upload.mp3",
        payload.language,
    )


@app.get("/api/v1/voice/analysis/{detection_id}", response_model=DetectionResponse)
def get_analysis(detection_id: str, request: Request) -> DetectionResponse:
    return _call(_get_orchestrator().get_detection, _principal(request), detection_id)


@app.get("/api/v1/history", response_model=DetectionPage)
def get_history(
    request: Request,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=10, ge=1),
) -> DetectionPage:
    return _call(_get_orchestrator().list_history, _principal(request), page, size)


@app.get("/api/v1/history/{detection_id}", response_model=DetectionResponse)
def get_history_item(detection_id: str, request: Request) -> DetectionResponse:
    return _call(_get_orchestrator().get_detection, _principal(request), detection_id)


@app.delete("/api/v1/history/{detection_id}", status_code=204)
def delete_history_item(detection_id: str, request: Request) -> Response:
    _call(_get_orchestrator().delete_detection, _principal(request), detection_id)
    return Response(status_code=204)
