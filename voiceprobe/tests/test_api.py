import base64
import datetime as _dt
import logging

import pytest
from fastapi.testclient import TestClient

from voiceprobe.api import main as api_main
from voiceprobe.api.main import app
from voiceprobe.internal_core.config import ServiceConfig
from voiceprobe.internal_core.detection_store import InMemoryDetectionStore
from voiceprobe.internal_core.errors import InternalError
from voiceprobe.internal_core.identity import IdentityResolver, TokenRegistry, user_principal
from voiceprobe.internal_core.ingestion import AudioIngestionResolver
from voiceprobe.internal_core.orchestrator import DetectionOrchestrator
from voiceprobe.tests.fakes import FakeResponse, FakeSession, SpyAnalysisClient, step_clock

ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}
API_CLIENT = {"X-API-KEY": "shared-secret"}
AUDIO = b"RIFF\x24\x00\x00\x00WAVEfmt "


def _clear_injected_state() -> None:
    for name in ("config", "orchestrator", "identity_resolver"):
        if hasattr(app.state, name):
            delattr(app.state, name)


@pytest.fixture()
def wired(tmp_path):
    spy = SpyAnalysisClient()
    downloads = FakeSession()
    store = InMemoryDetectionStore()
    app.state.config = ServiceConfig(MAX_UPLOAD_BYTES=4096, TMP_DIR=str(tmp_path))
    app.state.orchestrator = DetectionOrchestrator(
        store,
        AudioIngestionResolver(tmp_path, max_bytes=4096, share_domain="drive.example.com", session=downloads),
        spy,
        max_page_size=20,
        clock=step_clock(_dt.datetime(2026, 2, 1, tzinfo=_dt.timezone.utc)),
    )
    tokens = TokenRegistry()
    tokens.register("tok-alice", user_principal("user-alice", "Alice"))
    tokens.register("tok-bob", user_principal("user-bob", "Bob"))
    app.state.identity_resolver = IdentityResolver("shared-secret", tokens)
    try:
        yield {"client": TestClient(app), "spy": spy, "downloads": downloads, "store": store}
    finally:
        _clear_injected_state()


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_service_health_reports_mock_mode(wired) -> None:
    response = wired["client"].get("/api/v1/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["backend"] == "healthy"
    assert payload["mock_mode"] is True
    assert payload["status"] in {"healthy", "degraded"}


def test_upload_analysis_round_trip(wired) -> None:
    client = wired["client"]
    created = client.post(
        "/api/v1/voice/analyze",
        params={"filename": "clip.wav", "languageHint": "english"},
        content=AUDIO,
        headers={**ALICE, "Content-Type": "application/octet-stream"},
    )
    assert created.status_code == 200
    body = created.json()
    assert body["classification"] in {"AI_GENERATED", "HUMAN"}
    assert 0.0 <= body["confidence"] <= 1.0
    assert body["audio_file_name"] == "clip.wav"
    assert "fallback" not in body
    assert wired["spy"].calls[0]["language_hint"] == "english"

    fetched = client.get(f"/api/v1/voice/analysis/{body['id']}", headers=ALICE)
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]

    history_item = client.get(f"/api/v1/history/{body['id']}", headers=ALICE)
    assert history_item.status_code == 200


def test_upload_without_identity_returns_401(wired) -> None:
    response = wired["client"].post("/api/v1/voice/analyze", params={"filename": "clip.wav"}, content=AUDIO)
    assert response.status_code == 401
    assert wired["spy"].calls == []


def test_upload_over_limit_returns_413_without_analysis(wired) -> None:
    response = wired["client"].post(
        "/api/v1/voice/analyze",
        params={"filename": "big.wav"},
        content=b"\x00" * 5000,
        headers=ALICE,
    )
    assert response.status_code == 413
    assert wired["spy"].calls == []


def test_analyze_without_audio_or_url_returns_400(wired) -> None:
    response = wired["client"].post("/api/v1/voice/analyze", headers=ALICE)
    assert response.status_code == 400
    assert "audioUrl" in response.json()["detail"]


def test_url_analysis_uses_rewritten_share_link(wired) -> None:
    direct = "https://drive.example.com/uc?id=ABC123&export=download"
    wired["downloads"].get_routes[direct] = FakeResponse(content=AUDIO)

    response = wired["client"].post(
        "/api/v1/voice/analyze",
        params={"audioUrl": "https://drive.example.com/file/d/ABC123/view"},
        headers=ALICE,
    )
    assert response.status_code == 200
    assert wired["downloads"].get_calls[0]["url"] == direct


def test_url_analysis_with_bad_url_returns_400(wired) -> None:
    response = wired["client"].post(
        "/api/v1/voice/analyze",
        params={"audioUrl": "ftp://example.org/a.wav"},
        headers=ALICE,
    )
    assert response.status_code == 400


def test_json_analysis_for_api_client_is_not_retrievable(wired) -> None:
    client = wired["client"]
    response = client.post(
        "/api/v1/voice/analyze-json",
        json={"audio": base64.b64encode(AUDIO).decode("ascii"), "language": "tamil"},
        headers=API_CLIENT,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["id"].startswith("temp-")
    assert body["audio_file_name"] == "api_upload.mp3"

    lookup = client.get(f"/api/v1/voice/analysis/{body['id']}", headers=API_CLIENT)
    assert lookup.status_code == 404


def test_json_analysis_rejects_invalid_base64(wired) -> None:
    response = wired["client"].post("/api/v1/voice/analyze-json", json={"audio": "%%%not-base64%%%"})
    assert response.status_code == 400
    assert "Base64" in response.json()["detail"]


def test_json_analysis_requires_audio(wired) -> None:
    response = wired["client"].post("/api/v1/voice/analyze-json", json={"audio": "  "})
    assert response.status_code == 400


def test_cross_user_access_is_forbidden(wired) -> None:
    client = wired["client"]
    created = client.post("/api/v1/voice/analyze", params={"filename": "a.wav"}, content=AUDIO, headers=ALICE)
    detection_id = created.json()["id"]

    assert client.get(f"/api/v1/history/{detection_id}", headers=BOB).status_code == 403
    assert client.delete(f"/api/v1/history/{detection_id}", headers=BOB).status_code == 403
    assert client.get(f"/api/v1/history/{detection_id}").status_code == 401
    assert wired["store"].find_by_id(detection_id) is not None


def test_delete_then_delete_again_returns_404(wired) -> None:
    client = wired["client"]
    created = client.post("/api/v1/voice/analyze", params={"filename": "a.wav"}, content=AUDIO, headers=ALICE)
    detection_id = created.json()["id"]

    assert client.delete(f"/api/v1/history/{detection_id}", headers=ALICE).status_code == 204
    assert client.delete(f"/api/v1/history/{detection_id}", headers=ALICE).status_code == 404
    assert client.get(f"/api/v1/history/{detection_id}", headers=ALICE).status_code == 404


def test_history_paging(wired) -> None:
    client = wired["client"]
    ids = []
    for name in ["t1.wav", "t2.wav", "t3.wav"]:
        created = client.post("/api/v1/voice/analyze", params={"filename": name}, content=AUDIO, headers=ALICE)
        ids.append(created.json()["id"])

    response = client.get("/api/v1/history", params={"page": 0, "size": 2}, headers=ALICE)
    assert response.status_code == 200
    payload = response.json()
    assert [item["id"] for item in payload["items"]] == [ids[2], ids[1]]
    assert payload["total_items"] == 3
    assert payload["total_pages"] == 2

    assert client.get("/api/v1/history", headers=BOB).json()["items"] == []
    assert client.get("/api/v1/history", params={"size": 21}, headers=ALICE).status_code == 400
    assert client.get("/api/v1/history", params={"page": -1}, headers=ALICE).status_code == 422


def test_internal_error_is_opaque(wired, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="voiceprobe.api.main")
    wired["spy"].raise_on_analyze = InternalError("AI service returned an invalid analysis result.")
    response = wired["client"].post(
        "/api/v1/voice/analyze", params={"filename": "a.wav"}, content=AUDIO, headers=ALICE
    )
    assert response.status_code == 500
    assert response.json()["detail"] == "Analysis failed."
    failures = [r for r in caplog.records if r.name == "voiceprobe.api.main" and r.levelno == logging.ERROR]
    assert failures
    assert failures[-1].exc_info is not None
    assert isinstance(failures[-1].exc_info[1], InternalError)


def test_unexpected_exception_is_opaque(wired) -> None:
    wired["spy"].raise_on_analyze = KeyError("boom")
    response = wired["client"].post(
        "/api/v1/voice/analyze", params={"filename": "a.wav"}, content=AUDIO, headers=ALICE
    )
    assert response.status_code == 500
    assert response.json()["detail"] == "Analysis failed."


def test_whoami_reports_resolved_principal(wired) -> None:
    client = wired["client"]
    user = client.get("/api/v1/auth/whoami", headers=ALICE)
    assert user.status_code == 200
    assert user.json() == {
        "authenticated": True,
        "id": "user-alice",
        "display_name": "Alice",
        "roles": ["ROLE_USER"],
    }

    api_client = client.get("/api/v1/auth/whoami", headers=API_CLIENT)
    assert api_client.status_code == 200
    assert api_client.json()["roles"] == ["ROLE_API_CLIENT"]

    assert client.get("/api/v1/auth/whoami").status_code == 401
    assert client.get("/api/v1/auth/whoami", headers={"Authorization": "Bearer unknown"}).status_code == 401


def test_log_level_is_applied_to_root_logger(monkeypatch, tmp_path) -> None:
    _clear_injected_state()
    root = logging.getLogger()
    previous = root.level
    monkeypatch.setenv("VOICEPROBE_LOG_LEVEL", "warning")
    monkeypatch.setenv("VOICEPROBE_TMP_DIR", str(tmp_path))
    try:
        api_main._get_config()
        assert root.level == logging.WARNING
    finally:
        root.setLevel(previous)
        _clear_injected_state()
