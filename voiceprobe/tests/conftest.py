import datetime as _dt
from pathlib import Path

import pytest

from voiceprobe.internal_core.detection_store import InMemoryDetectionStore
from voiceprobe.internal_core.identity import user_principal
from voiceprobe.internal_core.ingestion import AudioIngestionResolver
from voiceprobe.internal_core.orchestrator import DetectionOrchestrator
from voiceprobe.tests.fakes import SHARE_DOMAIN, FakeSession, SpyAnalysisClient, step_clock


@pytest.fixture()
def tmp_dir(tmp_path: Path) -> Path:
    out = tmp_path / "ingest"
    out.mkdir()
    return out


@pytest.fixture()
def download_session() -> FakeSession:
    return FakeSession()


@pytest.fixture()
def resolver(tmp_dir: Path, download_session: FakeSession) -> AudioIngestionResolver:
    return AudioIngestionResolver(
        tmp_dir,
        max_bytes=1024,
        download_timeout_sec=3.0,
        share_domain=SHARE_DOMAIN,
        session=download_session,
    )


@pytest.fixture()
def spy_client() -> SpyAnalysisClient:
    return SpyAnalysisClient()


@pytest.fixture()
def store() -> InMemoryDetectionStore:
    return InMemoryDetectionStore()


@pytest.fixture()
def orchestrator(store, resolver, spy_client) -> DetectionOrchestrator:
    return DetectionOrchestrator(
        store,
        resolver,
        spy_client,
        max_page_size=50,
        clock=step_clock(_dt.datetime(2026, 1, 1, tzinfo=_dt.timezone.utc)),
    )


@pytest.fixture()
def alice():
    return user_principal("user-alice", "Alice")


@pytest.fixture()
def bob():
    return user_principal("user-bob", "Bob")
