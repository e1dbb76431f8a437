from .analysis_client import AnalysisClient, build_mock_result
from .config import ServiceConfig, load_config
from .detection_store import DetectionStore, InMemoryDetectionStore
from .identity import IdentityContext, IdentityResolver, Principal, TokenRegistry
from .ingestion import AudioIngestionResolver, AudioResource, rewrite_share_url
from .orchestrator import DetectionOrchestrator

__all__ = [
    "AnalysisClient",
    "AudioIngestionResolver",
    "AudioResource",
    "DetectionOrchestrator",
    "DetectionStore",
    "IdentityContext",
    "IdentityResolver",
    "InMemoryDetectionStore",
    "Principal",
    "ServiceConfig",
    "TokenRegistry",
    "build_mock_result",
    "load_config",
    "rewrite_share_url",
]
