from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Classification = Literal["AI_GENERATED", "HUMAN"]


class Explanation(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, protected_namespaces=())

    reasoning: List[str] = Field(default_factory=list)
    model_scores: Dict[str, float] = Field(default_factory=dict)
    pitch_anomaly: bool = False
    spectral_artifacts: bool = False
    ensemble_agreement: str = ""


class AnalysisResult(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    classification: Classification
    confidence: float = Field(ge=0.0, le=1.0)
    language: str
    explanation: Explanation
    # Set when the deterministic mock replaced a live reply. Never projected.
    fallback: bool = Field(default=False, exclude=True)


class Detection(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    owner_id: Optional[str] = None
    audio_file_name: str
    audio_source_locator: str
    classification: Classification
    confidence: float = Field(ge=0.0, le=1.0)
    language: str
    explanation: Explanation
    processing_time_ms: int = Field(ge=0)
    created_at: datetime


class DetectionResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    classification: Classification
    confidence: float
    language: str
    explanation: Explanation
    processing_time_ms: int
    created_at: datetime
    audio_file_name: str

    @classmethod
    def from_detection(cls, detection: Detection) -> "DetectionResponse":
        return cls(
            id=detection.id,
            classification=detection.classification,
            confidence=detection.confidence,
            language=detection.language,
            explanation=detection.explanation,
            processing_time_ms=detection.processing_time_ms,
            created_at=detection.created_at,
            audio_file_name=detection.audio_file_name,
        )


class DetectionPage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: List[DetectionResponse] = Field(default_factory=list)
    page: int = Field(ge=0)
    size: int = Field(ge=1)
    total_items: int = Field(ge=0)
    total_pages: int = Field(ge=0)
