import logging
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class RecordCategory(str, Enum):
    PRESCRIPTION = "prescription"
    LAB_REPORT = "lab-report"
    MEDICAL_BILL = "medical-bill"
    SCAN_REPORT = "scan-report"
    CONSULTATION = "consultation"
    VACCINATION = "vaccination"
    VITAL_SIGNS = "vital-signs"
    OTHER = "other"


class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


RECORD_CATEGORIES = {c.value for c in RecordCategory}
URGENCY_LEVELS = {u.value for u in UrgencyLevel}


class AnalysisResult(BaseModel):
    """Structured extraction returned by the AI analysis service (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str
    key_findings: list[str] = Field(default_factory=list, alias="keyFindings")
    medications: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    urgency_level: UrgencyLevel = Field(default=UrgencyLevel.LOW, alias="urgencyLevel")
    document_type: str = Field(default="other", alias="documentType")

    @field_validator("key_findings", "medications", "recommendations", mode="before")
    @classmethod
    def as_string_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        if not isinstance(v, list):
            raise ValueError("expected a list of strings")
        return [str(item).strip() for item in v if item is not None and str(item).strip()]

    @field_validator("urgency_level", mode="before")
    @classmethod
    def coerce_urgency(cls, v):
        if isinstance(v, UrgencyLevel):
            return v
        level = str(v or "").strip().lower()
        if level not in URGENCY_LEVELS:
            logger.warning("Unexpected urgencyLevel %r from analysis, using 'low'", v)
            return UrgencyLevel.LOW
        return level

    @field_validator("document_type", mode="before")
    @classmethod
    def default_document_type(cls, v):
        return str(v).strip() if v and str(v).strip() else "other"

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class RecordUpdate(BaseModel):
    title: str | None = None
    category: RecordCategory | None = None
    description: str | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("Title is required.")
        return v.strip() if v else v


class RecordResponse(BaseModel):
    id: str
    user_id: str
    title: str
    category: str
    description: str | None = None
    summary: str | None = None
    ai_analysis: str | None = None
    key_findings: list[str] = []
    medications: list[str] = []
    recommendations: list[str] = []
    urgency_level: str = "low"
    file_name: str | None = None
    file_path: str | None = None
    file_url: str | None = None
    file_size: int | None = None
    file_type: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UploadResponse(BaseModel):
    record: RecordResponse
    analysis: dict  # AnalysisResult in wire (camelCase) form
    analysis_fallback: bool = False
    file_stored: bool = False


class RecordStats(BaseModel):
    total_records: int
    urgent_records: int
    records_by_category: dict[str, int]
