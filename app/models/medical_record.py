from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from .user import new_id


class MedicalRecord(SQLModel, table=True):
    __tablename__ = "medical_records"
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    title: str
    category: str = "other"  # see app.schemas.record.RecordCategory
    description: str | None = None
    summary: str | None = None
    # Serialized AnalysisResult; stays null until an analysis attempt (or its fallback) completes
    ai_analysis: str | None = None
    key_findings: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    medications: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    recommendations: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    urgency_level: str = "low"  # "low" | "medium" | "high"
    file_name: str | None = None
    file_path: str | None = None  # object store key, only when the blob was stored
    file_url: str | None = None
    file_size: int | None = None
    file_type: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
