"""Upload logs: one row per pipeline submission (user, file, outcome, degraded steps, duration)."""
from datetime import datetime

from sqlmodel import Field, SQLModel


class UploadLog(SQLModel, table=True):
    __tablename__ = "upload_logs"
    id: int | None = Field(default=None, primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    record_id: str | None = None
    filename: str | None = None
    file_size_bytes: int | None = None
    status: str = "pending"  # pending | success | failed
    analysis_fallback: bool = False
    file_stored: bool = False
    error_message: str | None = None
    duration_ms: int | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
