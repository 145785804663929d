from datetime import datetime

from sqlmodel import Field, SQLModel


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # login, register, record_upload, record_delete, ...
    user_id: str | None = Field(default=None, index=True)
    record_id: str | None = None
    ip: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
