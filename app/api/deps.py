import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.security import decode_access_token
from app.core.session import SessionContext
from app.models import AuditLog, User
from app.services.analyze import DocumentAnalyzer, RemoteDocumentAnalyzer
from app.services.records import RecordStore
from app.services.storage import LocalObjectStore, ObjectStore

log = logging.getLogger("medrecord")
security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="You must be signed in.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    return str(payload["sub"])


def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user session. Please sign out and sign in again.",
        )
    return user


def get_session_context(user: User = Depends(get_current_user)) -> SessionContext:
    return SessionContext(user_id=user.id, user_type=user.user_type)


def get_record_store(db: Session = Depends(get_db)) -> RecordStore:
    return RecordStore(db)


@lru_cache
def get_object_store() -> ObjectStore:
    return LocalObjectStore(settings.storage_dir, settings.storage_public_url)


def get_document_analyzer() -> DocumentAnalyzer:
    """In-process analysis (OpenAI); backs POST /api/analyze-document."""
    return DocumentAnalyzer()


def get_pipeline_analyzer():
    """Analyzer used by uploads: a remote analysis service when configured, otherwise in-process."""
    if settings.analysis_service_url:
        return RemoteDocumentAnalyzer(settings.analysis_service_url, timeout=settings.external_call_timeout)
    return DocumentAnalyzer()


def audit(db: Session, event: str, user_id: str | None, ip: str | None, record_id: str | None = None) -> None:
    """Best-effort audit row; a failed write never fails the request."""
    try:
        db.add(AuditLog(event=event, user_id=user_id, record_id=record_id, ip=ip or None))
        db.commit()
    except Exception as e:
        db.rollback()
        log.warning("AuditLog write failed (%s): %s", event, e)
