"""Relational store for medical records, scoped to the calling session."""
import logging
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.session import SessionContext
from app.models import MedicalRecord, User
from app.schemas.record import RECORD_CATEGORIES, URGENCY_LEVELS

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "category", "description")
ANALYSIS_FIELDS = ("summary", "ai_analysis", "key_findings", "medications", "recommendations", "urgency_level")


class PersistenceErrorKind(str, Enum):
    AUTH = "auth"
    PERMISSION = "permission"
    CONFLICT = "conflict"
    CONSTRAINT = "constraint"
    DATABASE = "database"


class PersistenceError(Exception):
    """Tagged failure of a record store write; `user_message` is safe to show."""

    def __init__(self, kind: PersistenceErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def user_message(self) -> str:
        if self.kind is PersistenceErrorKind.AUTH:
            return "Authentication error. Please sign out and sign in again."
        if self.kind is PersistenceErrorKind.PERMISSION:
            return "Permission denied. Please contact support."
        if self.kind is PersistenceErrorKind.CONFLICT:
            return "A record with this information already exists."
        if self.kind is PersistenceErrorKind.CONSTRAINT:
            return self.message
        return f"Database error: {self.message}"


class RecordNotFound(Exception):
    pass


def _check_record_fields(title: str | None, category: str | None, urgency: str | None = None) -> None:
    if title is not None and not title.strip():
        raise PersistenceError(PersistenceErrorKind.CONSTRAINT, "Title is required.")
    if category is not None and category not in RECORD_CATEGORIES:
        raise PersistenceError(PersistenceErrorKind.CONSTRAINT, f"Invalid category: {category}")
    if urgency is not None and urgency not in URGENCY_LEVELS:
        raise PersistenceError(PersistenceErrorKind.CONSTRAINT, f"Invalid urgency level: {urgency}")


class RecordStore:
    def __init__(self, db: Session):
        self.db = db

    def _require_session(self, session: SessionContext | None) -> SessionContext:
        if session is None or not session.user_id:
            raise PersistenceError(PersistenceErrorKind.AUTH, "User not authenticated. Please sign in again.")
        if self.db.get(User, session.user_id) is None:
            raise PersistenceError(PersistenceErrorKind.AUTH, "Invalid user session.")
        return session

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning("Record %s rejected by constraint: %s", what, e.orig)
            raise PersistenceError(PersistenceErrorKind.CONFLICT, str(e.orig)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Record %s failed: %s", what, e)
            raise PersistenceError(PersistenceErrorKind.DATABASE, str(e).splitlines()[0]) from e

    def create(self, session: SessionContext | None, record: MedicalRecord) -> MedicalRecord:
        session = self._require_session(session)
        if record.user_id != session.user_id:
            raise PersistenceError(PersistenceErrorKind.PERMISSION, "User ID does not match authenticated user.")
        _check_record_fields(record.title or "", record.category or "", record.urgency_level or "")
        record.title = record.title.strip()
        self.db.add(record)
        self._commit("insert")
        self.db.refresh(record)
        return record

    def get(self, session: SessionContext, record_id: str) -> MedicalRecord:
        rec = self.db.get(MedicalRecord, record_id)
        # Someone else's record looks the same as a missing one
        if rec is None or rec.user_id != session.user_id:
            raise RecordNotFound(record_id)
        return rec

    def list_for_user(self, session: SessionContext) -> list[MedicalRecord]:
        stmt = (
            select(MedicalRecord)
            .where(MedicalRecord.user_id == session.user_id)
            .order_by(MedicalRecord.created_at.desc())
        )
        return list(self.db.exec(stmt).all())

    def update(self, session: SessionContext, record_id: str, changes: dict) -> MedicalRecord:
        """Applies all `changes` in a single commit, or none of them."""
        rec = self.get(session, record_id)
        unknown = set(changes) - set(EDITABLE_FIELDS) - set(ANALYSIS_FIELDS)
        if unknown:
            raise PersistenceError(PersistenceErrorKind.CONSTRAINT, f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        _check_record_fields(changes.get("title"), changes.get("category"), changes.get("urgency_level"))
        for field, value in changes.items():
            setattr(rec, field, value.strip() if field == "title" else value)
        rec.updated_at = datetime.utcnow()
        self.db.add(rec)
        self._commit("update")
        self.db.refresh(rec)
        return rec

    def delete(self, session: SessionContext, record_id: str) -> MedicalRecord:
        rec = self.get(session, record_id)
        self.db.delete(rec)
        self._commit("delete")
        return rec


def filter_records(
    records: Iterable[MedicalRecord],
    search: str | None = None,
    category: str | None = None,
) -> list[MedicalRecord]:
    """Case-insensitive search over title, category and summary; `category` "all" or None keeps every category."""
    out = list(records)
    term = (search or "").strip().lower()
    if term:
        out = [
            r for r in out
            if term in r.title.lower() or term in r.category.lower() or term in (r.summary or "").lower()
        ]
    if category and category != "all":
        out = [r for r in out if r.category == category]
    return out


def record_stats(records: Iterable[MedicalRecord]) -> dict:
    records = list(records)
    return {
        "total_records": len(records),
        "urgent_records": sum(1 for r in records if r.urgency_level == "high"),
        "records_by_category": dict(Counter(r.category for r in records)),
    }
