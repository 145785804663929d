"""Record store: session scoping, tagged persistence errors, filtering and stats."""
from datetime import datetime, timedelta

import pytest

from app.core.session import SessionContext
from app.models import MedicalRecord
from app.services.records import (
    PersistenceError,
    PersistenceErrorKind,
    RecordNotFound,
    RecordStore,
    filter_records,
    record_stats,
)


def _record(user_id: str, **kw) -> MedicalRecord:
    data = {"user_id": user_id, "title": "Blood Test", "category": "lab-report"}
    data.update(kw)
    return MedicalRecord(**data)


def test_create_and_get(db, session_ctx):
    store = RecordStore(db)
    rec = store.create(session_ctx, _record(session_ctx.user_id, title="  Blood Test  "))
    assert rec.id
    assert rec.title == "Blood Test"
    assert rec.key_findings == []
    assert rec.ai_analysis is None
    assert store.get(session_ctx, rec.id).id == rec.id


def test_create_without_session_is_auth_error(db, user):
    with pytest.raises(PersistenceError) as exc:
        RecordStore(db).create(None, _record(user.id))
    assert exc.value.kind is PersistenceErrorKind.AUTH
    assert exc.value.user_message == "Authentication error. Please sign out and sign in again."


def test_create_for_unknown_user_is_auth_error(db):
    ghost = SessionContext(user_id="00000000-0000-0000-0000-000000000000")
    with pytest.raises(PersistenceError) as exc:
        RecordStore(db).create(ghost, _record(ghost.user_id))
    assert exc.value.kind is PersistenceErrorKind.AUTH


def test_create_for_other_owner_is_permission_error(db, session_ctx):
    with pytest.raises(PersistenceError) as exc:
        RecordStore(db).create(session_ctx, _record("someone-else"))
    assert exc.value.kind is PersistenceErrorKind.PERMISSION
    assert exc.value.user_message == "Permission denied. Please contact support."


@pytest.mark.parametrize(
    "fields",
    [{"title": "   "}, {"category": "x-ray"}, {"urgency_level": "critical"}],
)
def test_create_constraint_errors(db, session_ctx, fields):
    with pytest.raises(PersistenceError) as exc:
        RecordStore(db).create(session_ctx, _record(session_ctx.user_id, **fields))
    assert exc.value.kind is PersistenceErrorKind.CONSTRAINT
    assert exc.value.user_message == exc.value.message


def test_duplicate_id_is_conflict(db, session_ctx):
    store = RecordStore(db)
    rec = store.create(session_ctx, _record(session_ctx.user_id))
    db.expunge_all()
    with pytest.raises(PersistenceError) as exc:
        store.create(session_ctx, _record(session_ctx.user_id, id=rec.id))
    assert exc.value.kind is PersistenceErrorKind.CONFLICT
    assert exc.value.user_message == "A record with this information already exists."


def test_database_error_message():
    err = PersistenceError(PersistenceErrorKind.DATABASE, "disk I/O error")
    assert err.user_message == "Database error: disk I/O error"


def test_other_users_record_looks_missing(db, session_ctx):
    rec = RecordStore(db).create(session_ctx, _record(session_ctx.user_id))
    with pytest.raises(RecordNotFound):
        RecordStore(db).get(SessionContext(user_id="intruder"), rec.id)


def test_list_newest_first(db, session_ctx):
    store = RecordStore(db)
    base = datetime(2024, 1, 1)
    for i, title in enumerate(["Oldest", "Middle", "Newest"]):
        store.create(session_ctx, _record(session_ctx.user_id, title=title, created_at=base + timedelta(days=i)))
    titles = [r.title for r in store.list_for_user(session_ctx)]
    assert titles == ["Newest", "Middle", "Oldest"]


def test_update_editable_fields(db, session_ctx):
    store = RecordStore(db)
    rec = store.create(session_ctx, _record(session_ctx.user_id))
    before = rec.updated_at
    updated = store.update(session_ctx, rec.id, {"title": " Lipid Panel ", "category": "consultation", "description": "Annual"})
    assert updated.title == "Lipid Panel"
    assert updated.category == "consultation"
    assert updated.description == "Annual"
    assert updated.updated_at >= before


def test_update_rejects_unknown_and_invalid_fields(db, session_ctx):
    store = RecordStore(db)
    rec = store.create(session_ctx, _record(session_ctx.user_id))
    with pytest.raises(PersistenceError):
        store.update(session_ctx, rec.id, {"user_id": "someone-else"})
    with pytest.raises(PersistenceError):
        store.update(session_ctx, rec.id, {"title": "New", "category": "nope"})
    # Nothing was applied
    assert store.get(session_ctx, rec.id).title == "Blood Test"


def test_delete(db, session_ctx):
    store = RecordStore(db)
    rec = store.create(session_ctx, _record(session_ctx.user_id))
    store.delete(session_ctx, rec.id)
    with pytest.raises(RecordNotFound):
        store.get(session_ctx, rec.id)


def test_filter_records_by_search_and_category():
    records = [
        MedicalRecord(user_id="u", title="Blood Test", category="lab-report", summary="Hemoglobin low"),
        MedicalRecord(user_id="u", title="Flu shot", category="vaccination"),
        MedicalRecord(user_id="u", title="Clinic visit", category="consultation", summary="Follow-up on HEMOGLOBIN"),
    ]
    assert [r.title for r in filter_records(records, search="hemoglobin")] == ["Blood Test", "Clinic visit"]
    assert [r.title for r in filter_records(records, search="VACC")] == ["Flu shot"]
    assert [r.title for r in filter_records(records, category="consultation")] == ["Clinic visit"]
    assert len(filter_records(records, category="all")) == 3
    assert filter_records(records, search="hemoglobin", category="vaccination") == []


def test_record_stats():
    records = [
        MedicalRecord(user_id="u", title="a", category="lab-report", urgency_level="high"),
        MedicalRecord(user_id="u", title="b", category="lab-report", urgency_level="low"),
        MedicalRecord(user_id="u", title="c", category="prescription", urgency_level="high"),
    ]
    assert record_stats(records) == {
        "total_records": 3,
        "urgent_records": 2,
        "records_by_category": {"lab-report": 2, "prescription": 1},
    }
