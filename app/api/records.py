import json
import logging
import re
import time

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import Response
from sqlmodel import Session

from app.api.deps import (
    audit,
    get_object_store,
    get_pipeline_analyzer,
    get_record_store,
    get_session_context,
)
from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import client_ip, limiter
from app.core.session import SessionContext
from app.models import MedicalRecord, UploadLog
from app.schemas import RecordResponse, RecordStats, RecordUpdate, UploadResponse
from app.services.acquisition import UploadValidationError
from app.services.camera import CaptureError, CaptureErrorKind, FrameBufferDevice
from app.services.pipeline import (
    PipelineStateError,
    ReanalysisError,
    RecordPreconditionError,
    UploadPipeline,
    reanalyze_record,
)
from app.services.records import (
    PersistenceError,
    PersistenceErrorKind,
    RecordNotFound,
    RecordStore,
    filter_records,
    record_stats,
)
from app.services.storage import ObjectStore, StorageError, sanitize_filename

log = logging.getLogger("medrecord")

router = APIRouter(prefix="/records", tags=["records"])
_UPLOAD_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"

PERSISTENCE_STATUS = {
    PersistenceErrorKind.AUTH: 401,
    PersistenceErrorKind.PERMISSION: 403,
    PersistenceErrorKind.CONFLICT: 409,
    PersistenceErrorKind.CONSTRAINT: 422,
    PersistenceErrorKind.DATABASE: 500,
}


def _validation_http_error(e: UploadValidationError) -> HTTPException:
    return HTTPException(status_code=413 if e.field == "file_size" else 400, detail=e.message)


def _persistence_http_error(e: PersistenceError) -> HTTPException:
    return HTTPException(status_code=PERSISTENCE_STATUS[e.kind], detail=e.user_message)


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Record not found.")


def _set_details(pipeline: UploadPipeline, title: str, category: str, description: str) -> None:
    # Blank title keeps the one suggested from the file name
    pipeline.update_details(
        title=title.strip() or None,
        category=(category or "other").strip(),
        description=description,
    )


async def _finish_upload(request: Request, db: Session, pipeline: UploadPipeline) -> UploadResponse:
    """Runs submit() and keeps the UploadLog row in step with the outcome."""
    f = pipeline.file
    ul = UploadLog(user_id=pipeline.session.user_id, filename=f.name, file_size_bytes=f.size)
    db.add(ul)
    db.commit()
    db.refresh(ul)
    t0 = time.perf_counter()

    def _log_failure(message: str) -> None:
        ul.status = "failed"
        ul.error_message = message[:500]
        ul.duration_ms = int((time.perf_counter() - t0) * 1000)
        db.add(ul)
        db.commit()

    try:
        outcome = await pipeline.submit()
    except UploadValidationError as e:
        _log_failure(e.message)
        raise _validation_http_error(e)
    except PersistenceError as e:
        _log_failure(e.user_message)
        raise _persistence_http_error(e)
    except PipelineStateError as e:
        _log_failure(str(e))
        raise HTTPException(status_code=409, detail=str(e))

    ul.status = "success"
    ul.record_id = outcome.record.id
    ul.analysis_fallback = outcome.analysis_fallback
    ul.file_stored = outcome.file_stored
    ul.duration_ms = int((time.perf_counter() - t0) * 1000)
    db.add(ul)
    db.commit()
    audit(db, "record_upload", outcome.record.user_id, client_ip(request), record_id=outcome.record.id)
    return UploadResponse(
        record=RecordResponse.model_validate(outcome.record),
        analysis=outcome.analysis.to_wire(),
        analysis_fallback=outcome.analysis_fallback,
        file_stored=outcome.file_stored,
    )


@router.post("", response_model=UploadResponse, status_code=201)
@limiter.limit(_UPLOAD_RATE_LIMIT)
async def upload_record(
    request: Request,
    file: UploadFile | None = File(None),
    title: str = Form(""),
    category: str = Form("other"),
    description: str = Form(""),
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
    records: RecordStore = Depends(get_record_store),
    analyzer=Depends(get_pipeline_analyzer),
    object_store: ObjectStore = Depends(get_object_store),
):
    """Upload: multipart/form-data with 'file' plus optional title, category, description."""
    log.info("records/upload: filename=%s", getattr(file, "filename", None))
    pipeline = UploadPipeline(session, analyzer, object_store, records)
    try:
        content = await file.read() if file else b""
    except Exception as e:
        log.exception("records/upload file read error: %s", e)
        raise HTTPException(status_code=400, detail="File could not be read.")
    try:
        pipeline.acquire(file.filename if file else None, content, file.content_type if file else None)
        _set_details(pipeline, title, category, description)
    except UploadValidationError as e:
        raise _validation_http_error(e)
    return await _finish_upload(request, db, pipeline)


@router.post("/capture", response_model=UploadResponse, status_code=201)
@limiter.limit(_UPLOAD_RATE_LIMIT)
async def capture_record(
    request: Request,
    frame: UploadFile = File(...),
    title: str = Form(""),
    category: str = Form("other"),
    description: str = Form(""),
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
    records: RecordStore = Depends(get_record_store),
    analyzer=Depends(get_pipeline_analyzer),
    object_store: ObjectStore = Depends(get_object_store),
):
    """Camera path: one browser camera frame becomes a JPEG document, then the normal upload runs."""
    pipeline = UploadPipeline(session, analyzer, object_store, records)
    data = await frame.read()
    if len(data) > settings.upload_max_bytes:
        log.warning("Camera frame rejected before decoding: %s bytes", len(data))
        raise HTTPException(status_code=409, detail=CaptureError(CaptureErrorKind.CAPTURE_FAILED).message)
    device = FrameBufferDevice()
    try:
        pipeline.open_camera(device)
        device.push_frame(data)
        pipeline.capture()
        _set_details(pipeline, title, category, description)
    except CaptureError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except UploadValidationError as e:
        raise _validation_http_error(e)
    finally:
        pipeline.close_camera()
    return await _finish_upload(request, db, pipeline)


@router.get("", response_model=list[RecordResponse])
def list_records(
    search: str | None = None,
    category: str | None = None,
    session: SessionContext = Depends(get_session_context),
    records: RecordStore = Depends(get_record_store),
):
    """Own records, newest first; `search` matches title, category or summary."""
    return filter_records(records.list_for_user(session), search=search, category=category)


@router.get("/stats", response_model=RecordStats)
def stats(
    session: SessionContext = Depends(get_session_context),
    records: RecordStore = Depends(get_record_store),
):
    return record_stats(records.list_for_user(session))


@router.get("/{record_id}", response_model=RecordResponse)
def get_record(
    record_id: str,
    session: SessionContext = Depends(get_session_context),
    records: RecordStore = Depends(get_record_store),
):
    try:
        return records.get(session, record_id)
    except RecordNotFound:
        raise _not_found()


@router.patch("/{record_id}", response_model=RecordResponse)
def update_record(
    record_id: str,
    body: RecordUpdate,
    request: Request,
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
    records: RecordStore = Depends(get_record_store),
):
    changes = body.model_dump(mode="json", exclude_unset=True)
    changes = {k: v for k, v in changes.items() if v is not None or k == "description"}
    if "description" in changes:
        changes["description"] = (changes["description"] or "").strip() or None
    try:
        rec = records.update(session, record_id, changes)
    except RecordNotFound:
        raise _not_found()
    except PersistenceError as e:
        raise _persistence_http_error(e)
    audit(db, "record_update", session.user_id, client_ip(request), record_id=record_id)
    return rec


@router.delete("/{record_id}")
def delete_record(
    record_id: str,
    request: Request,
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
    records: RecordStore = Depends(get_record_store),
):
    """Deletes the row only; the stored blob stays in the object store."""
    try:
        records.delete(session, record_id)
    except RecordNotFound:
        raise _not_found()
    except PersistenceError as e:
        raise _persistence_http_error(e)
    audit(db, "record_delete", session.user_id, client_ip(request), record_id=record_id)
    return {"ok": True, "id": record_id}


@router.post("/{record_id}/analyze", response_model=RecordResponse)
async def analyze_record(
    record_id: str,
    request: Request,
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
    records: RecordStore = Depends(get_record_store),
    analyzer=Depends(get_pipeline_analyzer),
    object_store: ObjectStore = Depends(get_object_store),
):
    try:
        rec = await reanalyze_record(session, record_id, analyzer, object_store, records)
    except RecordNotFound:
        raise _not_found()
    except RecordPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReanalysisError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except PersistenceError as e:
        raise _persistence_http_error(e)
    audit(db, "record_reanalyze", session.user_id, client_ip(request), record_id=record_id)
    return rec


def _summary_document(rec: MedicalRecord) -> dict:
    return {
        "title": rec.title,
        "category": rec.category,
        "date": rec.created_at.isoformat(),
        "description": rec.description,
        "summary": rec.summary,
        "keyFindings": rec.key_findings,
        "medications": rec.medications,
        "recommendations": rec.recommendations,
        "urgencyLevel": rec.urgency_level,
    }


@router.get("/{record_id}/download")
async def download_record(
    record_id: str,
    session: SessionContext = Depends(get_session_context),
    records: RecordStore = Depends(get_record_store),
    object_store: ObjectStore = Depends(get_object_store),
):
    """Original file when it was stored; otherwise a JSON summary of the record."""
    try:
        rec = records.get(session, record_id)
    except RecordNotFound:
        raise _not_found()
    if rec.file_path:
        try:
            content = await object_store.download(rec.file_path)
        except StorageError as e:
            log.warning("Download of record %s failed: %s", record_id, e)
            raise HTTPException(status_code=404, detail="Stored file is no longer available.")
        filename = sanitize_filename(rec.file_name or rec.file_path.rsplit("/", 1)[-1])
        return Response(
            content=content,
            media_type=rec.file_type or "application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    name = re.sub(r"[^a-z0-9]", "_", rec.title, flags=re.IGNORECASE).lower()
    return Response(
        content=json.dumps(_summary_document(rec), indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{name}_summary.json"'},
    )
