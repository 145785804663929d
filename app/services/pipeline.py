"""
Upload pipeline: one user document in, one persisted MedicalRecord out.

    ACQUIRE --acquire()--> DETAILS --submit()--> ANALYZING --> DONE
       ^  +--open_camera()--> ACQUIRE_CAMERA --capture()--/      |
       |                                                        | persistence failure
       +----------------- cancel() ------------ DETAILS <-------+

Analysis and blob upload are best-effort: their failures are logged and the
record is saved with fallback analysis and/or without a file path. Only the
record insert is a commit point; when it fails the pipeline goes back to
DETAILS so the user can retry without picking the file again.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from app.core.config import settings
from app.core.session import SessionContext
from app.models import MedicalRecord
from app.schemas.record import RECORD_CATEGORIES, AnalysisResult
from app.services.acquisition import AcquiredFile, UploadValidationError, suggest_title, validate_file
from app.services.analyze import fallback_analysis, is_unconfigured_analysis
from app.services.camera import CameraSession, CaptureDevice, CaptureError
from app.services.records import PersistenceError, PersistenceErrorKind, RecordStore
from app.services.storage import ObjectStore, build_object_path

logger = logging.getLogger(__name__)


class Analyzer(Protocol):
    configured: bool

    async def analyze(self, content: bytes, content_type: str, filename: str) -> AnalysisResult: ...


class PipelineState(str, Enum):
    ACQUIRE = "acquire"
    ACQUIRE_CAMERA = "acquire_camera"
    DETAILS = "details"
    ANALYZING = "analyzing"
    DONE = "done"


class PipelineStateError(Exception):
    """Operation called in a state that does not allow it."""


class RecordPreconditionError(Exception):
    """The record cannot go through the requested operation as it is."""


class ReanalysisError(Exception):
    """Re-analysis failed; the record was left untouched."""


@dataclass
class PipelineOutcome:
    record: MedicalRecord
    analysis: AnalysisResult
    analysis_fallback: bool
    file_stored: bool


def analysis_fields(analysis: AnalysisResult) -> dict:
    """MedicalRecord columns derived from an analysis."""
    return {
        "summary": analysis.summary or None,
        "ai_analysis": json.dumps(analysis.to_wire()),
        "key_findings": list(analysis.key_findings),
        "medications": list(analysis.medications),
        "recommendations": list(analysis.recommendations),
        "urgency_level": analysis.urgency_level.value,
    }


class UploadPipeline:
    def __init__(
        self,
        session: SessionContext | None,
        analyzer: Analyzer,
        object_store: ObjectStore,
        records: RecordStore,
        *,
        max_upload_bytes: int | None = None,
        timeout: float | None = None,
    ):
        self.session = session
        self.analyzer = analyzer
        self.object_store = object_store
        self.records = records
        self.max_upload_bytes = max_upload_bytes or settings.upload_max_bytes
        self.timeout = timeout or settings.external_call_timeout
        self.state = PipelineState.ACQUIRE
        self.file: AcquiredFile | None = None
        self.title = ""
        self.category = "other"
        self.description = ""
        self.error: Exception | None = None
        self.camera: CameraSession | None = None
        self.outcome: PipelineOutcome | None = None

    def _require(self, *states: PipelineState) -> None:
        if self.state not in states:
            raise PipelineStateError(f"Not allowed while the upload is in state '{self.state.value}'.")

    def _fail(self, err: Exception) -> Exception:
        self.error = err
        return err

    # ACQUIRE

    def acquire(self, name: str | None, content: bytes, content_type: str | None = None) -> AcquiredFile:
        self._require(PipelineState.ACQUIRE)
        self.error = None
        try:
            acquired = validate_file(name, content, content_type, self.max_upload_bytes)
        except UploadValidationError as e:
            raise self._fail(e)
        self.file = acquired
        if not self.title.strip():
            self.title = suggest_title(acquired.name)
        self.state = PipelineState.DETAILS
        return acquired

    # ACQUIRE_CAMERA

    def open_camera(self, device: CaptureDevice) -> CameraSession:
        self._require(PipelineState.ACQUIRE)
        self.error = None
        camera = CameraSession(device)
        try:
            camera.open()
        except CaptureError as e:
            raise self._fail(e)
        self.camera = camera
        self.state = PipelineState.ACQUIRE_CAMERA
        return camera

    def capture(self, now=None) -> AcquiredFile:
        """Captures one frame, releases the camera and runs the frame through the validation gate."""
        self._require(PipelineState.ACQUIRE_CAMERA)
        try:
            captured = self.camera.capture(now)
        except CaptureError as e:
            # camera stays open so the user can retry
            raise self._fail(e)
        self.close_camera()
        return self.acquire(captured.name, captured.content, captured.content_type)

    def close_camera(self) -> None:
        if self.camera is not None:
            camera, self.camera = self.camera, None
            camera.close()
        if self.state is PipelineState.ACQUIRE_CAMERA:
            self.state = PipelineState.ACQUIRE

    # DETAILS

    def update_details(
        self,
        title: str | None = None,
        category: str | None = None,
        description: str | None = None,
    ) -> None:
        self._require(PipelineState.DETAILS)
        if category is not None and category not in RECORD_CATEGORIES:
            raise self._fail(UploadValidationError("category", f"Invalid category: {category}"))
        if title is not None:
            self.title = title
        if category is not None:
            self.category = category
        if description is not None:
            self.description = description

    def change_file(self) -> None:
        self._require(PipelineState.DETAILS)
        self.file = None
        self.state = PipelineState.ACQUIRE

    def cancel(self) -> None:
        if self.state is PipelineState.ANALYZING:
            raise PipelineStateError("An upload that is being saved cannot be cancelled.")
        self.close_camera()
        self.state = PipelineState.ACQUIRE
        self.file = None
        self.title = ""
        self.category = "other"
        self.description = ""
        self.error = None
        self.outcome = None

    # ANALYZING -> DONE

    async def submit(self) -> PipelineOutcome:
        self._require(PipelineState.DETAILS)
        self.error = None
        if not self.title.strip():
            raise self._fail(UploadValidationError("title", "Title is required."))
        if self.file is None:
            raise self._fail(UploadValidationError("file", "Please select a file."))
        if self.session is None:
            raise self._fail(
                PersistenceError(
                    PersistenceErrorKind.AUTH,
                    "You must be signed in to upload files. Please sign in and try again.",
                )
            )

        self.state = PipelineState.ANALYZING
        f = self.file
        file_path = None
        try:
            analysis, used_fallback = await self._analyze(f)
            file_path, file_url = await self._store(f)
            record = MedicalRecord(
                user_id=self.session.user_id,
                title=self.title.strip(),
                category=self.category,
                description=self.description.strip() or None,
                file_name=f.name,
                file_path=file_path,
                file_url=file_url,
                file_size=f.size,
                file_type=f.content_type,
                **analysis_fields(analysis),
            )
            saved = self.records.create(self.session, record)
        except Exception as e:
            logger.warning("Upload of %s not saved: %s", f.name, e)
            if file_path:
                await self._discard_blob(file_path)
            self.error = e
            self.state = PipelineState.DETAILS
            raise

        self.outcome = PipelineOutcome(
            record=saved,
            analysis=analysis,
            analysis_fallback=used_fallback,
            file_stored=file_path is not None,
        )
        self.state = PipelineState.DONE
        logger.info(
            "Record %s saved for user %s (fallback=%s, stored=%s)",
            saved.id, self.session.user_id, used_fallback, file_path is not None,
        )
        return self.outcome

    async def _analyze(self, f: AcquiredFile) -> tuple[AnalysisResult, bool]:
        try:
            result = await asyncio.wait_for(
                self.analyzer.analyze(f.content, f.content_type, f.name),
                timeout=self.timeout,
            )
            return result, False
        except Exception as e:
            logger.warning("Analysis unavailable for %s, using fallback: %s", f.name, str(e) or type(e).__name__)
            return fallback_analysis(f.name, f.content_type, f.size), True

    async def _store(self, f: AcquiredFile) -> tuple[str | None, str | None]:
        path = build_object_path(self.session.user_id, f.name)
        try:
            stored = await asyncio.wait_for(
                self.object_store.upload(path, f.content, f.content_type),
                timeout=self.timeout,
            )
            return stored, self.object_store.get_public_url(stored)
        except Exception as e:
            logger.warning("File upload failed for %s, saving record without file: %s", path, str(e) or type(e).__name__)
            return None, None

    async def _discard_blob(self, path: str) -> None:
        try:
            await asyncio.wait_for(self.object_store.delete(path), timeout=self.timeout)
        except Exception as e:
            logger.warning("Orphaned blob %s could not be removed: %s", path, e)


async def reanalyze_record(
    session: SessionContext,
    record_id: str,
    analyzer: Analyzer,
    object_store: ObjectStore,
    records: RecordStore,
    timeout: float | None = None,
) -> MedicalRecord:
    """Re-runs analysis on a stored blob; the record changes only when download and analysis both succeed."""
    timeout = timeout or settings.external_call_timeout
    rec = records.get(session, record_id)
    if not rec.file_path:
        raise RecordPreconditionError("Cannot analyze record: No file attached.")
    if not analyzer.configured:
        raise ReanalysisError("AI analysis is not configured.")
    try:
        content = await asyncio.wait_for(object_store.download(rec.file_path), timeout=timeout)
    except Exception as e:
        logger.warning("Re-analysis download failed for record %s: %s", record_id, e)
        raise ReanalysisError("Failed to download file for analysis") from e
    try:
        analysis = await asyncio.wait_for(
            analyzer.analyze(content, rec.file_type or "application/octet-stream", rec.file_name or "document"),
            timeout=timeout,
        )
    except Exception as e:
        logger.warning("Re-analysis failed for record %s: %s", record_id, e)
        raise ReanalysisError(f"Analysis failed: {str(e) or type(e).__name__}") from e
    if is_unconfigured_analysis(analysis):
        logger.warning("Re-analysis of record %s returned the degraded result, record left unchanged", record_id)
        raise ReanalysisError("AI analysis is not configured.")
    return records.update(session, record_id, analysis_fields(analysis))
