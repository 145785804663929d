import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from app.api.deps import get_document_analyzer
from app.core.config import settings
from app.core.rate_limit import limiter
from app.services.acquisition import resolve_content_type
from app.services.analyze import AnalysisUnavailable, DocumentAnalyzer

log = logging.getLogger("medrecord")

router = APIRouter(prefix="/api", tags=["analysis"])
_ANALYZE_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"


@router.post("/analyze-document")
@limiter.limit(_ANALYZE_RATE_LIMIT)
async def analyze_document(
    request: Request,
    file: UploadFile | None = File(None),
    analyzer: DocumentAnalyzer = Depends(get_document_analyzer),
):
    """
    One document in, one AnalysisResult (camelCase JSON) out.
    Without an OpenAI key the degraded result is returned with 200.
    """
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    content = await file.read()
    if len(content) > settings.upload_max_bytes:
        raise HTTPException(status_code=413, detail=f"File size must be less than {settings.upload_max_mb}MB")
    content_type = resolve_content_type(file.filename, file.content_type)
    log.info("analyze-document: filename=%s type=%s size=%s", file.filename, content_type, len(content))
    try:
        result = await analyzer.analyze(content, content_type, file.filename)
    except AnalysisUnavailable as e:
        log.warning("analyze-document failed for %s: %s", file.filename, e)
        raise HTTPException(status_code=500, detail=str(e) or "Analysis failed.")
    return result.to_wire()
