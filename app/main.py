import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from app.api.analyze import router as analyze_router
from app.api.auth import router as auth_router
from app.api.records import router as records_router
from app.core.config import is_openai_configured, settings
from app.core.database import engine, init_db, ping_db
from app.core.rate_limit import client_ip, limiter
from app.models import AuditLog, ErrorLog
from app.logging import setup_logging

setup_logging(level=settings.log_level)
log = logging.getLogger("medrecord")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


def _ensure_storage_dir() -> Path:
    storage_dir = Path(settings.storage_dir)
    storage_dir.mkdir(parents=True, exist_ok=True)
    return storage_dir


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    _ensure_storage_dir()
    log.info("OPENAI_API_KEY loaded: %s", "yes" if is_openai_configured() else "NO (add OPENAI_API_KEY=sk-... to .env)")
    if settings.analysis_service_url:
        log.info("Uploads analyzed through %s", settings.analysis_service_url)
    yield


app = FastAPI(
    title="MedRecord API",
    description="Personal medical records: upload, AI analysis and storage of medical documents",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    try:
        with Session(engine) as db:
            db.add(AuditLog(event="rate_limit", ip=client_ip(request) or None))
            db.commit()
    except Exception as e:
        log.warning("AuditLog rate_limit write failed: %s", e)
    return _error_response(request, 429, "Too many requests. Please wait a minute and try again.")


def _validation_error_message(exc: RequestValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "Invalid request."
    first = errs[0]
    loc = list(first.get("loc") or [])
    field = str(loc[-1]) if len(loc) > 0 else None
    if first.get("type") == "missing":
        if field == "file":
            return "No file provided"
        if field == "frame":
            return "No camera frame received. Please try capturing again."
        if field == "body":
            return "Request body is missing."
        return f"Missing field: {field}."
    if field == "category":
        return "Invalid category."
    return first.get("msg") or "Invalid request."


def _jsonable_errors(errs: list) -> list:
    # ctx may hold exception instances that JSON cannot carry
    return [{k: v for k, v in e.items() if k in ("type", "loc", "msg")} for e in errs]


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning(
        "Request validation error (422): path=%s method=%s detail=%s",
        request.url.path,
        request.method,
        errs,
    )
    user_msg = _validation_error_message(exc)
    rid = getattr(request.state, "request_id", None)
    body = {"error": user_msg, "status_code": 422, "detail": _jsonable_errors(errs)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=exc)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                request_id=getattr(request.state, "request_id", None),
                user_id=None,
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace="".join(traceback.format_exception(exc))[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    path = (request.url.path or "").strip()
    if path.startswith("/api/analyze") or path.endswith("/analyze"):
        user_msg = "Analysis failed."
    else:
        user_msg = "Unexpected server error."
    return _error_response(request, 500, user_msg)


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(records_router)
app.include_router(analyze_router)

# Public URLs of stored blobs (LocalObjectStore.get_public_url); an absolute URL means another host serves them
if settings.storage_public_url.startswith("/"):
    app.mount(
        settings.storage_public_url.rstrip("/") or "/files",
        StaticFiles(directory=str(_ensure_storage_dir()), check_dir=False),
        name="files",
    )


@app.get("/health")
def health():
    return {
        "status": "ok",
        "openai_configured": is_openai_configured(),
        "database": "ok" if ping_db() else "error",
    }
