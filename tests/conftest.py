"""Pytest fixtures: test client, test DB (in-memory SQLite), fake collaborators."""
import asyncio
import os
import tempfile
import uuid
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# In-memory SQLite and a throwaway storage dir; must be set before the app is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="medrecord-test-"))
# No OpenAI key: analysis goes through fakes or returns the degraded result
os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_API_KEYS"] = ""
os.environ["ANALYSIS_SERVICE_URL"] = ""
# High limits so the whole suite fits in one rate-limit window
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")
os.environ.setdefault("RATE_LIMIT_REGISTER_PER_MINUTE", "100")

from sqlmodel import Session

from app.core.database import engine, init_db
from app.core.security import hash_password
from app.core.session import SessionContext
from app.main import app
from app.models import User
from app.models.user import generate_med_id
from app.schemas import AnalysisResult
from app.services.storage import ObjectStore, StorageError


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (8, 8)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


class FakeAnalyzer:
    """Stands in for DocumentAnalyzer; records every call."""

    def __init__(self, result: AnalysisResult | None = None, error: Exception | None = None, delay: float = 0.0):
        self.result = result or AnalysisResult(
            summary="Complete blood count within normal limits.",
            key_findings=["Hemoglobin low"],
            medications=[],
            recommendations=["Follow up"],
            urgency_level="medium",
            document_type="lab-report",
        )
        self.error = error
        self.delay = delay
        self.configured = True
        self.calls: list[tuple[str, str, int]] = []

    async def analyze(self, content: bytes, content_type: str, filename: str) -> AnalysisResult:
        self.calls.append((filename, content_type, len(content)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class MemoryObjectStore(ObjectStore):
    def __init__(self, fail_upload: bool = False, fail_download: bool = False):
        self.blobs: dict[str, bytes] = {}
        self.fail_upload = fail_upload
        self.fail_download = fail_download
        self.calls: list[str] = []
        self.deleted: list[str] = []

    async def upload(self, path: str, content: bytes, content_type: str | None = None) -> str:
        self.calls.append(f"upload:{path}")
        if self.fail_upload:
            raise StorageError("bucket unavailable")
        self.blobs[path] = content
        return path

    async def download(self, path: str) -> bytes:
        self.calls.append(f"download:{path}")
        if self.fail_download or path not in self.blobs:
            raise StorageError(f"not found: {path}")
        return self.blobs[path]

    async def delete(self, path: str) -> None:
        self.calls.append(f"delete:{path}")
        self.deleted.append(path)
        self.blobs.pop(path, None)

    def get_public_url(self, path: str) -> str:
        return f"https://storage.test/{path}"


@pytest.fixture(scope="function")
def client():
    """TestClient; the lifespan creates the in-memory tables."""
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    init_db()
    with Session(engine) as session:
        yield session


@pytest.fixture
def user(db) -> User:
    u = User(
        email=f"{uuid.uuid4().hex[:10]}@example.com",
        hashed_password="not-used",
        first_name="Ada",
        last_name="Patient",
        med_id=generate_med_id("citizen"),
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture
def session_ctx(user) -> SessionContext:
    return SessionContext(user_id=user.id)


@pytest.fixture
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def memory_store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture(scope="session")
def _auth_token():
    """Registers and logs in once; the token is shared by the whole session."""
    with TestClient(app) as auth_client:
        auth_client.post(
            "/auth/register",
            data={
                "email": "test@example.com",
                "password": "test123456",
                "first_name": "Test",
                "last_name": "User",
            },
        )
        r = auth_client.post(
            "/auth/login",
            data={"email": "test@example.com", "password": "test123456"},
        )
        assert r.status_code == 200, f"Login failed: {r.status_code} {r.text}"
        return r.json().get("access_token")


@pytest.fixture
def auth_headers(_auth_token):
    return {"Authorization": f"Bearer {_auth_token}"}


@pytest.fixture
def make_user_headers(client: TestClient):
    """Factory: a brand-new user per call, so record lists start empty."""

    def _make() -> dict:
        email = f"user-{uuid.uuid4().hex[:8]}@example.com"
        with Session(engine) as s:
            s.add(User(email=email, hashed_password=hash_password("secret123"), med_id=generate_med_id("citizen")))
            s.commit()
        r = client.post("/auth/login", data={"email": email, "password": "secret123"})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    return _make
