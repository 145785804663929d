"""Health endpoint and shared response plumbing."""
import warnings
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

APP_DIR = Path(__file__).resolve().parent.parent / "app"


def test_health_returns_ok(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    j = r.json()
    assert j.get("status") == "ok"
    assert j.get("openai_configured") is False
    assert j.get("database") == "ok"


def test_responses_carry_request_id(client: TestClient):
    r = client.get("/health")
    assert r.headers.get("X-Request-ID")


def test_error_body_shape(client: TestClient):
    r = client.get("/records")
    assert r.status_code == 401
    j = r.json()
    assert set(j) == {"error", "status_code", "request_id"}
    assert j["request_id"] == r.headers["X-Request-ID"]


@pytest.mark.parametrize("source", sorted(APP_DIR.rglob("*.py")), ids=lambda p: str(p.relative_to(APP_DIR)))
def test_app_sources_compile_without_warnings(source: Path):
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source.read_text(encoding="utf-8"), str(source), "exec")
