"""Validation gate for picked files."""
import pytest

from app.services.acquisition import (
    DEFAULT_MAX_UPLOAD_BYTES,
    UploadValidationError,
    resolve_content_type,
    suggest_title,
    validate_file,
)


@pytest.mark.parametrize(
    "name,content_type",
    [
        ("scan.jpg", "image/jpeg"),
        ("scan.JPEG", "image/jpeg"),
        ("xray.png", "image/png"),
        ("report.pdf", "application/pdf"),
        ("letter.doc", "application/msword"),
        ("letter.docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
    ],
)
def test_accepted_types(name, content_type):
    f = validate_file(name, b"x" * 100, content_type)
    assert f.name == name
    assert f.content_type == content_type
    assert f.size == 100


def test_rejects_disallowed_extension():
    with pytest.raises(UploadValidationError) as exc:
        validate_file("notes.txt", b"hello", "text/plain")
    assert exc.value.field == "file_type"
    assert "JPG, PNG, PDF, DOC, DOCX" in exc.value.message


def test_extension_wins_over_declared_mime():
    with pytest.raises(UploadValidationError):
        validate_file("payload.exe", b"MZ", "application/pdf")


def test_bare_name_needs_accepted_mime():
    assert validate_file("scan", b"x", "image/png").content_type == "image/png"
    with pytest.raises(UploadValidationError):
        validate_file("scan", b"x", "application/zip")


def test_generic_mime_resolved_from_extension():
    f = validate_file("report.pdf", b"%PDF-1.4", "application/octet-stream")
    assert f.content_type == "application/pdf"
    assert resolve_content_type("photo.png", None) == "image/png"
    assert resolve_content_type("photo.png", "image/png; charset=binary") == "image/png"


def test_size_limit_is_inclusive():
    validate_file("big.pdf", b"x" * DEFAULT_MAX_UPLOAD_BYTES, "application/pdf")
    with pytest.raises(UploadValidationError) as exc:
        validate_file("big.pdf", b"x" * (DEFAULT_MAX_UPLOAD_BYTES + 1), "application/pdf")
    assert exc.value.field == "file_size"
    assert exc.value.message == "File size must be less than 10MB"


def test_rejects_missing_or_empty_file():
    with pytest.raises(UploadValidationError):
        validate_file(None, b"x")
    with pytest.raises(UploadValidationError) as exc:
        validate_file("empty.pdf", b"", "application/pdf")
    assert exc.value.message == "File is empty."


@pytest.mark.parametrize(
    "filename,title",
    [
        ("blood_test.pdf", "blood_test"),
        ("scan.final.png", "scan.final"),
        ("noextension", "noextension"),
        (".hidden", ".hidden"),
    ],
)
def test_suggest_title_strips_last_extension(filename, title):
    assert suggest_title(filename) == title
