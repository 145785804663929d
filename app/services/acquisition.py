"""Validation gate for documents entering the upload pipeline (picked files and camera captures)."""
from dataclasses import dataclass
from pathlib import PurePath

ALLOWED_UPLOAD_EXTENSIONS = {".jpg", ".jpeg", ".png", ".pdf", ".doc", ".docx"}
MIME_MAP = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
ALLOWED_MIME_TYPES = set(MIME_MAP.values())
GENERIC_MIME_TYPES = {"", "application/octet-stream"}
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB


class UploadValidationError(Exception):
    """Input rejected before any side effect; `field` names what the user has to fix."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


@dataclass
class AcquiredFile:
    name: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def resolve_content_type(name: str, content_type: str | None) -> str:
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype in GENERIC_MIME_TYPES:
        return MIME_MAP.get(PurePath(name).suffix.lower(), ctype or "application/octet-stream")
    return ctype


def validate_file(
    name: str | None,
    content: bytes,
    content_type: str | None = None,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> AcquiredFile:
    if not name:
        raise UploadValidationError("file", "Please select a file.")
    ext = PurePath(name).suffix.lower()
    ctype = resolve_content_type(name, content_type)
    # The extension decides; a bare name needs an accepted MIME type
    if ext not in ALLOWED_UPLOAD_EXTENSIONS and (ext or ctype not in ALLOWED_MIME_TYPES):
        raise UploadValidationError("file_type", "Please select a valid file type (JPG, PNG, PDF, DOC, DOCX)")
    if len(content) > max_bytes:
        raise UploadValidationError("file_size", f"File size must be less than {max_bytes // (1024 * 1024)}MB")
    if not content:
        raise UploadValidationError("file", "File is empty.")
    return AcquiredFile(name=name, content_type=ctype, content=content)


def suggest_title(filename: str) -> str:
    """File name without its last extension."""
    stem, dot, _ = filename.rpartition(".")
    return stem if dot and stem else filename
