"""
Camera capture for the upload pipeline.

A CameraSession holds one CaptureDevice exclusively from open() to close();
it is a context manager so the device is released on every exit path.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from app.services.acquisition import AcquiredFile

logger = logging.getLogger(__name__)

JPEG_QUALITY = 90


class CaptureErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"
    BUSY = "busy"
    CAPTURE_FAILED = "capture_failed"


_CAPTURE_MESSAGES = {
    CaptureErrorKind.PERMISSION_DENIED: "Camera access denied. Please allow camera permissions and try again.",
    CaptureErrorKind.NOT_FOUND: "No camera found on this device.",
    CaptureErrorKind.NOT_READY: "Camera not ready. Please wait a moment and try again.",
    CaptureErrorKind.BUSY: "Camera is already in use.",
    CaptureErrorKind.CAPTURE_FAILED: "Failed to capture photo. Please try again.",
}


class CaptureError(Exception):
    """Camera problem the user can retry."""

    def __init__(self, kind: CaptureErrorKind, message: str | None = None):
        self.kind = kind
        self.message = message or _CAPTURE_MESSAGES[kind]
        super().__init__(self.message)


class CaptureDevice(ABC):
    held: bool = False

    @abstractmethod
    def start(self) -> None:
        """Acquires the video source; raises CaptureError (PERMISSION_DENIED / NOT_FOUND)."""

    @abstractmethod
    def frame_size(self) -> tuple[int, int]:
        """(width, height) of the current decodable frame, (0, 0) until there is one."""

    @abstractmethod
    def read_frame(self) -> Image.Image: ...

    @abstractmethod
    def stop(self) -> None: ...


class FrameBufferDevice(CaptureDevice):
    """Device fed with encoded frames pushed by a browser camera."""

    def __init__(self):
        self._started = False
        self._frame: Image.Image | None = None

    def start(self) -> None:
        self._started = True

    def push_frame(self, data: bytes) -> bool:
        """Keeps the frame if it decodes; returns whether the device is now ready."""
        if not self._started:
            return False
        try:
            img = Image.open(BytesIO(data))
            img.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            logger.warning("Dropped undecodable camera frame (%s bytes): %s", len(data), e)
            return self._frame is not None
        self._frame = img
        return True

    def frame_size(self) -> tuple[int, int]:
        if not self._started or self._frame is None:
            return (0, 0)
        return self._frame.size

    def read_frame(self) -> Image.Image:
        if self._frame is None:
            raise CaptureError(CaptureErrorKind.NOT_READY)
        return self._frame.copy()

    def stop(self) -> None:
        self._started = False
        self._frame = None


def captured_filename(now: datetime | None = None) -> str:
    """medical_document_<UTC ISO timestamp with ':' and '.' as '-'>.jpg"""
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S") + f".{now.microsecond // 1000:03d}Z"
    return "medical_document_" + stamp.replace(":", "-").replace(".", "-") + ".jpg"


class CameraSession:
    def __init__(self, device: CaptureDevice):
        self.device = device
        self.active = False

    def open(self) -> "CameraSession":
        if self.device.held:
            raise CaptureError(CaptureErrorKind.BUSY)
        self.device.start()
        self.device.held = True
        self.active = True
        return self

    def ready(self) -> bool:
        width, height = self.device.frame_size()
        return self.active and width > 0 and height > 0

    def capture(self, now: datetime | None = None) -> AcquiredFile:
        """One still frame as a JPEG file. Does not close the session."""
        if not self.ready():
            raise CaptureError(CaptureErrorKind.NOT_READY)
        frame = self.device.read_frame()
        buf = BytesIO()
        try:
            frame.convert("RGB").save(buf, format="JPEG", quality=JPEG_QUALITY)
        except (OSError, ValueError) as e:
            raise CaptureError(CaptureErrorKind.CAPTURE_FAILED) from e
        return AcquiredFile(name=captured_filename(now), content_type="image/jpeg", content=buf.getvalue())

    def close(self) -> None:
        if not self.active:
            return
        try:
            self.device.stop()
        finally:
            self.device.held = False
            self.active = False

    def __enter__(self) -> "CameraSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
