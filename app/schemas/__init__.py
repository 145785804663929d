from .auth import (
    Token,
    UserCreate,
    UserLogin,
    UserResponse,
)
from .record import (
    AnalysisResult,
    RecordCategory,
    RecordResponse,
    RecordStats,
    RecordUpdate,
    UploadResponse,
    UrgencyLevel,
)

__all__ = [
    "AnalysisResult",
    "RecordCategory",
    "RecordResponse",
    "RecordStats",
    "RecordUpdate",
    "Token",
    "UploadResponse",
    "UrgencyLevel",
    "UserCreate",
    "UserLogin",
    "UserResponse",
]
