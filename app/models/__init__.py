from .audit import AuditLog
from .error_log import ErrorLog
from .medical_record import MedicalRecord
from .upload_log import UploadLog
from .user import User

__all__ = [
    "AuditLog",
    "ErrorLog",
    "MedicalRecord",
    "UploadLog",
    "User",
]
