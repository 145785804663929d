import random
import string
import time
import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

_MED_ID_ALPHABET = string.digits + string.ascii_uppercase


def new_id() -> str:
    return str(uuid.uuid4())


def generate_med_id(user_type: str) -> str:
    """Human-readable member id: CT/DR + last 6 digits of the ms clock + 3 random base-36 chars."""
    prefix = "DR" if user_type == "doctor" else "CT"
    stamp = str(int(time.time() * 1000))[-6:]
    suffix = "".join(random.choice(_MED_ID_ALPHABET) for _ in range(3))
    return f"{prefix}{stamp}{suffix}"


class User(SQLModel, table=True):
    __tablename__ = "users"
    id: str = Field(default_factory=new_id, primary_key=True)
    med_id: str = Field(index=True, unique=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    first_name: str = ""
    last_name: str = ""
    user_type: str = "citizen"  # "citizen" | "doctor"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
