from pydantic import BaseModel, EmailStr, field_validator


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    first_name: str = ""
    last_name: str = ""
    user_type: str = "citizen"

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < 6:
            raise ValueError("Password must be at least 6 characters.")
        return v

    @field_validator("user_type")
    @classmethod
    def known_user_type(cls, v: str) -> str:
        if v not in ("citizen", "doctor"):
            raise ValueError("user_type must be 'citizen' or 'doctor'.")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: str
    med_id: str
    email: str
    first_name: str
    last_name: str
    user_type: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
