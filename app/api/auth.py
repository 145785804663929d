from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import client_ip, limiter
from app.core.security import create_access_token, hash_password, verify_password
from app.api.deps import audit, get_current_user
from app.models import User
from app.models.user import generate_med_id
from app.schemas import Token, UserCreate, UserLogin, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])
_AUTH_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"
_REGISTER_LIMIT = f"{settings.rate_limit_register_per_minute}/minute;100/hour"


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        med_id=user.med_id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        user_type=user.user_type,
    )


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    msg = err.get("msg") or "Invalid request."
    return msg.removeprefix("Value error, ")


@router.post("/register", response_model=UserResponse)
@limiter.limit(_REGISTER_LIMIT)
async def register(
    request: Request,
    db: Session = Depends(get_db),
):
    form = await request.form()
    try:
        data = UserCreate(
            email=(form.get("email") or "").strip(),
            password=form.get("password") or "",
            first_name=(form.get("first_name") or "").strip(),
            last_name=(form.get("last_name") or "").strip(),
            user_type=(form.get("user_type") or "citizen").strip(),
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=_first_error(e))
    if db.exec(select(User).where(User.email == data.email)).first():
        raise HTTPException(status_code=400, detail="This e-mail address is already registered.")
    user = User(
        email=data.email,
        hashed_password=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        user_type=data.user_type,
        med_id=generate_med_id(data.user_type),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    audit(db, "register", user.id, client_ip(request))
    return _user_response(user)


@router.post("/login", response_model=Token)
@limiter.limit(_AUTH_RATE_LIMIT)
async def login(
    request: Request,
    db: Session = Depends(get_db),
):
    form = await request.form()
    try:
        data = UserLogin(email=(form.get("email") or "").strip(), password=form.get("password") or "")
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=_first_error(e))
    user = db.exec(select(User).where(User.email == data.email)).first()
    if not user or not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Incorrect e-mail or password.")
    audit(db, "login", user.id, client_ip(request))
    return Token(access_token=create_access_token(user.id, user.user_type))


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return _user_response(user)
