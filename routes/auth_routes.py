import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field
from passlib.context import CryptContext
from jose import jwt
from jose.exceptions import JWTError

from utils.firebase import get_db
from utils.room_store import find_user_by_email, load_user, save_user
from google.cloud.firestore import Client as FirestoreClient
from models import User, now_utc

logger = logging.getLogger(__name__)

# ─── Token settings ────────────────────────────────────────────────────────────
SECRET_KEY       = os.getenv("SECRET_KEY", "changeme")
ALGORITHM        = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_MIN = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "10080"))
MIN_PASSWORD_LEN = 8

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")
router  = APIRouter()

# auto_error is off so a missing header becomes our own 401 envelope
bearer_scheme = HTTPBearer(auto_error=False)


# ─── Request / response bodies ─────────────────────────────────────────────────
class SignupRequest(BaseModel):
    email:            EmailStr
    username:         str = Field(..., min_length=1, max_length=40)
    password:         str
    confirm_password: str

class LoginRequest(BaseModel):
    email:    EmailStr
    password: str

class Token(BaseModel):
    access_token: str
    token_type:   str = "bearer"

class PublicUser(BaseModel):
    user_id:    str
    email:      EmailStr
    username:   str
    created_at: datetime
    last_login: datetime


def create_jwt(user_id: str) -> str:
    expire  = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_MIN)
    return jwt.encode({"sub": user_id, "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


# ─── POST /auth/register ───────────────────────────────────────────────────────
@router.post("/register", response_model=PublicUser, status_code=status.HTTP_201_CREATED)
async def register(
    payload: SignupRequest,
    db:      FirestoreClient = Depends(get_db),
):
    if payload.password != payload.confirm_password:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Passwords do not match")
    if len(payload.password) < MIN_PASSWORD_LEN:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"Password must be at least {MIN_PASSWORD_LEN} characters",
        )
    if find_user_by_email(db, payload.email) is not None:
        raise HTTPException(status.HTTP_409_CONFLICT, "User already exists")

    user = User(
        email    = payload.email.lower(),
        password = pwd_ctx.hash(payload.password),
        username = payload.username.strip(),
    )
    save_user(db, user)
    logger.info("Registered user %s", user.user_id)
    return PublicUser(**user.model_dump())


# ─── POST /auth/login ──────────────────────────────────────────────────────────
@router.post("/login", response_model=Token)
async def login(
    payload: LoginRequest,
    db:      FirestoreClient = Depends(get_db),
):
    user = find_user_by_email(db, payload.email)
    if user is None or not pwd_ctx.verify(payload.password, user.password):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Incorrect email or password")

    user.last_login = now_utc()
    save_user(db, user)
    return Token(access_token=create_jwt(user.user_id))


# ─── Dependency: the calling user ──────────────────────────────────────────────
async def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db:    FirestoreClient                        = Depends(get_db),
) -> User:
    if creds is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    try:
        claims = jwt.decode(creds.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    user_id = claims.get("sub")
    user = load_user(db, user_id) if user_id else None
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "User not found")
    return user


@router.get("/me", response_model=PublicUser)
async def me(current: User = Depends(get_current_user)):
    return PublicUser(**current.model_dump())
