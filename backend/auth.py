"""
Email/password authentication backed by database sessions.

Clients receive an opaque session token in the ``set-auth-token`` header (and
a cookie for browsers) and send it back as ``Authorization: Bearer <token>``.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field
from werkzeug.security import check_password_hash, generate_password_hash

from backend.config import get_settings
from backend.db import DbClient, SessionRecord, UserRecord, utcnow
from backend.dependencies import get_db_client
from backend.schemas import AuthResponse, SessionResponse, SessionSchema, UserSchema

logger = logging.getLogger(__name__)

CREDENTIAL_PROVIDER = "credential"
SESSION_COOKIE = "listwell.session_token"
AUTH_TOKEN_HEADER = "set-auth-token"
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

router = APIRouter(prefix="/auth")


class AuthError(Exception):
    pass


class SignUpPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str


class SignInPayload(BaseModel):
    email: str
    password: str


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def extract_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(SESSION_COOKIE) or None


def create_user_with_password(
    db: DbClient, name: str, email: str, password: str
) -> UserRecord:
    if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
        raise AuthError(
            f"Password must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters"
        )
    email = _normalize_email(email)
    if db.get_user_by_email(email):
        raise AuthError("User already exists")
    user = db.create_user(name.strip(), email)
    db.create_account(
        user.id,
        CREDENTIAL_PROVIDER,
        account_id=user.id,
        password=generate_password_hash(password),
    )
    return user


def authenticate(db: DbClient, email: str, password: str) -> Optional[UserRecord]:
    user = db.get_user_by_email(_normalize_email(email))
    if not user:
        return None
    account = db.get_account(user.id, CREDENTIAL_PROVIDER)
    if not account or not account.password:
        return None
    if not check_password_hash(account.password, password):
        return None
    return user


def start_session(db: DbClient, user: UserRecord, request: Request) -> SessionRecord:
    settings = get_settings()
    return db.create_session(
        user.id,
        token=secrets.token_urlsafe(32),
        expires_at=utcnow() + timedelta(seconds=settings.session_ttl_seconds),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def _attach_token(response: Response, session: SessionRecord) -> None:
    settings = get_settings()
    response.headers[AUTH_TOKEN_HEADER] = session.token
    response.set_cookie(
        SESSION_COOKIE,
        session.token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.api_url.startswith("https"),
    )


def resolve_session(
    db: DbClient, token: Optional[str]
) -> tuple[Optional[SessionRecord], Optional[UserRecord]]:
    if not token:
        return None, None
    session = db.get_session_by_token(token)
    if not session:
        return None, None
    user = db.get_user(session.user_id)
    if not user:
        return None, None
    return session, user


def require_user(
    request: Request, db: DbClient = Depends(get_db_client)
) -> UserRecord:
    """FastAPI dependency returning the signed-in user or raising 401."""
    _, user = resolve_session(db, extract_token(request))
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


@router.post("/sign-up/email", response_model=AuthResponse)
def sign_up_email(
    payload: SignUpPayload,
    request: Request,
    response: Response,
    db: DbClient = Depends(get_db_client),
):
    try:
        user = create_user_with_password(db, payload.name, payload.email, payload.password)
    except AuthError as exc:
        status = 409 if str(exc) == "User already exists" else 400
        raise HTTPException(status_code=status, detail=str(exc))
    session = start_session(db, user, request)
    _attach_token(response, session)
    logger.info("User %s signed up", user.id)
    return AuthResponse(token=session.token, user=UserSchema.model_validate(user))


@router.post("/sign-in/email", response_model=AuthResponse)
def sign_in_email(
    payload: SignInPayload,
    request: Request,
    response: Response,
    db: DbClient = Depends(get_db_client),
):
    user = authenticate(db, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    session = start_session(db, user, request)
    _attach_token(response, session)
    return AuthResponse(token=session.token, user=UserSchema.model_validate(user))


@router.post("/sign-out")
def sign_out(
    request: Request, response: Response, db: DbClient = Depends(get_db_client)
):
    token = extract_token(request)
    if token:
        db.delete_session(token)
    response.delete_cookie(SESSION_COOKIE)
    return {"success": True}


@router.get("/get-session", response_model=Optional[SessionResponse])
def get_session(request: Request, db: DbClient = Depends(get_db_client)):
    session, user = resolve_session(db, extract_token(request))
    if not session or not user:
        return None
    return SessionResponse(
        session=SessionSchema.model_validate(session),
        user=UserSchema.model_validate(user),
    )
