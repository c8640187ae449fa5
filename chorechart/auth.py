import logging
import os
import secrets
import time
from typing import Optional

from fastapi import Depends, HTTPException, Request
from passlib.context import CryptContext
from sqlmodel import Session, select

from .db import get_session
from .models import Role, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def normalize_username(username: Optional[str]) -> str:
    return (username or "").strip().lower()


def auth_observability_enabled() -> bool:
    return os.getenv("AUTH_OBSERVABILITY") == "1"


def log_auth_event(event: str, **payload) -> None:
    if not auth_observability_enabled():
        return
    logger.info("auth.obs %s %s", event, payload)


def authenticate(session: Session, username: str, password: str) -> Optional[User]:
    started = time.perf_counter()
    username = normalize_username(username)
    if not username or not password:
        log_auth_event("login.rejected", reason="missing_credentials")
        return None
    user = session.exec(select(User).where(User.username == username)).first()
    outcome = None
    if not user or not user.hashed_password:
        outcome = "unknown_user"
    elif not user.is_active:
        outcome = "inactive"
    elif user.is_hidden:
        outcome = "hidden"
    elif not verify_password(password, user.hashed_password):
        outcome = "bad_password"
    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    if outcome:
        log_auth_event("login.rejected", username=username, reason=outcome, elapsed_ms=elapsed_ms)
        return None
    log_auth_event("login.ok", user_id=user.id, role=user.role.value, elapsed_ms=elapsed_ms)
    return user


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    user_id = request.session.get("user_id")
    family_id = request.session.get("family_id")
    if not user_id or not family_id:
        return None
    statement = select(User).where(User.id == user_id, User.family_id == family_id)
    return session.exec(statement).first()


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def require_adult(user: User = Depends(require_user)) -> User:
    if user.role != Role.ADULT:
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


def require_kid(detail: str = "Forbidden"):
    def dependency(user: User = Depends(require_user)) -> User:
        if user.role != Role.KID:
            raise HTTPException(status_code=403, detail=detail)
        return user

    return dependency


def login_user(request: Request, user: User):
    request.session["user_id"] = user.id
    request.session["family_id"] = user.family_id
    request.session["csrf_token"] = secrets.token_hex(16)


def logout_user(request: Request):
    request.session.clear()
