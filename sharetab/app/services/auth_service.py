"""
services/auth_service.py — Accounts, sign-in sessions and tokens.

  register_user         new account (email unique in any letter case), signed in
  login_user            email + password → token pair
  refresh_access_token  live refresh token → new access token
  logout_user           sign out: revoke one of the account's refresh tokens
  get_current_user      profile of the signed-in account

Tokens:
  access   JWT (HS256 by default) with sub = account id; short-lived, not stored
  refresh  64 hex chars handed to the client once; only its SHA-256 digest
           is stored. Revoked on sign-out, never rotated.

Like the other services this module flushes and never commits. It reads
current_app.config for secrets, lifetimes and the bcrypt cost, so it runs
inside an app context; the integration suite covers it.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sharetab.app.errors import AppError, ErrorCode
from sharetab.app.models.refresh_token import RefreshToken
from sharetab.app.models.user import User
from sharetab.app.services.friend_service import normalize_email

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _digest(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _aware(value: datetime) -> datetime:
    # SQLite returns naive datetimes even for timezone-aware columns.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ── Passwords ──────────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


# ── Tokens ─────────────────────────────────────────────────────────────────

def _access_token(account_id: uuid.UUID) -> str:
    issued = _now()
    claims = {
        "sub": str(account_id),
        "iat": issued,
        "exp": issued + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"],
        "jti": secrets.token_hex(8),  # two tokens in the same second still differ
    }
    return jwt.encode(
        claims,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def issue_tokens(account_id: uuid.UUID, session: Session) -> dict:
    """A fresh access token plus a refresh token whose digest is stored."""
    raw_refresh = secrets.token_hex(32)
    session.add(RefreshToken(
        user_id=account_id,
        token_hash=_digest(raw_refresh),
        expires_at=_now() + current_app.config["JWT_REFRESH_TOKEN_EXPIRES"],
    ))
    session.flush()
    return {"access_token": _access_token(account_id), "refresh_token": raw_refresh}


def _stored_refresh_token(raw_token: str, session: Session) -> RefreshToken | None:
    return session.execute(
        select(RefreshToken).where(RefreshToken.token_hash == _digest(raw_token))
    ).scalar_one_or_none()


def _refresh_token_invalid() -> AppError:
    return AppError(
        ErrorCode.REFRESH_TOKEN_INVALID,
        "The refresh token is unknown, expired or revoked.",
        401,
    )


def _profile(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "name": user.display_name,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _duplicate_email(email: str) -> AppError:
    return AppError(
        ErrorCode.DUPLICATE_EMAIL,
        f"An account with the email '{email}' already exists.",
        409,
        field="email",
    )


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        email: str,
        password: str,
        session: Session,
        full_name: str | None = None,
) -> dict:
    """
    Returns {"user": profile, "access_token", "refresh_token"}.

    Raises:
      AppError(DUPLICATE_EMAIL, 409)
    """
    email = normalize_email(email)
    taken = session.execute(select(User.id).where(User.email == email)).scalar_one_or_none()
    if taken is not None:
        raise _duplicate_email(email)

    user = User(
        email=email,
        full_name=(full_name or "").strip() or None,
        password_hash=hash_password(password),
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError:
        # lost a race with a concurrent registration of the same email
        raise _duplicate_email(email)

    logger.info("Registered account %s", user.id)
    return {"user": _profile(user), **issue_tokens(user.id, session)}


def login_user(email: str, password: str, session: Session) -> dict:
    """
    Raises:
      AppError(INVALID_CREDENTIALS, 401) — for an unknown email and a wrong
      password alike.
    """
    user = session.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalar_one_or_none()

    if user is None or not check_password(password, user.password_hash):
        raise AppError(ErrorCode.INVALID_CREDENTIALS, "Wrong email or password.", 401)

    return {"user": _profile(user), **issue_tokens(user.id, session)}


def refresh_access_token(raw_refresh_token: str, session: Session) -> dict:
    """Raises AppError(REFRESH_TOKEN_INVALID, 401) unless the token is live."""
    record = _stored_refresh_token(raw_refresh_token, session)
    if record is None or record.revoked or _aware(record.expires_at) <= _now():
        raise _refresh_token_invalid()
    return {"access_token": _access_token(record.user_id)}


def logout_user(account_id: uuid.UUID, raw_refresh_token: str, session: Session) -> None:
    """
    Signs out by revoking one of the account's refresh tokens. Access tokens
    already issued stay valid until they expire.

    Raises:
      AppError(REFRESH_TOKEN_INVALID, 401) — unknown, already revoked, or
      issued to another account.
    """
    record = _stored_refresh_token(raw_refresh_token, session)
    if record is None or record.revoked or record.user_id != account_id:
        raise _refresh_token_invalid()

    record.revoked = True
    session.flush()


def get_current_user(user_id: uuid.UUID, session: Session) -> dict:
    """Raises AppError(UNAUTHENTICATED, 401) if the account has been deleted."""
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.UNAUTHENTICATED,
            "The signed-in account no longer exists.",
            401,
        )
    return _profile(user)
