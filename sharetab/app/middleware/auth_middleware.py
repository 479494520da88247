"""
middleware/auth_middleware.py — Bearer-token authentication for routes.

@require_auth resolves the caller before the view runs and stores the
account id (uuid.UUID) in flask.g.user_id. It answers "who is calling"
only: every failure here is a 401. Whether that account may touch a group,
expense or share is decided in the services (FORBIDDEN, 403).

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — not "Bearer <jwt>", bad signature, or no usable sub
  TOKEN_EXPIRED  (401) — the exp claim has passed
"""

from __future__ import annotations

import functools
import uuid
from typing import Callable

import jwt
from flask import current_app, g, request

from sharetab.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Usage:
        @friends_bp.route("", methods=["GET"])
        @require_auth
        def list_friends():
            account_id = g.user_id
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = _account_id_from_token(_bearer_token())
        return f(*args, **kwargs)

    return decorated


def _invalid(message: str) -> AppError:
    return AppError(ErrorCode.TOKEN_INVALID, message, 401)


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    if not header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Sign in first: send 'Authorization: Bearer <access token>'.",
            401,
        )

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _invalid("The Authorization header must look like 'Bearer <access token>'.")
    return token


def _account_id_from_token(token: str) -> uuid.UUID:
    try:
        claims = jwt.decode(
            token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired; exchange the refresh token at POST /auth/refresh.",
            401,
        )
    except jwt.InvalidTokenError:
        raise _invalid("The access token could not be verified.")

    try:
        return uuid.UUID(str(claims["sub"]))
    except (KeyError, ValueError):
        raise _invalid("The access token does not name an account.")
