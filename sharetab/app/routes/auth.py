"""
routes/auth.py — Account and session endpoints.

Handlers load a schema, make one auth_service call, commit when something
was written and wrap the result as {"data": ..., "warnings": []}. AppError
and ValidationError are left to the global handlers.

Endpoints (url_prefix=/api/v1/auth):
  POST   /register   → 201  new account, signed in
  POST   /login      → 200  token pair
  POST   /refresh    → 200  new access token (read-only, no commit)
  POST   /logout     → 200  sign out: revoke the caller's refresh token
  GET    /me         → 200  the signed-in account
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from sharetab.app.extensions import db
from sharetab.app.middleware.auth_middleware import require_auth
from sharetab.app.schemas.auth_schema import LoginSchema, RefreshTokenSchema, RegisterSchema
from sharetab.app.services import auth_service

auth_bp = Blueprint("auth", __name__)


def _body() -> dict:
    return request.get_json(force=True) or {}


@auth_bp.route("/register", methods=["POST"])
def register():
    data = RegisterSchema().load(_body())
    result = auth_service.register_user(
        email=data["email"],
        password=data["password"],
        full_name=data["full_name"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    data = LoginSchema().load(_body())
    result = auth_service.login_user(data["email"], data["password"], session=db.session)
    db.session.commit()  # the new refresh token row
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    data = RefreshTokenSchema().load(_body())
    result = auth_service.refresh_access_token(data["refresh_token"], session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """The refresh token must belong to the signed-in account."""
    data = RefreshTokenSchema().load(_body())
    auth_service.logout_user(g.user_id, data["refresh_token"], session=db.session)
    db.session.commit()
    return jsonify({"data": {"logged_out": True}, "warnings": []}), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    result = auth_service.get_current_user(g.user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200
