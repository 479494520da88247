"""
routes/friends.py — Friend route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Endpoints (url_prefix=/api/v1/friends):
  GET    /friends          → 200  friends with their balances
  POST   /friends          → 201  befriend a registered user by email
  POST   /friends/manual   → 201  create a manual friend
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from sharetab.app.extensions import db
from sharetab.app.middleware.auth_middleware import require_auth
from sharetab.app.schemas.friend_schema import AddFriendSchema, AddManualFriendSchema
from sharetab.app.services import balance_service, friend_service

friends_bp = Blueprint("friends", __name__)


@friends_bp.route("", methods=["GET"])
@require_auth
def list_friends():
    """GET /friends — Registered and manual friends, each with a balance."""
    result = balance_service.get_friends_with_balances(
        account_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@friends_bp.route("", methods=["POST"])
@require_auth
def add_friend():
    """POST /friends — Add a registered user as a friend. Accepted immediately."""
    data = AddFriendSchema().load(request.get_json(force=True) or {})
    result = friend_service.add_friend(
        account_id=g.user_id,
        target_email=data["email"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@friends_bp.route("/manual", methods=["POST"])
@require_auth
def add_manual_friend():
    """POST /friends/manual — Track someone without an account."""
    data = AddManualFriendSchema().load(request.get_json(force=True) or {})
    result = friend_service.add_manual_friend(
        account_id=g.user_id,
        display_name=data["name"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201
