"""
routes/groups.py — Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (url_prefix=/api/v1/groups):
  POST   /groups                          → 201  create group (+ best-effort members)
  GET    /groups                          → 200  list caller's groups
  GET    /groups/:id                      → 200  get group + members
  DELETE /groups/:id                      → 200  delete group and its expenses (owner only)
  POST   /groups/:id/members              → 201  add member by email (owner only)
  DELETE /groups/:id/members/:member_id   → 200  remove member (owner, or self)
"""

from __future__ import annotations

import uuid

from flask import Blueprint, g, jsonify, request

from sharetab.app.errors import WarningCode, warning
from sharetab.app.extensions import db
from sharetab.app.middleware.auth_middleware import require_auth
from sharetab.app.schemas.group_schema import AddMemberSchema, CreateGroupSchema
from sharetab.app.services import group_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("", methods=["POST"])
@require_auth
def create_group():
    """
    POST /groups — Create a group. The caller becomes owner and first member.

    Members that cannot be attached do not fail the request: they are listed
    under data.member_results.failed and flagged with a PARTIAL_FAILURE warning.
    """
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    group, outcome = group_service.create_group(
        owner_id=g.user_id,
        name=data["name"],
        members=data["members"],
        session=db.session,
    )
    db.session.commit()

    warnings = []
    if not outcome.ok:
        warnings.append(warning(
            WarningCode.PARTIAL_FAILURE,
            f"{len(outcome.failed)} member(s) could not be added to the group.",
            failed=[f.to_dict() for f in outcome.failed],
        ))

    return jsonify({
        "data": {**group, "member_results": outcome.to_dict()},
        "warnings": warnings,
    }), 201


@groups_bp.route("", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — Groups with the caller, or one of their manual friends, in them."""
    result = group_service.list_groups(
        account_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<uuid:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: uuid.UUID):
    """GET /groups/:id — Group details with member list. Caller must be a member."""
    result = group_service.get_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<uuid:group_id>", methods=["DELETE"])
@require_auth
def delete_group(group_id: uuid.UUID):
    """DELETE /groups/:id — Delete the group, its expenses and members. Owner only."""
    group_service.delete_group(
        group_id=group_id,
        requester_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": {"deleted": True, "group_id": group_id}, "warnings": []}), 200


@groups_bp.route("/<uuid:group_id>/members", methods=["POST"])
@require_auth
def add_member(group_id: uuid.UUID):
    """POST /groups/:id/members — Add a registered user by email. Owner only."""
    data = AddMemberSchema().load(request.get_json(force=True) or {})
    result = group_service.add_member(
        group_id=group_id,
        caller_id=g.user_id,
        email=data["email"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<uuid:group_id>/members/<uuid:member_id>", methods=["DELETE"])
@require_auth
def remove_member(group_id: uuid.UUID, member_id: uuid.UUID):
    """DELETE /groups/:id/members/:member_id — Owner removes anyone else; a member removes self."""
    group_service.remove_member(
        group_id=group_id,
        caller_id=g.user_id,
        member_id=member_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "removed": True,
            "group_id": group_id,
            "member_id": member_id,
        },
        "warnings": [],
    }), 200
