"""
routes/expenses.py — Expense and share route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - STRICT_SHARE_RECONCILIATION is read from config here and passed down;
    the service never touches Flask.

Endpoints (url_prefix=/api/v1):
  GET    /expenses              → 200  expenses visible to the caller
  POST   /expenses              → 201  create expense (warnings on share mismatch)
  DELETE /expenses/:id          → 200  hard delete (creator only)
  POST   /shares/:id/paid       → 200  mark a share paid (expense creator only)
"""

from __future__ import annotations

import uuid

from flask import Blueprint, current_app, g, jsonify, request

from sharetab.app.extensions import db
from sharetab.app.middleware.auth_middleware import require_auth
from sharetab.app.schemas.expense_schema import CreateExpenseSchema
from sharetab.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


@expenses_bp.route("/expenses", methods=["GET"])
@require_auth
def list_expenses():
    """GET /expenses — Newest first, each with resolved shares and the caller's own share."""
    result = expense_service.list_visible_expenses(
        account_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@expenses_bp.route("/expenses", methods=["POST"])
@require_auth
def create_expense():
    """POST /expenses — Record an expense and its shares in one transaction."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense, warnings = expense_service.create_expense(
        account_id=g.user_id,
        title=data["title"],
        description=data.get("description"),
        total_amount=data["amount"],
        group_id=data.get("group_id"),
        split_mode=data["split_mode"],
        participants=data.get("participants"),
        shares=data.get("shares"),
        strict=current_app.config.get("STRICT_SHARE_RECONCILIATION", False),
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": expense, "warnings": warnings}), 201


@expenses_bp.route("/expenses/<uuid:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: uuid.UUID):
    """DELETE /expenses/:id — Remove the expense and its shares. Creator only."""
    expense_service.delete_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": {"deleted": True, "expense_id": expense_id}, "warnings": []}), 200


@expenses_bp.route("/shares/<uuid:share_id>/paid", methods=["POST"])
@require_auth
def mark_share_paid(share_id: uuid.UUID):
    """POST /shares/:id/paid — Mark a share settled. Idempotent."""
    result = expense_service.mark_share_paid(
        share_id=share_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
