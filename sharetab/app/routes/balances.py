"""
routes/balances.py — Balance route handler.

Endpoint (url_prefix=/api/v1/balances):
  GET /balances → 200  {summary, friends, groups}

Read-only: no commit.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from sharetab.app.extensions import db
from sharetab.app.middleware.auth_middleware import require_auth
from sharetab.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("", methods=["GET"])
@require_auth
def get_balances():
    """
    GET /balances

    summary: total owed to the caller, total the caller owes, and the net.
    friends: per-friend balance, positive when the friend owes the caller.
    groups:  the caller's net position in each group they belong to.
    """
    result = balance_service.get_balance_response(
        account_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
