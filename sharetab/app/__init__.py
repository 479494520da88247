"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances and `alembic` can import the models without a server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  3. Register all route blueprints under /api/v1
  4. Register global error handlers (AppError → JSON, Exception → 500)
  5. Serialise Decimal and UUID as strings in every JSON response
  6. Create the app's ChangeFeed and connect it to db.session

Model imports happen inside create_app() so SQLAlchemy's metadata is
populated before anything inspects it.
"""

from __future__ import annotations

import logging
import traceback
import uuid
from decimal import Decimal

from flask import Flask, current_app, has_app_context, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from sqlalchemy.orm import Session
from werkzeug.exceptions import HTTPException

from sharetab.config import config_by_name, validate_production_config


class DecimalJSONProvider(DefaultJSONProvider):
    """
    Money goes over the wire as a string, never a float:
    Decimal("10.50") → "10.50". UUIDs are sent in their canonical form.
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, uuid.UUID):
            return str(o)
        return super().default(o)


class _CurrentAppFeed:
    """
    Forwards published table names to the ChangeFeed of whichever app is
    active. db.session is shared by every app built in this process, so its
    listeners are installed once and resolve the feed per commit.
    """

    def publish(self, tables) -> None:
        if not has_app_context():
            return
        feed = current_app.extensions.get("change_feed")
        if feed is not None:
            feed.publish(tables)


_session_tracking_installed = False


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Unknown names fall back to "development".
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    from sharetab.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    with app.app_context():
        from sharetab.app.models import (  # noqa: F401
            expense,
            expense_share,
            friendship,
            group,
            group_member,
            manual_friend,
            refresh_token,
            user,
        )

    _register_change_feed(app, db)
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _configure_logging(app: Flask) -> None:
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    app.logger.setLevel(level)
    logging.getLogger("sharetab").setLevel(level)


def _register_change_feed(app: Flask, db) -> None:
    """
    Every app gets its own ChangeFeed in app.extensions["change_feed"].
    Commits on db.session publish the tables they wrote to it.
    """
    from sharetab.app.services.change_feed import ChangeFeed, track_session_changes

    global _session_tracking_installed

    app.extensions["change_feed"] = ChangeFeed()
    if not _session_tracking_installed:
        track_session_changes(db.session, _CurrentAppFeed())
        _session_tracking_installed = True


def watch_balances(app: Flask, account_id: uuid.UUID):
    """
    Keeps GET /balances' payload for account_id up to date in memory.

    Returns a BalanceRefresher subscribed to the app's change feed; read
    `.result` for the latest payload and call `.close()` when done. Each
    refresh runs in its own session, after the triggering commit, debounced
    by CHANGE_DEBOUNCE_SECONDS.
    """
    from sharetab.app.extensions import db
    from sharetab.app.services import balance_service
    from sharetab.app.services.change_feed import BalanceRefresher

    def compute() -> dict:
        with app.app_context():
            with Session(db.engine) as session:
                return balance_service.get_balance_response(account_id, session)

    refresher = BalanceRefresher(
        app.extensions["change_feed"],
        compute,
        window=app.config.get("CHANGE_DEBOUNCE_SECONDS", 0.3),
    )
    refresher.refresh()
    return refresher


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so individual route files only specify the
    path relative to their resource.
    """
    from sharetab.app.routes.auth import auth_bp
    from sharetab.app.routes.balances import balances_bp
    from sharetab.app.routes.expenses import expenses_bp
    from sharetab.app.routes.friends import friends_bp
    from sharetab.app.routes.groups import groups_bp

    app.register_blueprint(auth_bp,     url_prefix="/api/v1/auth")
    app.register_blueprint(friends_bp,  url_prefix="/api/v1/friends")
    app.register_blueprint(groups_bp,   url_prefix="/api/v1/groups")
    # expenses_bp owns both /expenses and /shares, so it sits at /api/v1.
    app.register_blueprint(expenses_bp, url_prefix="/api/v1")
    app.register_blueprint(balances_bp, url_prefix="/api/v1/balances")


def _first_validation_message(messages) -> tuple[str | None, str]:
    """
    Walks marshmallow's (possibly nested) messages to the first leaf.

    Returns (field path, message). Nested fields are joined with dots,
    e.g. "members.1.id". Schema-level errors carry no field.
    """
    path: list[str] = []
    node = messages
    while isinstance(node, dict) and node:
        key, node = next(iter(node.items()))
        if key != "_schema":
            path.append(str(key))
    while isinstance(node, list) and node:
        node = node[0]
        if isinstance(node, dict):
            nested_field, message = _first_validation_message(node)
            if nested_field:
                path.append(nested_field)
            return ".".join(path) or None, message

    message = node if isinstance(node, str) and node else "Invalid input."
    return ".".join(path) or None, message


def _register_error_handlers(app: Flask) -> None:
    """
    AppError        → structured JSON error envelope with its HTTP status
    ValidationError → the FIRST schema error as MISSING_FIELD / INVALID_FIELD
                      or the ErrorCode the schema raised (400)
    Exception       → INTERNAL_ERROR (500); traceback logged, never returned
    """
    from sharetab.app.errors import AppError, ErrorCode
    from sharetab.app.extensions import db

    known_codes = {v for k, v in vars(ErrorCode).items() if not k.startswith("_")}

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        db.session.rollback()
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        field, raw_message = _first_validation_message(error.messages)

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        body = {"error": {"code": code, "message": message}}
        if field is not None:
            body["error"]["field"] = field
        return jsonify(body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return error  # 404 / 405 from routing keep their status
        db.session.rollback()
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """CORS for local development: reflect the origin when DEBUG or TESTING."""

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if app.config.get("DEBUG") or app.config.get("TESTING"):
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        return response


def _code_to_message(code: str) -> str:
    """Default message for a schema error whose message IS an ErrorCode."""
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_SPLIT_MODE": "split_mode must be 'equal' or 'custom'.",
        "SHARES_SENT_FOR_EQUAL_MODE": "Do not send a shares array when split_mode is 'equal'.",
        "DUPLICATE_SHARE_PERSON": "The same person appears more than once.",
    }
    return _messages.get(code, "Invalid input.")
