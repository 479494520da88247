"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at an in-memory SQLite database unless TEST_DATABASE_URL is set.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - CHANGE_DEBOUNCE_SECONDS is 0 in testing, so balance watchers refresh
    synchronously on commit.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)          → dict with user + tokens
  - auth_headers(token)            → {"Authorization": "Bearer <token>"}
  - add_friend(...)                → HTTP response
  - add_manual_friend(...)         → manual friend record
  - make_group(...)                → HTTP response
  - make_expense(...)              → HTTP response
  - person(record)                 → {"id", "is_manual_friend"} reference

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from sharetab.app import create_app
from sharetab.app.extensions import db as _db

# Children before parents.
_DELETE_ORDER = (
    "expense_shares",
    "expenses",
    "group_members",
    "groups",
    "friendships",
    "manual_friends",
    "refresh_tokens",
    "users",
)


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children first."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            for table in _DELETE_ORDER:
                conn.execute(text(f"DELETE FROM {table}"))
            conn.commit()


@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def strict_mode(app):
    """Turns STRICT_SHARE_RECONCILIATION on for one test."""
    previous = app.config["STRICT_SHARE_RECONCILIATION"]
    app.config["STRICT_SHARE_RECONCILIATION"] = True
    yield
    app.config["STRICT_SHARE_RECONCILIATION"] = previous


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(
    client,
    name: str = "alice",
    email: str | None = None,
    password: str = "Password1",
) -> dict:
    """
    Registers a new account and returns the full response data dict.
    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    if email is None:
        email = f"{name}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={"full_name": name, "email": email, "password": password},
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def add_friend(client, token: str, email: str):
    """Befriends the registered user with this email. Returns the HTTP response."""
    return client.post(
        "/api/v1/friends",
        json={"email": email},
        headers=auth_headers(token),
    )


def add_manual_friend(client, token: str, name: str) -> dict:
    """Creates a manual friend and returns its record."""
    resp = client.post(
        "/api/v1/friends/manual",
        json={"name": name},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"add_manual_friend failed: {resp.get_json()}"
    return resp.get_json()["data"]


def person(record: dict) -> dict:
    """A person reference for request bodies, from any display record."""
    return {"id": record["id"], "is_manual_friend": record.get("is_manual_friend", False)}


def make_group(client, token: str, name: str = "Test Group", members: list[dict] | None = None):
    """Creates a group. The caller becomes owner and first member. Returns the HTTP response."""
    payload: dict = {"name": name}
    if members is not None:
        payload["members"] = members
    return client.post(
        "/api/v1/groups",
        json=payload,
        headers=auth_headers(token),
    )


def make_expense(
    client,
    token: str,
    amount: str,
    title: str = "Test Expense",
    participants: list[dict] | None = None,
    shares: list[dict] | None = None,
    split_mode: str | None = None,
    group_id: str | None = None,
):
    """
    Creates an expense and returns the HTTP response.
    For split_mode='equal' pass participants (or a group_id); for
    split_mode='custom' pass shares as {"id", "is_manual_friend", "amount"} dicts.
    """
    payload: dict = {"title": title, "amount": amount}
    if split_mode is not None:
        payload["split_mode"] = split_mode
    elif shares is not None:
        payload["split_mode"] = "custom"
    if participants is not None:
        payload["participants"] = participants
    if shares is not None:
        payload["shares"] = shares
    if group_id is not None:
        payload["group_id"] = group_id

    return client.post(
        "/api/v1/expenses",
        json=payload,
        headers=auth_headers(token),
    )
