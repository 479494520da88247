"""
tests/unit/conftest.py — Registers every model before any unit test runs.

Unit tests build model instances (Group, ManualFriend, ...) without an app.
SQLAlchemy configures all mappers on the first instantiation, and the string
relationship targets ("RefreshToken", "ExpenseShare", ...) only resolve once
their modules are imported. create_app() does this for the integration suite.
"""

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
