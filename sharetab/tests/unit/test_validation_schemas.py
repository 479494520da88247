"""
tests/unit/test_validation_schemas.py — Unit tests for the marshmallow schemas.

What this file proves:
  - Valid payloads load into the expected Python values (Decimal, UUID, Person)
  - Field-level rules (type, length, enum, decimal precision) are enforced here
  - Request-shape rules for splits (shares vs split_mode, duplicates) live here
  - Error codes raised as messages match the constants in errors.py

No database, no Flask application context: the schemas inherit from
marshmallow.Schema directly, not ma.Schema.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from marshmallow import ValidationError

from sharetab.app.errors import ErrorCode
from sharetab.app.models.person import ManualPerson, NewManualFriend, RegisteredPerson
from sharetab.app.schemas.auth_schema import LoginSchema, RegisterSchema
from sharetab.app.schemas.expense_schema import CreateExpenseSchema
from sharetab.app.schemas.friend_schema import AddFriendSchema, AddManualFriendSchema
from sharetab.app.schemas.group_schema import CreateGroupSchema
from sharetab.app.services.share_allocator import SplitMode

BOB = str(uuid.uuid4())
SAM = str(uuid.uuid4())


# ═══════════════════════════════════════════════════════════════════════════
# RegisterSchema / LoginSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestRegisterSchema:

    def test_valid_payload(self):
        result = RegisterSchema().load({
            "email": "alice@example.com",
            "full_name": "Alice Liddell",
            "password": "Secure123",
        })
        assert result["email"] == "alice@example.com"
        assert result["full_name"] == "Alice Liddell"

    def test_full_name_is_optional(self):
        result = RegisterSchema().load({"email": "a@example.com", "password": "Secure123"})
        assert result["full_name"] is None

    @pytest.mark.parametrize("password", ["short1", "lettersonly", "12345678"])
    def test_weak_password_rejected(self, password):
        with pytest.raises(ValidationError) as exc_info:
            RegisterSchema().load({"email": "a@example.com", "password": password})
        assert "password" in exc_info.value.messages

    def test_invalid_email_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            RegisterSchema().load({"email": "not-an-email", "password": "Secure123"})
        assert "email" in exc_info.value.messages


def test_login_requires_password():
    with pytest.raises(ValidationError) as exc_info:
        LoginSchema().load({"email": "a@example.com"})
    assert "password" in exc_info.value.messages


# ═══════════════════════════════════════════════════════════════════════════
# Friend schemas
# ═══════════════════════════════════════════════════════════════════════════

def test_add_friend_requires_valid_email():
    with pytest.raises(ValidationError):
        AddFriendSchema().load({"email": "bob"})


@pytest.mark.parametrize("name", ["", "   ", "x" * 101])
def test_manual_friend_name_rules(name):
    with pytest.raises(ValidationError) as exc_info:
        AddManualFriendSchema().load({"name": name})
    assert "name" in exc_info.value.messages


# ═══════════════════════════════════════════════════════════════════════════
# CreateGroupSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateGroupSchema:

    def test_members_default_to_empty(self):
        assert CreateGroupSchema().load({"name": "Trip"})["members"] == []

    def test_member_kinds(self):
        result = CreateGroupSchema().load({
            "name": "Trip",
            "members": [
                {"id": BOB},
                {"id": SAM, "is_manual_friend": True},
                {"name": "  Kim "},
            ],
        })
        assert result["members"] == [
            RegisteredPerson(uuid.UUID(BOB)),
            ManualPerson(uuid.UUID(SAM)),
            NewManualFriend("Kim"),
        ]

    def test_member_with_id_and_name_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateGroupSchema().load({"name": "Trip", "members": [{"id": BOB, "name": "Bob"}]})
        assert exc_info.value.messages["members"][0]["id"]

    def test_member_with_neither_rejected(self):
        with pytest.raises(ValidationError):
            CreateGroupSchema().load({"name": "Trip", "members": [{"is_manual_friend": True}]})

    def test_blank_group_name_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateGroupSchema().load({"name": "   "})
        assert "name" in exc_info.value.messages


# ═══════════════════════════════════════════════════════════════════════════
# CreateExpenseSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateExpenseSchema:

    def _load(self, **overrides):
        payload = {"title": "Dinner", "amount": "30.00"}
        payload.update(overrides)
        return CreateExpenseSchema().load(payload)

    def _messages(self, **overrides) -> dict:
        with pytest.raises(ValidationError) as exc_info:
            self._load(**overrides)
        return exc_info.value.messages

    def test_defaults_to_equal_split(self):
        result = self._load(participants=[{"id": BOB}])
        assert result["split_mode"] is SplitMode.EQUAL
        assert result["amount"] == Decimal("30.00")
        assert result["participants"] == [RegisteredPerson(uuid.UUID(BOB))]
        assert result["group_id"] is None
        assert result["shares"] is None

    def test_custom_shares_load_to_people_and_amounts(self):
        result = self._load(split_mode="custom", shares=[
            {"id": BOB, "amount": "20.00"},
            {"id": SAM, "is_manual_friend": True, "amount": "10.00"},
        ])
        assert result["split_mode"] is SplitMode.CUSTOM
        assert result["shares"] == [
            {"person": RegisteredPerson(uuid.UUID(BOB)), "amount": Decimal("20.00")},
            {"person": ManualPerson(uuid.UUID(SAM)), "amount": Decimal("10.00")},
        ]

    def test_amount_precision_rejected_not_rounded(self):
        assert self._messages(amount="10.005") == {"amount": [ErrorCode.INVALID_AMOUNT_PRECISION]}

    @pytest.mark.parametrize("amount", ["0", "-1.00"])
    def test_non_positive_amount_rejected(self, amount):
        assert "amount" in self._messages(amount=amount)

    def test_unknown_split_mode(self):
        assert self._messages(split_mode="percentage") == {
            "split_mode": [ErrorCode.INVALID_SPLIT_MODE],
        }

    def test_shares_sent_for_equal_mode(self):
        messages = self._messages(shares=[{"id": BOB, "amount": "30.00"}])
        assert messages["shares"] == [ErrorCode.SHARES_SENT_FOR_EQUAL_MODE]

    def test_custom_mode_requires_shares(self):
        assert "shares" in self._messages(split_mode="custom")

    def test_duplicate_share_person(self):
        messages = self._messages(split_mode="custom", shares=[
            {"id": BOB, "amount": "10.00"},
            {"id": BOB, "amount": "20.00"},
        ])
        assert messages["shares"] == [ErrorCode.DUPLICATE_SHARE_PERSON]

    def test_same_id_as_user_and_manual_friend_is_not_a_duplicate(self):
        result = self._load(split_mode="custom", shares=[
            {"id": BOB, "amount": "10.00"},
            {"id": BOB, "is_manual_friend": True, "amount": "20.00"},
        ])
        assert len(result["shares"]) == 2

    def test_duplicate_participant(self):
        messages = self._messages(participants=[{"id": BOB}, {"id": BOB}])
        assert messages["participants"] == [ErrorCode.DUPLICATE_SHARE_PERSON]

    def test_negative_share_rejected(self):
        messages = self._messages(split_mode="custom", shares=[{"id": BOB, "amount": "-1.00"}])
        assert "amount" in messages["shares"][0]

    def test_blank_title_rejected(self):
        assert "title" in self._messages(title="   ")
