"""
schemas/friend_schema.py — Marshmallow schemas for friend endpoints, plus the
person reference used wherever a request names a person.

Validation responsibility:
  - This file: field types, lengths, non-empty checks.
  - services/friend_service.py: USER_NOT_FOUND, ALREADY_FRIENDS,
    SELF_FRIENDSHIP (all require a DB lookup).

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, post_load, validate

from sharetab.app.models.person import ManualPerson, RegisteredPerson


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class PersonRefSchema(Schema):
    """
    A reference to an existing person:
        {"id": "<uuid>", "is_manual_friend": false}

    Loads to RegisteredPerson or ManualPerson. Whether the person exists,
    and for manual friends whether the caller owns it, is checked in the
    service layer.
    """

    id = fields.UUID(required=True)
    is_manual_friend = fields.Boolean(load_default=False)

    @post_load
    def to_person(self, data: dict, **kwargs):
        if data["is_manual_friend"]:
            return ManualPerson(data["id"])
        return RegisteredPerson(data["id"])


class AddFriendSchema(Schema):
    """POST /friends — befriend a registered user by email."""

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )


class AddManualFriendSchema(Schema):
    """POST /friends/manual — names need not be unique."""

    name = fields.String(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )
