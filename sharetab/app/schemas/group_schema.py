"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    the shape of each requested member.
  - services/group_service.py:
      - USER_NOT_FOUND / MANUAL_FRIEND_NOT_FOUND (existence needs a DB lookup)
      - ALREADY_MEMBER, GROUP_NOT_FOUND, FORBIDDEN

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    post_load,
    validate,
    validates_schema,
)

from sharetab.app.models.person import ManualPerson, NewManualFriend, RegisteredPerson


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class MemberInputSchema(Schema):
    """
    One entry of the `members` array of POST /groups. Either

        {"id": "<uuid>", "is_manual_friend": false}   an existing person, or
        {"name": "Sam"}                                a manual friend by name

    A name is matched against the owner's manual friends (exact, case-sensitive)
    and a new manual friend is created when none matches.
    """

    id = fields.UUID(load_default=None)
    is_manual_friend = fields.Boolean(load_default=False)
    name = fields.String(
        load_default=None,
        validate=[
            validate.Length(max=100, error="Name must be at most 100 characters."),
            _validate_non_empty_after_trim,
        ],
    )

    @validates_schema
    def validate_id_or_name(self, data: dict, **kwargs) -> None:
        has_id = data.get("id") is not None
        has_name = data.get("name") is not None
        if has_id == has_name:
            raise ValidationError(
                "Give either an id or a name for each member, not both.",
                field_name="id",
            )

    @post_load
    def to_member(self, data: dict, **kwargs):
        if data.get("name") is not None:
            return NewManualFriend(data["name"].strip())
        if data["is_manual_friend"]:
            return ManualPerson(data["id"])
        return RegisteredPerson(data["id"])


class CreateGroupSchema(Schema):
    """
    POST /groups

    name: non-empty after trim, max 100 chars. The DB has the same CHECK;
    the schema is the primary gate.
    """

    name = fields.String(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    members = fields.List(
        fields.Nested(MemberInputSchema),
        load_default=list,
    )


class AddMemberSchema(Schema):
    """POST /groups/:id/members — add a registered user by email (owner only)."""

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )
