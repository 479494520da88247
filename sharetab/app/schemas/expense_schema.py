"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, decimal precision
      - SHARES_SENT_FOR_EQUAL_MODE (400) — request shape rule
      - DUPLICATE_SHARE_PERSON     (400) — request shape rule
      - shares required when split_mode='custom'
  - services/expense_service.py:
      - SHARE_SUM_MISMATCH (422, strict mode only) — Decimal arithmetic
      - USER_NOT_FOUND / MANUAL_FRIEND_NOT_FOUND   — DB lookups
      - GROUP_NOT_FOUND / FORBIDDEN                — DB lookups

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    post_load,
    validate,
    validates_schema,
)

from sharetab.app.errors import ErrorCode
from sharetab.app.models.person import ManualPerson, RegisteredPerson
from sharetab.app.schemas.friend_schema import PersonRefSchema
from sharetab.app.services.share_allocator import SplitMode


def _validate_precision(value: Decimal) -> None:
    """
    At most 2 decimal places. More is REJECTED with INVALID_AMOUNT_PRECISION,
    never rounded. The error handler recognises the code as the message.
    """
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_expense_amount(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    _validate_precision(value)


def _validate_share_amount(value: Decimal) -> None:
    if value < Decimal("0"):
        raise ValidationError("A share amount cannot be negative.")
    _validate_precision(value)


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(title)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


# ── Sub-schema: one entry in the `shares` array ───────────────────────────

class ShareInputSchema(Schema):
    """
    {"id": "<uuid>", "is_manual_friend": false, "amount": "12.50"}

    Loads to {"person": Person, "amount": Decimal}.
    """

    id = fields.UUID(required=True)
    is_manual_friend = fields.Boolean(load_default=False)
    amount = fields.Decimal(
        required=True,
        validate=_validate_share_amount,
    )

    @post_load
    def to_share(self, data: dict, **kwargs) -> dict:
        person_cls = ManualPerson if data["is_manual_friend"] else RegisteredPerson
        return {"person": person_cls(data["id"]), "amount": data["amount"]}


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /expenses

    Split mode behaviour:
      - split_mode='equal'  → client must NOT send shares. The amount is split
                              across `participants`, or the group's members
                              when no participants are given.
      - split_mode='custom' → client MUST send shares; amounts are kept as given.
    """

    title = fields.String(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Title must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    description = fields.String(load_default=None, allow_none=True)

    amount = fields.Decimal(
        required=True,
        validate=_validate_expense_amount,
    )

    # NULL means a personal expense among explicitly chosen friends.
    group_id = fields.UUID(load_default=None, allow_none=True)

    split_mode = fields.Enum(
        SplitMode,
        load_default=SplitMode.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_MODE},
    )

    participants = fields.List(
        fields.Nested(PersonRefSchema),
        load_default=None,
    )

    shares = fields.List(
        fields.Nested(ShareInputSchema),
        load_default=None,
    )

    @validates_schema
    def validate_shares_coherence(self, data: dict, **kwargs) -> None:
        """
        1. SHARES_SENT_FOR_EQUAL_MODE: shares sent with split_mode='equal'.
        2. shares required when split_mode='custom'.
        3. DUPLICATE_SHARE_PERSON: the same person twice in shares or participants.
        """
        split_mode = data.get("split_mode", SplitMode.EQUAL)
        shares = data.get("shares")
        participants = data.get("participants")

        if split_mode == SplitMode.EQUAL:
            if shares is not None:
                raise ValidationError({"shares": [ErrorCode.SHARES_SENT_FOR_EQUAL_MODE]})
            if participants and len(set(participants)) != len(participants):
                raise ValidationError({"participants": [ErrorCode.DUPLICATE_SHARE_PERSON]})
            return

        if not shares:
            raise ValidationError(
                {"shares": ["shares is required when split_mode is 'custom'."]}
            )

        people = [s["person"] for s in shares]
        if len(people) != len(set(people)):
            raise ValidationError({"shares": [ErrorCode.DUPLICATE_SHARE_PERSON]})
