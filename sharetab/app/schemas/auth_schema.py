"""
schemas/auth_schema.py — Request bodies for the /auth endpoints.

Shape and format only. Email uniqueness and credential checks need the
database and live in services/auth_service.py.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates

# (predicate, message) pairs checked in order; the first failure is reported.
_PASSWORD_RULES = (
    (lambda pw: len(pw) >= 8, "Password must be at least 8 characters long."),
    (lambda pw: any(c.isalpha() for c in pw), "Password must contain at least one letter."),
    (lambda pw: any(c.isdigit() for c in pw), "Password must contain at least one digit."),
)


class RegisterSchema(Schema):
    """
    POST /auth/register

    The email is lower-cased by the service; full_name is optional and the
    display name falls back to the email's local part.
    """

    email = fields.Email(required=True, validate=validate.Length(max=255))
    full_name = fields.String(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=100, error="Full name must be at most 100 characters."),
    )
    password = fields.String(required=True, load_only=True)

    @validates("password")
    def check_password_strength(self, value: str, **kwargs) -> None:
        for rule, message in _PASSWORD_RULES:
            if not rule(value):
                raise ValidationError(message)


class LoginSchema(Schema):
    email = fields.String(required=True)
    password = fields.String(required=True, load_only=True)


class RefreshTokenSchema(Schema):
    """Body of POST /auth/refresh and POST /auth/logout."""

    refresh_token = fields.String(required=True)
