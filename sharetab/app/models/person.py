"""
models/person.py — The Person tagged union and its column encoding.

A person taking part in an expense or a group is either a registered user or
a manual friend (someone without an account, owned by the user who created
the record). In the database that is three columns on group_members and
expense_shares:

    registered_user_id | manual_friend_id | is_manual_friend

with exactly one id set and the flag agreeing with it. In Python it is one of
two frozen dataclasses. Code that needs to tell them apart uses isinstance
over RegisteredPerson / ManualPerson; nothing outside this module reads the
raw flag.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import ClassVar, Union


class MalformedPersonError(ValueError):
    """Raised when person columns are both set, both null, or disagree with the flag."""


@dataclass(frozen=True)
class RegisteredPerson:
    id: uuid.UUID

    is_manual_friend: ClassVar[bool] = False


@dataclass(frozen=True)
class ManualPerson:
    id: uuid.UUID
    # Not part of identity: share and member rows do not carry the owner.
    owner_account_id: uuid.UUID | None = field(default=None, compare=False)

    is_manual_friend: ClassVar[bool] = True


Person = Union[RegisteredPerson, ManualPerson]


@dataclass(frozen=True)
class NewManualFriend:
    """A manual friend named in a request but not persisted yet."""

    display_name: str


def person_from_columns(
        registered_user_id: uuid.UUID | None,
        manual_friend_id: uuid.UUID | None,
        is_manual_friend: bool,
) -> Person:
    if registered_user_id is not None and manual_friend_id is not None:
        raise MalformedPersonError("Person reference has both a user id and a manual friend id.")
    if registered_user_id is None and manual_friend_id is None:
        raise MalformedPersonError("Person reference has neither a user id nor a manual friend id.")

    if is_manual_friend:
        if manual_friend_id is None:
            raise MalformedPersonError("is_manual_friend is set but manual_friend_id is null.")
        return ManualPerson(manual_friend_id)

    if registered_user_id is None:
        raise MalformedPersonError("is_manual_friend is unset but registered_user_id is null.")
    return RegisteredPerson(registered_user_id)


def person_columns(person: Person) -> dict:
    """Column values for a Person, ready to pass to a model constructor."""
    if isinstance(person, ManualPerson):
        return {
            "registered_user_id": None,
            "manual_friend_id": person.id,
            "is_manual_friend": True,
        }
    if isinstance(person, RegisteredPerson):
        return {
            "registered_user_id": person.id,
            "manual_friend_id": None,
            "is_manual_friend": False,
        }
    raise TypeError(f"Not a Person: {person!r}")


class PersonRefMixin:
    """
    Adds a `person` view over the three person columns.

    The host model declares registered_user_id, manual_friend_id and
    is_manual_friend itself (plus the CHECK constraints that keep them
    consistent).
    """

    @property
    def person(self) -> Person:
        return person_from_columns(
            self.registered_user_id,
            self.manual_friend_id,
            bool(self.is_manual_friend),
        )

    @person.setter
    def person(self, value: Person) -> None:
        for column, column_value in person_columns(value).items():
            setattr(self, column, column_value)


# Shared by every table that stores a person reference.
PERSON_EXACTLY_ONE_SQL = "(registered_user_id IS NULL) <> (manual_friend_id IS NULL)"
PERSON_FLAG_MATCHES_SQL = "is_manual_friend = (manual_friend_id IS NOT NULL)"
