"""
Unit tests for group_service branches: membership guards and the
best-effort member loop of create_group.

These tests run DB-free with mocked session/query behavior.
"""

from __future__ import annotations

import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from sharetab.app.errors import AppError, ErrorCode
from sharetab.app.models.group import Group
from sharetab.app.models.group_member import GroupMember
from sharetab.app.models.manual_friend import ManualFriend
from sharetab.app.models.person import ManualPerson, NewManualFriend, RegisteredPerson
from sharetab.app.services import group_service

OWNER = uuid.uuid4()
BOB = uuid.uuid4()
GROUP_ID = uuid.uuid4()

_PATCH_BASE = "sharetab.app.services.group_service"


def _session_with(group=None, member=None) -> MagicMock:
    session = MagicMock()
    session.get.side_effect = lambda model, _id: {Group: group, GroupMember: member}.get(model)
    return session


def test_get_group_or_404_raises_when_group_missing():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        group_service._get_group_or_404(GROUP_ID, session=session)

    assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND
    assert exc_info.value.http_status == 404


def test_require_owner_rejects_non_owner():
    group = SimpleNamespace(id=GROUP_ID, created_by=OWNER)
    with pytest.raises(AppError) as exc_info:
        group_service._require_owner(group, BOB, "add members")
    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


# ── remove_member ──────────────────────────────────────────────────────────

@patch(f"{_PATCH_BASE}.require_account")
def test_owner_cannot_remove_themselves(mock_account):
    group = SimpleNamespace(id=GROUP_ID, created_by=OWNER)
    member = SimpleNamespace(group_id=GROUP_ID, registered_user_id=OWNER)
    session = _session_with(group, member)

    with pytest.raises(AppError) as exc_info:
        group_service.remove_member(GROUP_ID, OWNER, uuid.uuid4(), session=session)

    assert exc_info.value.code == ErrorCode.FORBIDDEN
    session.delete.assert_not_called()


@patch(f"{_PATCH_BASE}.require_account")
def test_member_cannot_remove_someone_else(mock_account):
    group = SimpleNamespace(id=GROUP_ID, created_by=OWNER)
    member = SimpleNamespace(group_id=GROUP_ID, registered_user_id=uuid.uuid4())
    session = _session_with(group, member)

    with pytest.raises(AppError) as exc_info:
        group_service.remove_member(GROUP_ID, BOB, uuid.uuid4(), session=session)

    assert exc_info.value.code == ErrorCode.FORBIDDEN


@patch(f"{_PATCH_BASE}.require_account")
def test_member_can_leave(mock_account):
    group = SimpleNamespace(id=GROUP_ID, created_by=OWNER)
    member = SimpleNamespace(group_id=GROUP_ID, registered_user_id=BOB)
    session = _session_with(group, member)

    group_service.remove_member(GROUP_ID, BOB, uuid.uuid4(), session=session)

    session.delete.assert_called_once_with(member)


@patch(f"{_PATCH_BASE}.require_account")
def test_owner_can_remove_a_manual_friend(mock_account):
    group = SimpleNamespace(id=GROUP_ID, created_by=OWNER)
    member = SimpleNamespace(group_id=GROUP_ID, registered_user_id=None)
    session = _session_with(group, member)

    group_service.remove_member(GROUP_ID, OWNER, uuid.uuid4(), session=session)

    session.delete.assert_called_once_with(member)


@patch(f"{_PATCH_BASE}.require_account")
def test_member_of_another_group_is_not_found(mock_account):
    group = SimpleNamespace(id=GROUP_ID, created_by=OWNER)
    member = SimpleNamespace(group_id=uuid.uuid4(), registered_user_id=BOB)
    session = _session_with(group, member)

    with pytest.raises(AppError) as exc_info:
        group_service.remove_member(GROUP_ID, OWNER, uuid.uuid4(), session=session)

    assert exc_info.value.code == ErrorCode.MEMBER_NOT_FOUND


# ── find_or_create_manual_friend ───────────────────────────────────────────

def test_existing_manual_friend_is_reused():
    existing = SimpleNamespace(id=uuid.uuid4(), user_id=OWNER, name="Sam")
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = existing

    assert group_service.find_or_create_manual_friend(OWNER, "Sam", session=session) is existing
    session.add.assert_not_called()


def test_missing_manual_friend_is_created():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    created = group_service.find_or_create_manual_friend(OWNER, "Sam", session=session)

    assert isinstance(created, ManualFriend)
    assert (created.user_id, created.name) == (OWNER, "Sam")
    session.add.assert_called_once_with(created)
    session.flush.assert_called_once()


# ── create_group ───────────────────────────────────────────────────────────

@patch(f"{_PATCH_BASE}.resolve_members", return_value=[])
@patch(f"{_PATCH_BASE}._attach")
@patch(f"{_PATCH_BASE}._materialize")
@patch(f"{_PATCH_BASE}.require_account")
def test_create_group_records_failed_members_and_continues(
    mock_account, mock_materialize, mock_attach, mock_members
):
    sam = ManualPerson(uuid.uuid4(), OWNER)
    missing = RegisteredPerson(uuid.uuid4())
    mock_materialize.side_effect = [
        RegisteredPerson(BOB),
        AppError(ErrorCode.USER_NOT_FOUND, "User does not exist.", 404),
        sam,
    ]
    session = MagicMock()

    group, outcome = group_service.create_group(
        OWNER,
        "  Trip  ",
        [RegisteredPerson(BOB), missing, NewManualFriend("Sam")],
        session=session,
    )

    assert group["name"] == "Trip"
    assert group["is_owner"] is True
    assert session.begin_nested.call_count == 3
    assert mock_attach.call_count == 2

    assert not outcome.ok
    assert outcome.succeeded == [
        {"id": BOB, "is_manual_friend": False},
        {"name": "Sam", "is_manual_friend": True, "id": sam.id},
    ]
    [failed] = outcome.failed
    assert failed.item == {"id": missing.id, "is_manual_friend": False}
    assert failed.code == ErrorCode.USER_NOT_FOUND


@patch(f"{_PATCH_BASE}.resolve_members", return_value=[])
@patch(f"{_PATCH_BASE}._attach")
@patch(f"{_PATCH_BASE}._materialize")
@patch(f"{_PATCH_BASE}.require_account")
def test_create_group_database_error_on_one_member(
    mock_account, mock_materialize, mock_attach, mock_members
):
    mock_materialize.side_effect = lambda owner, member, session: member
    mock_attach.side_effect = [OperationalError("INSERT ...", {}, Exception("locked")), MagicMock()]
    carol = RegisteredPerson(uuid.uuid4())

    _, outcome = group_service.create_group(
        OWNER, "Flat", [RegisteredPerson(BOB), carol], session=MagicMock(),
    )

    assert [f.code for f in outcome.failed] == [ErrorCode.INTERNAL_ERROR]
    assert outcome.succeeded == [{"id": carol.id, "is_manual_friend": False}]


@patch(f"{_PATCH_BASE}.resolve_members", return_value=[])
@patch(f"{_PATCH_BASE}.require_account")
def test_create_group_inserts_owner_as_first_member(mock_account, mock_members):
    session = MagicMock()

    _, outcome = group_service.create_group(OWNER, "Solo", [], session=session)

    added = [c.args[0] for c in session.add.call_args_list]
    assert isinstance(added[0], Group)
    assert isinstance(added[1], GroupMember)
    assert added[1].registered_user_id == OWNER
    assert added[1].is_manual_friend is False
    assert outcome.ok


def test_materialize_new_manual_friend_uses_find_or_create():
    manual = SimpleNamespace(id=uuid.uuid4(), user_id=OWNER)
    with patch(f"{_PATCH_BASE}.find_or_create_manual_friend", return_value=manual) as mock_find:
        person = group_service._materialize(OWNER, NewManualFriend("Sam"), session=MagicMock())

    mock_find.assert_called_once()
    assert person == ManualPerson(manual.id)
    assert person.owner_account_id == OWNER
