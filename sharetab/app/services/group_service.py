"""
services/group_service.py — Group rosters and membership.

A group's members are people: registered users and manual friends of the
group owner, stored one row each in group_members. The owner is always the
first member and cannot be removed.

Authorization rules:
  - Reading a group:   a registered member, or the owner of a manual friend in it
  - Adding a member:   group owner only
  - Removing a member: group owner may remove anyone but themselves; a
                       registered member may remove themselves
  - Deleting a group:  group owner only

create_group is best-effort past the group row itself: each requested
member is attached inside its own SAVEPOINT and a failure is recorded in the
returned PartialFailure instead of aborting the request.

Known race: two concurrent create_group calls that both name the same new
manual friend may each create a manual_friends row. Nothing locks the
(owner, name) lookup, and names are not unique by design.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sharetab.app.errors import AppError, ErrorCode, PartialFailure
from sharetab.app.models.expense import Expense
from sharetab.app.models.group import Group
from sharetab.app.models.group_member import GroupMember
from sharetab.app.models.manual_friend import ManualFriend
from sharetab.app.models.person import (
    MalformedPersonError,
    ManualPerson,
    NewManualFriend,
    Person,
    RegisteredPerson,
    person_columns,
)
from sharetab.app.services.friend_service import (
    get_owned_manual_friend_or_404,
    get_user_by_email_or_404,
    get_user_or_404,
    require_account,
    resolve_identities,
)

logger = logging.getLogger(__name__)

MemberRequest = RegisteredPerson | ManualPerson | NewManualFriend


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: uuid.UUID, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def _require_owner(group: Group, account_id: uuid.UUID, action: str) -> None:
    if group.created_by != account_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the group owner may {action}.",
            403,
        )


def is_registered_member(group_id: uuid.UUID, account_id: uuid.UUID, session: Session) -> bool:
    member_id = session.execute(
        select(GroupMember.id).where(
            GroupMember.group_id == group_id,
            GroupMember.registered_user_id == account_id,
        )
    ).scalar_one_or_none()
    return member_id is not None


def _visible_group_ids(account_id: uuid.UUID, session: Session) -> list[uuid.UUID]:
    """Groups with the account itself, or one of its manual friends, as a member."""
    owned_manual_ids = select(ManualFriend.id).where(ManualFriend.user_id == account_id)
    stmt = (
        select(GroupMember.group_id)
        .where(
            or_(
                GroupMember.registered_user_id == account_id,
                GroupMember.manual_friend_id.in_(owned_manual_ids),
            )
        )
        .distinct()
    )
    return list(session.execute(stmt).scalars().all())


def _require_visible(group: Group, account_id: uuid.UUID, session: Session) -> None:
    """
    Raises FORBIDDEN (403) unless the account can see the group.
    Non-members receive 403, not 404.
    """
    if group.id in _visible_group_ids(account_id, session):
        return
    raise AppError(
        ErrorCode.FORBIDDEN,
        f"You are not a member of group {group.id}.",
        403,
    )


def _member_rows(group_ids: Sequence[uuid.UUID], session: Session) -> list[GroupMember]:
    if not group_ids:
        return []
    stmt = (
        select(GroupMember)
        .where(GroupMember.group_id.in_(group_ids))
        .order_by(GroupMember.joined_at.asc(), GroupMember.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def _find_member(group_id: uuid.UUID, person: Person, session: Session) -> GroupMember | None:
    if isinstance(person, ManualPerson):
        condition = GroupMember.manual_friend_id == person.id
    else:
        condition = GroupMember.registered_user_id == person.id
    return session.execute(
        select(GroupMember).where(GroupMember.group_id == group_id, condition)
    ).scalar_one_or_none()


def _resolve_member_rows(
        rows: Iterable[GroupMember],
        session: Session,
) -> dict[uuid.UUID, list[tuple[Person, dict]]]:
    """
    Groups member rows by group id, each resolved to (person, display record).

    Rows with a malformed person reference, or whose user / manual friend no
    longer exists, are dropped with a warning. Never raises for a single row.
    """
    candidates: list[tuple[GroupMember, Person]] = []
    for row in rows:
        try:
            candidates.append((row, row.person))
        except MalformedPersonError as exc:
            logger.warning("Dropping group member %s: %s", row.id, exc)

    identities = resolve_identities([person for _, person in candidates], session)

    resolved: dict[uuid.UUID, list[tuple[Person, dict]]] = defaultdict(list)
    for row, person in candidates:
        record = identities.get(person)
        if record is None:
            logger.warning(
                "Dropping group member %s of group %s: person %s no longer exists",
                row.id, row.group_id, person.id,
            )
            continue
        resolved[row.group_id].append((person, {**record, "member_id": row.id}))
    return resolved


def _build_group_dict(group: Group, members: list[dict], account_id: uuid.UUID) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "created_by": group.created_by,
        "is_owner": group.created_by == account_id,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "members": members,
    }


def _describe(member: MemberRequest) -> dict:
    """How a requested member is reported back in a PartialFailure."""
    if isinstance(member, NewManualFriend):
        return {"name": member.display_name, "is_manual_friend": True}
    return {"id": member.id, "is_manual_friend": member.is_manual_friend}


def find_or_create_manual_friend(
        owner_id: uuid.UUID,
        display_name: str,
        session: Session,
) -> ManualFriend:
    """
    Reuses the owner's manual friend with exactly this name (case-sensitive),
    else creates one. With several same-named rows the oldest wins.
    """
    existing = session.execute(
        select(ManualFriend)
        .where(ManualFriend.user_id == owner_id, ManualFriend.name == display_name)
        .order_by(ManualFriend.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    manual_friend = ManualFriend(user_id=owner_id, name=display_name)
    session.add(manual_friend)
    session.flush()
    return manual_friend


def _materialize(owner_id: uuid.UUID, member: MemberRequest, session: Session) -> Person:
    """Turns a requested member into a persisted Person, checking it exists."""
    if isinstance(member, NewManualFriend):
        manual_friend = find_or_create_manual_friend(owner_id, member.display_name, session)
        return ManualPerson(manual_friend.id, manual_friend.user_id)
    if isinstance(member, ManualPerson):
        manual_friend = get_owned_manual_friend_or_404(owner_id, member.id, session)
        return ManualPerson(manual_friend.id, manual_friend.user_id)
    if isinstance(member, RegisteredPerson):
        get_user_or_404(member.id, session)
        return member
    raise TypeError(f"Not a group member request: {member!r}")


def _attach(group_id: uuid.UUID, person: Person, session: Session) -> GroupMember:
    if _find_member(group_id, person, session) is not None:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"{person.id} is already a member of group {group_id}.",
            409,
        )
    member = GroupMember(group_id=group_id, **person_columns(person))
    session.add(member)
    session.flush()
    return member


# ── Public service functions ───────────────────────────────────────────────

def create_group(
        owner_id: uuid.UUID,
        name: str,
        members: Sequence[MemberRequest],
        session: Session,
) -> tuple[dict, PartialFailure]:
    """
    Creates a group owned by owner_id and attaches the requested members.

    The group row and the owner's membership are all-or-nothing. Each
    requested member is then attached in its own SAVEPOINT: a member that
    does not exist, is already in the group, or fails to insert is logged
    and recorded in the PartialFailure, and the loop moves on.

    Args:
        owner_id: The authenticated account creating the group.
        name:     Group name (validated by schema — non-empty, max 100 chars).
        members:  RegisteredPerson, ManualPerson (must be owned by owner_id)
                  or NewManualFriend (matched by exact name, else created).

    Returns: (group dict with resolved members, PartialFailure)
    """
    require_account(owner_id, session)

    group = Group(name=name.strip(), created_by=owner_id)
    session.add(group)
    session.flush()  # populate group.id before creating memberships

    session.add(GroupMember(group_id=group.id, **person_columns(RegisteredPerson(owner_id))))
    session.flush()

    outcome = PartialFailure()
    for member in members:
        label = _describe(member)
        try:
            with session.begin_nested():
                person = _materialize(owner_id, member, session)
                _attach(group.id, person, session)
        except (AppError, SQLAlchemyError) as exc:
            logger.warning("Could not add member %s to group %s: %s", label, group.id, exc)
            outcome.add_failure(label, exc)
            continue
        outcome.succeeded.append({**label, "id": person.id})

    if not outcome.ok:
        logger.warning(
            "Group %s created with %d of %d members attached",
            group.id, len(outcome.succeeded), len(members),
        )

    return _build_group_dict(group, resolve_members(group.id, session), owner_id), outcome


def resolve_members(group_id: uuid.UUID, session: Session) -> list[dict]:
    """
    The group's roster as display records, in join order, each carrying the
    member row id as `member_id`. Unresolvable members are left out.
    """
    resolved = _resolve_member_rows(_member_rows([group_id], session), session)
    return [record for _, record in resolved.get(group_id, [])]


def participants_for(group_id: uuid.UUID, session: Session) -> list[Person]:
    """The group's resolvable members as Person values, in join order."""
    resolved = _resolve_member_rows(_member_rows([group_id], session), session)
    return [person for person, _ in resolved.get(group_id, [])]


def list_groups(account_id: uuid.UUID, session: Session) -> list[dict]:
    """
    Groups where the account, or one of its manual friends, is a member,
    oldest first, each with its resolved roster and an is_owner flag.
    """
    require_account(account_id, session)

    group_ids = _visible_group_ids(account_id, session)
    if not group_ids:
        return []

    groups = session.execute(
        select(Group).where(Group.id.in_(group_ids)).order_by(Group.created_at.asc())
    ).scalars().all()
    rosters = _resolve_member_rows(_member_rows(group_ids, session), session)

    return [
        _build_group_dict(g, [record for _, record in rosters.get(g.id, [])], account_id)
        for g in groups
    ]


def get_group(group_id: uuid.UUID, caller_id: uuid.UUID, session: Session) -> dict:
    """Group details with the current roster. Non-members receive FORBIDDEN (403)."""
    require_account(caller_id, session)
    group = _get_group_or_404(group_id, session)
    _require_visible(group, caller_id, session)
    return _build_group_dict(group, resolve_members(group_id, session), caller_id)


def add_member(
        group_id: uuid.UUID,
        caller_id: uuid.UUID,
        email: str,
        session: Session,
) -> dict:
    """
    Adds the registered user with this email to the group. Owner only.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)  — group does not exist
      AppError(FORBIDDEN, 403)        — caller is not the group owner
      AppError(USER_NOT_FOUND, 404)   — nobody has that email
      AppError(ALREADY_MEMBER, 409)   — the user is already in the group

    Returns: the new member's display record.
    """
    require_account(caller_id, session)
    group = _get_group_or_404(group_id, session)
    _require_owner(group, caller_id, "add members")

    target = get_user_by_email_or_404(email, session)
    member = _attach(group_id, RegisteredPerson(target.id), session)

    return {
        "member_id": member.id,
        "group_id": group_id,
        "id": target.id,
        "name": target.display_name,
        "email": target.email,
        "is_manual_friend": False,
        "joined_at": member.joined_at.isoformat() if member.joined_at else None,
    }


def remove_member(
        group_id: uuid.UUID,
        caller_id: uuid.UUID,
        member_id: uuid.UUID,
        session: Session,
) -> None:
    """
    Removes one member row from a group.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)   — group does not exist
      AppError(MEMBER_NOT_FOUND, 404)  — no such member in this group
      AppError(FORBIDDEN, 403)         — caller may not remove this member,
                                         or the owner tried to leave their own group
    """
    require_account(caller_id, session)
    group = _get_group_or_404(group_id, session)

    member = session.get(GroupMember, member_id)
    if member is None or member.group_id != group_id:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"Member {member_id} is not part of group {group_id}.",
            404,
        )

    is_owner = group.created_by == caller_id
    is_self = member.registered_user_id == caller_id

    if is_owner and is_self:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "The group owner cannot leave the group; delete it instead.",
            403,
        )
    if not (is_owner or is_self):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You may only remove yourself from a group unless you are the owner.",
            403,
        )

    session.delete(member)
    session.flush()


def delete_group(group_id: uuid.UUID, requester_id: uuid.UUID, session: Session) -> None:
    """
    Deletes a group and everything in it. Owner only.

    Order: the group's expenses (their shares go with them), then the
    members, then the group row. The route commits once, so a failure at
    any step leaves the group untouched.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403) — requester is not the owner
    """
    require_account(requester_id, session)
    group = _get_group_or_404(group_id, session)
    _require_owner(group, requester_id, "delete the group")

    expenses = session.execute(
        select(Expense).where(Expense.group_id == group_id)
    ).scalars().all()
    for expense in expenses:
        session.delete(expense)
    session.flush()

    session.execute(delete(GroupMember).where(GroupMember.group_id == group_id))
    session.expire(group, ["members", "expenses"])
    session.delete(group)
    session.flush()

    logger.info("Deleted group %s with %d expenses", group_id, len(expenses))
