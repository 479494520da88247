"""
services/friend_service.py — Identity and friend-graph resolution.

Answers two questions for the rest of the service layer:
  - Who are this account's friends? (resolve_friend_graph)
  - Who is this Person, for display? (resolve_identities)

Friends of an account are:
  (a) registered users joined to it by an accepted friendship, in either
      direction, and
  (b) the manual friends it owns. Manual friends never enter another
      account's friend list, balances or manual-friend lookups. The one
      exception is shared context: a manual friend on a group roster, or
      named by an expense share, is shown by name to the other members of
      that group and to everyone who can see that expense.

Adding a friend auto-accepts. The friendships.status column can hold
'pending', but no request/approval flow exists; a pending row found when
adding is promoted to accepted.

Layer rules:
  - No Flask imports. Receives account ids and a SQLAlchemy session.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sharetab.app.errors import AppError, ErrorCode
from sharetab.app.models.friendship import Friendship, FriendshipStatus
from sharetab.app.models.manual_friend import ManualFriend
from sharetab.app.models.person import ManualPerson, Person, RegisteredPerson
from sharetab.app.models.user import User

logger = logging.getLogger(__name__)


# ── Serialisation helpers ──────────────────────────────────────────────────

def serialize_user_person(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.display_name,
        "email": user.email,
        "is_manual_friend": False,
    }


def serialize_manual_person(manual_friend: ManualFriend) -> dict:
    return {
        "id": manual_friend.id,
        "name": manual_friend.name,
        "email": None,
        "is_manual_friend": True,
    }


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ── Account and ownership guards ───────────────────────────────────────────

def require_account(account_id: uuid.UUID | None, session: Session) -> User:
    """
    Returns the User behind account_id or raises UNAUTHENTICATED (401).

    Every operation needs a resolved account; there is no anonymous access.
    A token whose user has since been deleted is treated the same as no token.
    """
    if account_id is None:
        raise AppError(
            ErrorCode.UNAUTHENTICATED,
            "No signed-in account.",
            401,
        )
    user = session.get(User, account_id)
    if user is None:
        raise AppError(
            ErrorCode.UNAUTHENTICATED,
            "The signed-in account no longer exists.",
            401,
        )
    return user


def get_user_or_404(user_id: uuid.UUID, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
        )
    return user


def get_user_by_email_or_404(email: str, session: Session) -> User:
    user = session.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalar_one_or_none()
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"No user is registered with the email '{email}'.",
            404,
            field="email",
        )
    return user


def get_owned_manual_friend_or_404(
        account_id: uuid.UUID,
        manual_friend_id: uuid.UUID,
        session: Session,
) -> ManualFriend:
    """
    Returns the manual friend if account_id owns it.

    Someone else's manual friend is reported as not found, never as
    forbidden: its existence is not visible outside the owning account.
    """
    manual_friend = session.get(ManualFriend, manual_friend_id)
    if manual_friend is None or manual_friend.user_id != account_id:
        raise AppError(
            ErrorCode.MANUAL_FRIEND_NOT_FOUND,
            f"Manual friend {manual_friend_id} does not exist.",
            404,
        )
    return manual_friend


# ── Data access ────────────────────────────────────────────────────────────

def get_accepted_friend_ids(account_id: uuid.UUID, session: Session) -> list[uuid.UUID]:
    """Registered friend ids from accepted edges in either direction, deduplicated."""
    stmt = (
        select(Friendship)
        .where(
            or_(
                Friendship.user_id == account_id,
                Friendship.friend_id == account_id,
            ),
            Friendship.status == FriendshipStatus.ACCEPTED,
        )
        .order_by(Friendship.created_at.asc())
    )
    friend_ids: list[uuid.UUID] = []
    seen: set[uuid.UUID] = set()
    for friendship in session.execute(stmt).scalars().all():
        other = friendship.other_side(account_id)
        if other not in seen:
            seen.add(other)
            friend_ids.append(other)
    return friend_ids


def get_manual_friends(account_id: uuid.UUID, session: Session) -> list[ManualFriend]:
    stmt = (
        select(ManualFriend)
        .where(ManualFriend.user_id == account_id)
        .order_by(ManualFriend.created_at.asc())
    )
    return list(session.execute(stmt).scalars().all())


# ── Public service functions ───────────────────────────────────────────────

def resolve_friend_graph(account_id: uuid.UUID, session: Session) -> list[Person]:
    """
    Every Person reachable as a friend of account_id: registered friends
    first, then the account's manual friends. Read-only.

    Raises:
      AppError(UNAUTHENTICATED, 401) — account_id missing or unknown.
    """
    require_account(account_id, session)

    people: list[Person] = [
        RegisteredPerson(friend_id)
        for friend_id in get_accepted_friend_ids(account_id, session)
    ]
    people.extend(
        ManualPerson(manual_friend.id, manual_friend.user_id)
        for manual_friend in get_manual_friends(account_id, session)
    )
    return people


def resolve_identities(people: Iterable[Person], session: Session) -> dict[Person, dict]:
    """
    Batch-resolves people to display records {id, name, email, is_manual_friend}.

    Two queries at most (users, manual_friends). People whose row no longer
    exists are left out of the result; callers decide whether to drop them.
    """
    people = list(people)
    user_ids = {p.id for p in people if isinstance(p, RegisteredPerson)}
    manual_ids = {p.id for p in people if isinstance(p, ManualPerson)}

    users: dict[uuid.UUID, User] = {}
    if user_ids:
        rows = session.execute(select(User).where(User.id.in_(user_ids))).scalars().all()
        users = {u.id: u for u in rows}

    manual_friends: dict[uuid.UUID, ManualFriend] = {}
    if manual_ids:
        rows = session.execute(
            select(ManualFriend).where(ManualFriend.id.in_(manual_ids))
        ).scalars().all()
        manual_friends = {m.id: m for m in rows}

    resolved: dict[Person, dict] = {}
    for person in people:
        if isinstance(person, RegisteredPerson):
            user = users.get(person.id)
            if user is not None:
                resolved[person] = serialize_user_person(user)
        elif isinstance(person, ManualPerson):
            manual_friend = manual_friends.get(person.id)
            if manual_friend is not None:
                resolved[person] = serialize_manual_person(manual_friend)
    return resolved


def list_friends(account_id: uuid.UUID, session: Session) -> list[dict]:
    """The friend graph as display records, in resolve_friend_graph order."""
    people = resolve_friend_graph(account_id, session)
    resolved = resolve_identities(people, session)
    return [resolved[p] for p in people if p in resolved]


def add_friend(account_id: uuid.UUID, target_email: str, session: Session) -> dict:
    """
    Befriends the registered user with target_email. Auto-accepted.

    Raises:
      AppError(UNAUTHENTICATED, 401)  — no resolved account
      AppError(USER_NOT_FOUND, 404)   — nobody has that email
      AppError(SELF_FRIENDSHIP, 422)  — the email is the caller's own
      AppError(ALREADY_FRIENDS, 409)  — an accepted friendship exists either way

    Returns: the new friend's display record.
    """
    require_account(account_id, session)
    target = get_user_by_email_or_404(target_email, session)

    if target.id == account_id:
        raise AppError(
            ErrorCode.SELF_FRIENDSHIP,
            "You cannot add yourself as a friend.",
            422,
            field="email",
        )

    existing = session.execute(
        select(Friendship).where(
            or_(
                and_(Friendship.user_id == account_id, Friendship.friend_id == target.id),
                and_(Friendship.user_id == target.id, Friendship.friend_id == account_id),
            )
        )
    ).scalars().all()

    if any(f.status == FriendshipStatus.ACCEPTED for f in existing):
        raise AppError(
            ErrorCode.ALREADY_FRIENDS,
            f"You are already friends with {target.email}.",
            409,
            field="email",
        )

    if existing:
        pending = existing[0]
        pending.status = FriendshipStatus.ACCEPTED
        session.flush()
        logger.info("Promoted pending friendship %s to accepted", pending.id)
        return serialize_user_person(target)

    # Two concurrent adds for the same pair race to this insert; the
    # unique constraint lets only one through. The failed flush leaves the
    # session unusable, which is fine: the request ends here either way.
    session.add(Friendship(
        user_id=account_id,
        friend_id=target.id,
        status=FriendshipStatus.ACCEPTED,
    ))
    try:
        session.flush()
    except IntegrityError:
        raise AppError(
            ErrorCode.ALREADY_FRIENDS,
            f"You are already friends with {target.email}.",
            409,
            field="email",
        )

    return serialize_user_person(target)


def add_manual_friend(account_id: uuid.UUID, display_name: str, session: Session) -> dict:
    """
    Creates a manual friend owned by account_id. Names need not be unique;
    every call creates a new, distinct person.
    """
    require_account(account_id, session)

    name = (display_name or "").strip()
    if not name:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "A manual friend needs a name.",
            400,
            field="name",
        )

    manual_friend = ManualFriend(user_id=account_id, name=name)
    session.add(manual_friend)
    session.flush()
    return serialize_manual_person(manual_friend)
