"""
services/balance_service.py — Per-friend and per-group balance computation.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
Any change to how balances work must be made here.

Balance of a friend F, seen from account A:

    owed_to_me(F) = Σ shares naming F in expenses created by A
    owed_by_me(F) = Σ shares naming A in expenses created by F
    balance(F)    = owed_to_me(F) − owed_by_me(F)

Positive means F owes A. Manual friends never create expenses, so their
owed_by_me is zero and is not queried. Every share counts, paid or not.

Each side is fetched ONCE for all friends and folded in memory; there is no
per-friend query.

Read-path isolation: a malformed share, or a failed fetch, zeroes the
balance of the friend(s) it affects and is logged. The aggregation as a
whole never fails because of one bad row.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Read-only. Returns plain Python dicts and lists.
  - The data access helpers below are the only functions that query;
    unit tests patch them.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sharetab.app.models.expense import Expense
from sharetab.app.models.expense_share import ExpenseShare
from sharetab.app.models.group import Group
from sharetab.app.models.group_member import GroupMember
from sharetab.app.models.person import (
    MalformedPersonError,
    ManualPerson,
    Person,
    RegisteredPerson,
    person_from_columns,
)
from sharetab.app.services import friend_service

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ── Data access helpers ────────────────────────────────────────────────────

def get_friend_graph(account_id: uuid.UUID, session: Session) -> list[Person]:
    return friend_service.resolve_friend_graph(account_id, session)


def get_shares_in_own_expenses(account_id: uuid.UUID, session: Session) -> list:
    """
    Person columns and amount of every share in expenses created by account_id.
    Rows: (id, registered_user_id, manual_friend_id, is_manual_friend, amount).
    """
    stmt = (
        select(
            ExpenseShare.id,
            ExpenseShare.registered_user_id,
            ExpenseShare.manual_friend_id,
            ExpenseShare.is_manual_friend,
            ExpenseShare.amount,
        )
        .join(Expense, ExpenseShare.expense_id == Expense.id)
        .where(Expense.created_by == account_id)
    )
    return list(session.execute(stmt).all())


def get_own_shares_by_creator(
        account_id: uuid.UUID,
        creator_ids: Sequence[uuid.UUID],
        session: Session,
) -> list:
    """
    The account's own shares in expenses created by any of creator_ids.
    Rows: (created_by, amount).
    """
    if not creator_ids:
        return []
    stmt = (
        select(Expense.created_by, ExpenseShare.amount)
        .join(Expense, ExpenseShare.expense_id == Expense.id)
        .where(
            ExpenseShare.registered_user_id == account_id,
            Expense.created_by.in_(creator_ids),
        )
    )
    return list(session.execute(stmt).all())


def get_group_share_rows(account_id: uuid.UUID, session: Session) -> list:
    """
    Shares in group expenses of groups the account belongs to, where the
    account is either the expense creator or the person named by the share.
    Rows: (group_id, created_by, registered_user_id, amount).
    """
    my_group_ids = select(GroupMember.group_id).where(
        GroupMember.registered_user_id == account_id
    )
    stmt = (
        select(
            Expense.group_id,
            Expense.created_by,
            ExpenseShare.registered_user_id,
            ExpenseShare.amount,
        )
        .join(Expense, ExpenseShare.expense_id == Expense.id)
        .where(
            Expense.group_id.in_(my_group_ids),
            or_(
                Expense.created_by == account_id,
                ExpenseShare.registered_user_id == account_id,
            ),
        )
    )
    return list(session.execute(stmt).all())


def get_group_ids_for_member(account_id: uuid.UUID, session: Session) -> list[uuid.UUID]:
    stmt = select(GroupMember.group_id).where(GroupMember.registered_user_id == account_id)
    return list(session.execute(stmt).scalars().all())


# ── Core algorithms ────────────────────────────────────────────────────────

def _people_named_by(row) -> set[Person]:
    """Every person a (possibly malformed) share row points at."""
    named: set[Person] = set()
    if row.registered_user_id is not None:
        named.add(RegisteredPerson(row.registered_user_id))
    if row.manual_friend_id is not None:
        named.add(ManualPerson(row.manual_friend_id))
    return named


def summarize(balances: Iterable[Decimal]) -> dict:
    """
    Account-wide totals over per-friend balances:
    owed to me = Σ positive balances, I owe = Σ |negative balances|.
    """
    total_owed_to_me = ZERO
    total_i_owe = ZERO
    for balance in balances:
        if balance > 0:
            total_owed_to_me += balance
        elif balance < 0:
            total_i_owe += -balance
    return {
        "total_owed_to_me": total_owed_to_me,
        "total_i_owe": total_i_owe,
        "net": total_owed_to_me - total_i_owe,
    }


def compute_balances(account_id: uuid.UUID, session: Session) -> dict:
    """
    Canonical per-friend balance computation for one account.

    Returns:
        {
          "per_friend": {Person: Decimal},   # every friend, zero when nothing is shared
          "summary":    {"total_owed_to_me", "total_i_owe", "net"},
        }

    Raises:
        AppError(UNAUTHENTICATED, 401) — from the friend graph lookup only.
    """
    friends = get_friend_graph(account_id, session)

    owed_to_me: dict[Person, Decimal] = {f: ZERO for f in friends}
    owed_by_me: dict[Person, Decimal] = {f: ZERO for f in friends}
    failed: set[Person] = set()

    # Side 1: what friends owe on expenses this account created.
    try:
        own_expense_rows = get_shares_in_own_expenses(account_id, session)
    except SQLAlchemyError:
        logger.warning(
            "Could not load shares of expenses created by %s; zeroing all balances",
            account_id,
            exc_info=True,
        )
        failed.update(friends)
        own_expense_rows = []

    for row in own_expense_rows:
        try:
            person = person_from_columns(
                row.registered_user_id,
                row.manual_friend_id,
                bool(row.is_manual_friend),
            )
        except MalformedPersonError as exc:
            affected = _people_named_by(row) & owed_to_me.keys()
            logger.warning("Malformed share %s (%s); zeroing %d friend(s)", row.id, exc, len(affected))
            failed.update(affected)
            continue
        if person in owed_to_me:
            owed_to_me[person] += row.amount

    # Side 2: what this account owes on expenses registered friends created.
    registered = [f for f in friends if isinstance(f, RegisteredPerson)]
    try:
        own_share_rows = get_own_shares_by_creator(account_id, [f.id for f in registered], session)
    except SQLAlchemyError:
        logger.warning(
            "Could not load shares owed by %s; zeroing registered friends' balances",
            account_id,
            exc_info=True,
        )
        failed.update(registered)
        own_share_rows = []

    for row in own_share_rows:
        creditor = RegisteredPerson(row.created_by)
        if creditor in owed_by_me:
            owed_by_me[creditor] += row.amount

    per_friend = {
        friend: ZERO if friend in failed else owed_to_me[friend] - owed_by_me[friend]
        for friend in friends
    }

    return {
        "per_friend": per_friend,
        "summary": summarize(per_friend.values()),
    }


def compute_group_balances(account_id: uuid.UUID, session: Session) -> dict[uuid.UUID, Decimal]:
    """
    The account's net position in each group it is a registered member of.

    For each group: Σ shares others owe on the account's own group expenses,
    minus Σ the account's shares on other members' group expenses. Groups
    with nothing shared are reported as zero.
    """
    balances: dict[uuid.UUID, Decimal] = defaultdict(lambda: ZERO)

    for group_id in get_group_ids_for_member(account_id, session):
        balances[group_id] = ZERO

    try:
        rows = get_group_share_rows(account_id, session)
    except SQLAlchemyError:
        logger.warning("Could not load group shares for %s", account_id, exc_info=True)
        return dict(balances)

    for row in rows:
        i_created = row.created_by == account_id
        names_me = row.registered_user_id == account_id
        if i_created and not names_me:
            balances[row.group_id] += row.amount
        elif names_me and not i_created:
            balances[row.group_id] -= row.amount

    return dict(balances)


# ── Response builders ──────────────────────────────────────────────────────

def get_friends_with_balances(account_id: uuid.UUID, session: Session) -> list[dict]:
    """
    The friend list for GET /friends: display record plus balance.
    Friends whose identity no longer resolves are left out.
    """
    per_friend = compute_balances(account_id, session)["per_friend"]
    identities = friend_service.resolve_identities(per_friend.keys(), session)
    return [
        {**identities[person], "balance": balance}
        for person, balance in per_friend.items()
        if person in identities
    ]


def get_balance_response(account_id: uuid.UUID, session: Session) -> dict:
    """Builds the payload for GET /balances: summary, friends and groups."""
    result = compute_balances(account_id, session)
    per_friend = result["per_friend"]
    identities = friend_service.resolve_identities(per_friend.keys(), session)

    friends = [
        {**identities[person], "balance": balance}
        for person, balance in per_friend.items()
        if person in identities
    ]

    group_balances = compute_group_balances(account_id, session)
    names: dict[uuid.UUID, str] = {}
    if group_balances:
        names = dict(session.execute(
            select(Group.id, Group.name).where(Group.id.in_(list(group_balances)))
        ).all())

    groups = [
        {"group_id": group_id, "name": names.get(group_id), "balance": balance}
        for group_id, balance in group_balances.items()
    ]

    return {
        "summary": result["summary"],
        "friends": friends,
        "groups": groups,
    }
