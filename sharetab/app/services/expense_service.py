"""
services/expense_service.py — Expense business logic.

An expense is logged by one account (created_by) and split into shares,
one per person. A share names a registered user, one of the creator's
manual friends, or (for a group expense) a manual friend on the group's
roster, whoever owns it.

Visibility: an account sees an expense if it created it, if a share names
the account, or if a share names one of the account's manual friends.

Authorization rules:
  - Create:          caller must be a registered member of the group, if any
  - Mark share paid: expense creator only
  - Delete:          expense creator only

Share reconciliation:
  Shares are not required to add up to the expense amount. When they do
  not, the expense is still recorded and the response carries a
  SHARE_SUM_MISMATCH warning. With STRICT_SHARE_RECONCILIATION on, the
  mismatch is a 422 instead and equal splits hand out the leftover cents
  so they always reconcile.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from sharetab.app.errors import AppError, ErrorCode, WarningCode, warning
from sharetab.app.models.expense import Expense
from sharetab.app.models.expense_share import ExpenseShare
from sharetab.app.models.group import Group
from sharetab.app.models.group_member import GroupMember
from sharetab.app.models.manual_friend import ManualFriend
from sharetab.app.models.person import (
    MalformedPersonError,
    ManualPerson,
    Person,
    RegisteredPerson,
    person_columns,
)
from sharetab.app.models.user import User
from sharetab.app.services import group_service
from sharetab.app.services.friend_service import require_account, resolve_identities
from sharetab.app.services.share_allocator import SplitMode, allocate, shares_total

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: uuid.UUID, session: Session) -> Expense:
    """Returns the Expense or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _get_group_or_404(group_id: uuid.UUID, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
            field="group_id",
        )
    return group


def _get_share_or_404(share_id: uuid.UUID, session: Session) -> ExpenseShare:
    share = session.get(ExpenseShare, share_id)
    if share is None:
        raise AppError(
            ErrorCode.SHARE_NOT_FOUND,
            f"Share {share_id} does not exist.",
            404,
        )
    return share


def _require_creator(expense: Expense, account_id: uuid.UUID, action: str) -> None:
    if expense.created_by != account_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the person who logged this expense may {action}.",
            403,
        )


def _validate_people(
        account_id: uuid.UUID,
        people: Sequence[Person],
        session: Session,
        group_id: uuid.UUID | None = None,
) -> None:
    """
    Every registered person must exist. A manual person must be one of the
    account's own manual friends or, for a group expense, a manual member
    of that group. Raises on the first offender.
    """
    user_ids = {p.id for p in people if isinstance(p, RegisteredPerson)}
    manual_ids = {p.id for p in people if isinstance(p, ManualPerson)}

    if user_ids:
        found = set(session.execute(
            select(User.id).where(User.id.in_(user_ids))
        ).scalars().all())
        for person in people:
            if isinstance(person, RegisteredPerson) and person.id not in found:
                raise AppError(
                    ErrorCode.USER_NOT_FOUND,
                    f"User {person.id} does not exist.",
                    404,
                    field="shares",
                )

    if manual_ids:
        allowed = ManualFriend.user_id == account_id
        if group_id is not None:
            on_roster = select(GroupMember.manual_friend_id).where(
                GroupMember.group_id == group_id,
                GroupMember.manual_friend_id.is_not(None),
            )
            allowed = or_(allowed, ManualFriend.id.in_(on_roster))
        usable = set(session.execute(
            select(ManualFriend.id).where(ManualFriend.id.in_(manual_ids), allowed)
        ).scalars().all())
        for person in people:
            if isinstance(person, ManualPerson) and person.id not in usable:
                raise AppError(
                    ErrorCode.MANUAL_FRIEND_NOT_FOUND,
                    f"Manual friend {person.id} is neither yours nor on this expense's group.",
                    404,
                    field="shares",
                )


def _participants(
        group_id: uuid.UUID | None,
        participants: Sequence[Person] | None,
        session: Session,
) -> list[Person]:
    """Explicit participants win; otherwise a group expense is split across the roster."""
    if participants:
        return list(participants)
    if group_id is not None:
        return group_service.participants_for(group_id, session)
    raise AppError(
        ErrorCode.INVALID_SPLIT,
        "A personal expense needs at least one participant.",
        400,
        field="participants",
    )


def _share_person(share: ExpenseShare) -> Person | None:
    try:
        return share.person
    except MalformedPersonError as exc:
        logger.warning("Skipping share %s: %s", share.id, exc)
        return None


def _serialize_share(share: ExpenseShare, record: dict) -> dict:
    return {
        "id": share.id,
        "amount": share.amount,
        "paid": share.paid,
        "person": record,
    }


def _serialize_expense(
        expense: Expense,
        shares: list[ExpenseShare],
        identities: dict[Person, dict],
        group_names: dict[uuid.UUID, str],
        account_id: uuid.UUID,
) -> dict:
    me = RegisteredPerson(account_id)

    share_dicts: list[dict] = []
    user_share = None
    for share in shares:
        person = _share_person(share)
        record = identities.get(person) if person is not None else None
        if record is None:
            continue
        share_dict = _serialize_share(share, record)
        share_dicts.append(share_dict)
        if person == me:
            user_share = share_dict

    creator = identities.get(RegisteredPerson(expense.created_by))
    return {
        "id": expense.id,
        "title": expense.title,
        "description": expense.description,
        "total_amount": expense.amount,
        "group_id": expense.group_id,
        "group_name": group_names.get(expense.group_id) if expense.group_id else None,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "creator": {
            "id": expense.created_by,
            "name": creator["name"] if creator else None,
            "email": creator["email"] if creator else None,
        },
        "is_owner": expense.created_by == account_id,
        "shares": share_dicts,
        "user_share": user_share,
    }


def _serialize_many(expenses: Sequence[Expense], account_id: uuid.UUID, session: Session) -> list[dict]:
    """Batch-serialises expenses: one query each for shares, groups and identities."""
    if not expenses:
        return []
    expense_ids = [e.id for e in expenses]

    shares_by_expense: dict[uuid.UUID, list[ExpenseShare]] = defaultdict(list)
    for share in session.execute(
        select(ExpenseShare)
        .where(ExpenseShare.expense_id.in_(expense_ids))
        .order_by(ExpenseShare.id.asc())
    ).scalars().all():
        shares_by_expense[share.expense_id].append(share)

    group_ids = {e.group_id for e in expenses if e.group_id is not None}
    group_names: dict[uuid.UUID, str] = {}
    if group_ids:
        group_names = dict(session.execute(
            select(Group.id, Group.name).where(Group.id.in_(group_ids))
        ).all())

    people: list[Person] = [RegisteredPerson(e.created_by) for e in expenses]
    for shares in shares_by_expense.values():
        people.extend(p for p in map(_share_person, shares) if p is not None)
    identities = resolve_identities(people, session)

    return [
        _serialize_expense(e, shares_by_expense.get(e.id, []), identities, group_names, account_id)
        for e in expenses
    ]


# ── Public service functions ───────────────────────────────────────────────

def list_visible_expenses(account_id: uuid.UUID, session: Session) -> list[dict]:
    """
    Every expense the account can see, newest first, each appearing once
    however many visibility rules it matches.

    Shares whose person cannot be resolved are left out of `shares`.
    `user_share` is the share naming the account itself, or None.
    """
    require_account(account_id, session)

    owned_manual_ids = select(ManualFriend.id).where(ManualFriend.user_id == account_id)
    shared_expense_ids = select(ExpenseShare.expense_id).where(
        or_(
            ExpenseShare.registered_user_id == account_id,
            ExpenseShare.manual_friend_id.in_(owned_manual_ids),
        )
    )
    stmt = (
        select(Expense)
        .where(
            or_(
                Expense.created_by == account_id,
                Expense.id.in_(shared_expense_ids),
            )
        )
        .order_by(Expense.created_at.desc(), Expense.id.asc())
    )
    expenses = list(session.execute(stmt).scalars().all())
    return _serialize_many(expenses, account_id, session)


def create_expense(
        account_id: uuid.UUID,
        title: str,
        total_amount: Decimal,
        session: Session,
        description: str | None = None,
        group_id: uuid.UUID | None = None,
        split_mode: SplitMode = SplitMode.EQUAL,
        participants: Sequence[Person] | None = None,
        shares: Sequence[dict] | None = None,
        strict: bool = False,
) -> tuple[dict, list[dict]]:
    """
    Records an expense logged by account_id together with its shares.

    Args:
        title, description, total_amount: The expense itself.
        group_id:     Optional group; the caller must be a registered member.
        split_mode:   EQUAL splits total_amount across `participants`, or the
                      group's roster when no participants are given.
                      CUSTOM takes `shares` as given: [{"person", "amount"}].
        strict:       STRICT_SHARE_RECONCILIATION.

    Raises:
      AppError(INVALID_FIELD, 400)           — empty title or amount <= 0
      AppError(INVALID_SPLIT, 400)           — nobody to split between
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)               — caller not in the group
      AppError(USER_NOT_FOUND, 404)          — unknown registered person
      AppError(MANUAL_FRIEND_NOT_FOUND, 404) — neither the caller's nor on the group's roster
      AppError(SHARE_SUM_MISMATCH, 422)      — strict mode only

    Returns: (expense dict, warnings list)
    """
    require_account(account_id, session)

    title = (title or "").strip()
    if not title:
        raise AppError(ErrorCode.INVALID_FIELD, "An expense needs a title.", 400, field="title")
    if total_amount is None or total_amount <= 0:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "The expense amount must be greater than zero.",
            400,
            field="amount",
        )

    if group_id is not None:
        group = _get_group_or_404(group_id, session)
        if not group_service.is_registered_member(group.id, account_id, session):
            raise AppError(
                ErrorCode.FORBIDDEN,
                f"You are not a member of group {group.id}.",
                403,
            )

    if split_mode == SplitMode.CUSTOM:
        amounts = {s["person"]: s["amount"] for s in (shares or [])}
        if len(amounts) != len(shares or []):
            raise AppError(
                ErrorCode.DUPLICATE_SHARE_PERSON,
                "The same person appears more than once in the shares array.",
                400,
                field="shares",
            )
        people = list(amounts)
    else:
        amounts = None
        people = _participants(group_id, participants, session)

    _validate_people(account_id, people, session, group_id=group_id)

    allocated = allocate(total_amount, people, split_mode, amounts=amounts, reconcile=strict)

    warnings: list[dict] = []
    allocated_total = shares_total(allocated)
    if allocated_total != total_amount:
        message = (
            f"Shares add up to {allocated_total} but the expense amount is {total_amount}."
        )
        if strict:
            raise AppError(ErrorCode.SHARE_SUM_MISMATCH, message, 422, field="shares")
        logger.warning("Expense '%s' by %s: %s", title, account_id, message)
        warnings.append(warning(
            WarningCode.SHARE_SUM_MISMATCH,
            message,
            shares_total=allocated_total,
            amount=total_amount,
        ))

    expense = Expense(
        title=title,
        description=description,
        amount=total_amount,
        group_id=group_id,
        created_by=account_id,
    )
    session.add(expense)
    session.flush()  # populate expense.id before creating shares

    for person, amount in allocated.items():
        session.add(ExpenseShare(expense_id=expense.id, amount=amount, **person_columns(person)))
    session.flush()

    return _serialize_many([expense], account_id, session)[0], warnings


def mark_share_paid(share_id: uuid.UUID, caller_id: uuid.UUID, session: Session) -> dict:
    """
    Marks a share as settled. Only the expense creator may do this.
    Marking an already-paid share again is a no-op.
    """
    require_account(caller_id, session)
    share = _get_share_or_404(share_id, session)
    expense = _get_expense_or_404(share.expense_id, session)
    _require_creator(expense, caller_id, "mark its shares paid")

    if not share.paid:
        share.paid = True
        session.flush()

    return {
        "id": share.id,
        "expense_id": share.expense_id,
        "amount": share.amount,
        "paid": share.paid,
    }


def delete_expense(expense_id: uuid.UUID, caller_id: uuid.UUID, session: Session) -> None:
    """Hard-deletes an expense; its shares go with it. Creator only."""
    require_account(caller_id, session)
    expense = _get_expense_or_404(expense_id, session)
    _require_creator(expense, caller_id, "delete it")

    session.delete(expense)
    session.flush()
