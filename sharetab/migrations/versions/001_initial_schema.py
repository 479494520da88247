"""Initial schema — all tables, constraints and indexes.

Revision: 001_initial_schema
Created:  2026-10-18

Append-only: never edit this file once it has been applied to a database.
Schema changes go in a new revision.

Creation order (FK dependencies):
  users → refresh_tokens, manual_friends, friendships → groups
  → group_members → expenses → expense_shares

Person references (group_members, expense_shares) store exactly one of
registered_user_id / manual_friend_id, and is_manual_friend must agree
with which one is set.

ON DELETE policies:
  refresh_tokens.user_id            → CASCADE   (token owned by user)
  manual_friends.user_id            → CASCADE   (owned by their creator)
  friendships.*                     → CASCADE
  groups.created_by                 → RESTRICT
  group_members.*                   → CASCADE
  expenses.group_id                 → CASCADE
  expenses.created_by               → RESTRICT
  expense_shares.expense_id         → CASCADE   (shares owned by expense)
  expense_shares person columns     → RESTRICT
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: tuple | None = None
depends_on: tuple | None = None

_PERSON_EXACTLY_ONE = "(registered_user_id IS NULL) <> (manual_friend_id IS NULL)"
_PERSON_FLAG_MATCHES = "is_manual_friend = (manual_friend_id IS NOT NULL)"


def upgrade() -> None:

    # ── users ──────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(100), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_users_email_format"),
    )

    # ── refresh_tokens ─────────────────────────────────────────────────────
    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.UniqueConstraint("token_hash", name="uq_refresh_tokens_hash"),
    )

    # ── manual_friends ─────────────────────────────────────────────────────
    op.create_table(
        "manual_friends",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_manual_friends_owner"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_manual_friends"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_manual_friends_name_nonempty"),
    )

    # ── friendships ────────────────────────────────────────────────────────
    # Directed edge, read symmetrically once accepted.
    op.create_table(
        "friendships",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_friendships_user"),
            nullable=False,
        ),
        sa.Column(
            "friend_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_friendships_friend"),
            nullable=False,
        ),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_friendships"),
        sa.UniqueConstraint("user_id", "friend_id", name="uq_friendships_pair"),
        sa.CheckConstraint("user_id <> friend_id", name="ck_friendships_not_self"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted')",
            name="ck_friendships_status",
        ),
    )

    # ── groups ─────────────────────────────────────────────────────────────
    op.create_table(
        "groups",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "created_by",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_groups_owner"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_groups_name_nonempty"),
    )

    # ── group_members ──────────────────────────────────────────────────────
    op.create_table(
        "group_members",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "group_id",
            sa.Uuid(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_group_members_group"),
            nullable=False,
        ),
        sa.Column(
            "registered_user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_group_members_user"),
            nullable=True,
        ),
        sa.Column(
            "manual_friend_id",
            sa.Uuid(),
            sa.ForeignKey(
                "manual_friends.id",
                ondelete="CASCADE",
                name="fk_group_members_manual_friend",
            ),
            nullable=True,
        ),
        sa.Column("is_manual_friend", sa.Boolean(), nullable=False),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_group_members"),
        sa.UniqueConstraint("group_id", "registered_user_id", name="uq_group_members_user"),
        sa.UniqueConstraint("group_id", "manual_friend_id", name="uq_group_members_manual"),
        sa.CheckConstraint(_PERSON_EXACTLY_ONE, name="ck_group_members_one_person"),
        sa.CheckConstraint(_PERSON_FLAG_MATCHES, name="ck_group_members_flag"),
    )

    # ── expenses ───────────────────────────────────────────────────────────
    # group_id NULL = personal expense among explicitly chosen friends.
    op.create_table(
        "expenses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "group_id",
            sa.Uuid(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_expenses_group"),
            nullable=True,
        ),
        sa.Column(
            "created_by",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_creator"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint("LENGTH(TRIM(title)) > 0", name="ck_expenses_title_nonempty"),
    )

    # ── expense_shares ─────────────────────────────────────────────────────
    op.create_table(
        "expense_shares",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Uuid(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_expense_shares_expense"),
            nullable=False,
        ),
        sa.Column(
            "registered_user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expense_shares_user"),
            nullable=True,
        ),
        sa.Column(
            "manual_friend_id",
            sa.Uuid(),
            sa.ForeignKey(
                "manual_friends.id",
                ondelete="RESTRICT",
                name="fk_expense_shares_manual_friend",
            ),
            nullable=True,
        ),
        sa.Column("is_manual_friend", sa.Boolean(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id", name="pk_expense_shares"),
        sa.CheckConstraint(_PERSON_EXACTLY_ONE, name="ck_expense_shares_one_person"),
        sa.CheckConstraint(_PERSON_FLAG_MATCHES, name="ck_expense_shares_flag"),
        sa.CheckConstraint("amount >= 0", name="ck_expense_shares_amount_nonnegative"),
    )

    # ── Indexes ────────────────────────────────────────────────────────────
    # Names follow SQLAlchemy's ix_<table>_<column> so autogenerate sees no drift.
    for table, column in _INDEXED_COLUMNS:
        op.create_index(f"ix_{table}_{column}", table, [column])


_INDEXED_COLUMNS = (
    ("refresh_tokens", "user_id"),
    ("manual_friends", "user_id"),
    ("friendships", "user_id"),
    ("friendships", "friend_id"),
    ("groups", "created_by"),
    ("group_members", "group_id"),
    ("group_members", "registered_user_id"),
    ("group_members", "manual_friend_id"),
    ("expenses", "group_id"),
    ("expenses", "created_by"),
    ("expense_shares", "expense_id"),
    ("expense_shares", "registered_user_id"),
    ("expense_shares", "manual_friend_id"),
)


def downgrade() -> None:
    """Drops everything upgrade() created. Local development resets only."""
    for table, column in reversed(_INDEXED_COLUMNS):
        op.drop_index(f"ix_{table}_{column}", table_name=table)

    op.drop_table("expense_shares")
    op.drop_table("expenses")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("friendships")
    op.drop_table("manual_friends")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
