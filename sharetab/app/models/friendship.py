"""
models/friendship.py — Friendship table definition.

Stored as a directed edge (user_id → friend_id) but read symmetrically once
status is 'accepted'. The service layer refuses to create a second accepted
edge for the same unordered pair; the unique constraint covers the same
direction only.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharetab.app.extensions import db
from sharetab.app.models.user import _utcnow


class FriendshipStatus(str, enum.Enum):
    PENDING  = "pending"
    ACCEPTED = "accepted"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Store enum values (e.g. 'accepted'), not names ('ACCEPTED')."""
    return [member.value for member in enum_cls]


class Friendship(db.Model):
    __tablename__ = "friendships"

    __table_args__ = (
        UniqueConstraint("user_id", "friend_id", name="uq_friendships_pair"),
        CheckConstraint("user_id <> friend_id", name="ck_friendships_not_self"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    friend_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[FriendshipStatus] = mapped_column(
        Enum(
            FriendshipStatus,
            name="friendship_status_enum",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=FriendshipStatus.ACCEPTED,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[user_id],
    )

    friend: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[friend_id],
    )

    def other_side(self, account_id: uuid.UUID) -> uuid.UUID:
        """The id on the opposite end of the edge from account_id."""
        return self.friend_id if self.user_id == account_id else self.user_id

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Friendship {self.user_id} -> {self.friend_id} "
            f"status={self.status.value}>"
        )
