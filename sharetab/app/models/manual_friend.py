"""
models/manual_friend.py — ManualFriend table definition.

A manual friend is a person without an account, tracked for splitting
purposes. The row is owned by the user who created it (user_id) and is never
visible to anyone else. Names are not unique: two rows with the same name are
two different people.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharetab.app.extensions import db
from sharetab.app.models.user import _utcnow


class ManualFriend(db.Model):
    __tablename__ = "manual_friends"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_manual_friends_name_nonempty",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # The owning account.
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    owner: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="manual_friends",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ManualFriend id={self.id} owner={self.user_id} name={self.name!r}>"
