"""
models/group_member.py — GroupMember table definition.

One row per person in a group. The person is either a registered user or a
manual friend; see models/person.py for the column encoding and the CHECK
constraints that keep it consistent.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharetab.app.extensions import db
from sharetab.app.models.person import (
    PERSON_EXACTLY_ONE_SQL,
    PERSON_FLAG_MATCHES_SQL,
    PersonRefMixin,
)
from sharetab.app.models.user import _utcnow


class GroupMember(PersonRefMixin, db.Model):
    __tablename__ = "group_members"

    __table_args__ = (
        CheckConstraint(PERSON_EXACTLY_ONE_SQL, name="ck_group_members_one_person"),
        CheckConstraint(PERSON_FLAG_MATCHES_SQL, name="ck_group_members_flag"),
        UniqueConstraint("group_id", "registered_user_id", name="uq_group_members_user"),
        UniqueConstraint("group_id", "manual_friend_id", name="uq_group_members_manual"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    group_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    registered_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    manual_friend_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("manual_friends.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    is_manual_friend: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="members",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<GroupMember group_id={self.group_id} "
            f"user={self.registered_user_id} manual={self.manual_friend_id}>"
        )
