"""
models/refresh_token.py — Stored refresh tokens (digest only).

A row is one signed-in session. Signing out sets `revoked`; expired rows
are simply ignored. Deleting the account deletes its tokens.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint, false, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharetab.app.extensions import db
from sharetab.app.models.user import _utcnow


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"
    __table_args__ = (
        UniqueConstraint("token_hash", name="uq_refresh_tokens_hash"),
    )

    # Integer key: tokens are never referenced from outside this table.
    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
        nullable=False,
        index=True,
    )

    # hex SHA-256 of the raw token; see auth_service._digest
    token_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    revoked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    user: Mapped["User"] = relationship("User", back_populates="refresh_tokens")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        state = "revoked" if self.revoked else "live"
        return f"<RefreshToken {self.id} user={self.user_id} {state}>"
