"""
models/expense_share.py — ExpenseShare table definition.

The portion of an expense one person owes. Created together with the
expense; `paid` is the only column ever changed afterwards.

Whether the shares of an expense add up to its amount is checked in
expense_service.py (strict mode) rather than here.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Numeric, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharetab.app.extensions import db
from sharetab.app.models.person import (
    PERSON_EXACTLY_ONE_SQL,
    PERSON_FLAG_MATCHES_SQL,
    PersonRefMixin,
)


class ExpenseShare(PersonRefMixin, db.Model):
    __tablename__ = "expense_shares"

    __table_args__ = (
        CheckConstraint(PERSON_EXACTLY_ONE_SQL, name="ck_expense_shares_one_person"),
        CheckConstraint(PERSON_FLAG_MATCHES_SQL, name="ck_expense_shares_flag"),
        CheckConstraint("amount >= 0", name="ck_expense_shares_amount_nonnegative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    expense_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    registered_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    manual_friend_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("manual_friends.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    is_manual_friend: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="shares",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ExpenseShare id={self.id} "
            f"expense_id={self.expense_id} "
            f"amount={self.amount} paid={self.paid}>"
        )
