"""
services/share_allocator.py — Turns an amount and a participant list into shares.

Layer rules:
  - No Flask, no database. Pure Decimal arithmetic over Person values.
  - Never float. Amounts are quantized to cents.

Equal split, default mode:
  Every participant owes total / n rounded half-up to the cent. The rounding
  gap is NOT redistributed, so the shares may miss the total by up to
  n × 0.01 (e.g. 10.00 / 3 → 3.33 × 3 = 9.99). The expense service reports
  that gap as a SHARE_SUM_MISMATCH warning.

Equal split, reconcile=True (STRICT_SHARE_RECONCILIATION):
  Shares are rounded down and the leftover cents are handed out one each to
  the first participants in the order given, so the sum is exact.

Custom split:
  The caller's amounts are returned as given. Nothing is rescaled or checked
  against the total here.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from sharetab.app.errors import AppError, ErrorCode
from sharetab.app.models.person import Person

CENT = Decimal("0.01")


class SplitMode(str, enum.Enum):
    EQUAL  = "equal"
    CUSTOM = "custom"


def _invalid_split(message: str) -> AppError:
    return AppError(ErrorCode.INVALID_SPLIT, message, 400, field="shares")


def _equal_shares(
        total_amount: Decimal,
        participants: Sequence[Person],
        reconcile: bool,
) -> dict[Person, Decimal]:
    n = len(participants)

    if not reconcile:
        share = (total_amount / n).quantize(CENT, rounding=ROUND_HALF_UP)
        return {person: share for person in participants}

    base = (total_amount / n).quantize(CENT, rounding=ROUND_DOWN)
    leftover_cents = int((total_amount - base * n) / CENT)

    shares = {}
    for index, person in enumerate(participants):
        shares[person] = base + CENT if index < leftover_cents else base
    return shares


def allocate(
        total_amount: Decimal,
        participants: Sequence[Person],
        strategy: SplitMode,
        amounts: Mapping[Person, Decimal] | None = None,
        reconcile: bool = False,
) -> dict[Person, Decimal]:
    """
    Computes {person: amount owed} for one expense.

    Args:
        total_amount: The expense amount. Must be a positive Decimal.
        participants: The people sharing the expense, in display order.
        strategy:     SplitMode.EQUAL or SplitMode.CUSTOM.
        amounts:      The caller's per-person amounts (custom mode only).
        reconcile:    Equal mode only; hand out leftover cents so the sum is exact.

    Raises:
        AppError(INVALID_SPLIT, 400) — no participants, a participant listed
        twice, a non-positive total, or custom mode without amounts.
    """
    if not participants:
        raise _invalid_split("An expense needs at least one participant.")

    if len(set(participants)) != len(participants):
        raise _invalid_split("The same person appears more than once in the split.")

    if total_amount is None or total_amount <= 0:
        raise _invalid_split("The amount to split must be greater than zero.")

    if strategy == SplitMode.EQUAL:
        return _equal_shares(Decimal(total_amount), participants, reconcile)

    if strategy == SplitMode.CUSTOM:
        if not amounts:
            raise _invalid_split("Custom splits need an amount for each participant.")
        return dict(amounts)

    raise AppError(
        ErrorCode.INVALID_SPLIT_MODE,
        f"Unknown split mode {strategy!r}.",
        400,
        field="split_mode",
    )


def shares_total(shares: Mapping[Person, Decimal]) -> Decimal:
    return sum(shares.values(), Decimal("0.00"))
