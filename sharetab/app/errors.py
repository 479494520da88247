"""
errors.py — AppError, the error code registry and the PartialFailure result.

Every error returned by the ShareTab API uses a code defined here.
Do not raise strings or generic exceptions from service or route code.

  - Error codes are a contract with clients. They do not change once published.
  - Error messages are human-readable prose and may be reworded at any time.
  - 401 (we do not know who you are) and 403 (we know, and the answer is no)
    are never swapped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class AppError(Exception):
    """
    A failure with a stable `code`, the HTTP status to answer with, and
    optionally the request `field` it concerns. The error handler in
    app/__init__.py renders it as {"error": {...}}.
    """

    def __init__(self, code: str, message: str, http_status: int, field: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.field = field

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.field is not None:
            body["field"] = self.field
        return {"error": body}

    def __repr__(self) -> str:
        return f"AppError({self.code!r}, {self.http_status}, {self.message!r})"


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_MODE         = "INVALID_SPLIT_MODE"
    INVALID_SPLIT              = "INVALID_SPLIT"
    SHARES_SENT_FOR_EQUAL_MODE = "SHARES_SENT_FOR_EQUAL_MODE"
    DUPLICATE_SHARE_PERSON     = "DUPLICATE_SHARE_PERSON"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    ALREADY_FRIENDS            = "ALREADY_FRIENDS"
    ALREADY_MEMBER             = "ALREADY_MEMBER"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    MANUAL_FRIEND_NOT_FOUND    = "MANUAL_FRIEND_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    MEMBER_NOT_FOUND           = "MEMBER_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    SHARE_NOT_FOUND            = "SHARE_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    SHARE_SUM_MISMATCH         = "SHARE_SUM_MISMATCH"     # strict reconciliation only
    SELF_FRIENDSHIP            = "SELF_FRIENDSHIP"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = unauthenticated, 403 = authenticated but not allowed.
    UNAUTHENTICATED            = "UNAUTHENTICATED"        # 401
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Shares do not add up to the expense amount. Recorded anyway unless
    # STRICT_SHARE_RECONCILIATION is on.
    SHARE_SUM_MISMATCH = "SHARE_SUM_MISMATCH"

    # A best-effort multi-row operation finished with some items rejected.
    PARTIAL_FAILURE = "PARTIAL_FAILURE"


def warning(code: str, message: str, **details: Any) -> dict:
    """Builds one entry of a response `warnings` array."""
    payload = {"code": code, "message": message}
    payload.update(details)
    return payload


# ── Partial failure result ─────────────────────────────────────────────────

@dataclass
class FailedItem:
    item: Any
    code: str
    message: str

    def to_dict(self) -> dict:
        return {"item": self.item, "code": self.code, "message": self.message}


@dataclass
class PartialFailure:
    """
    Outcome of a best-effort loop over several items.

    The overall operation succeeded; `failed` lists the items that were
    rejected and why, so the caller decides whether that is acceptable.
    """

    succeeded: list[Any] = field(default_factory=list)
    failed: list[FailedItem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def add_failure(self, item: Any, error: AppError | Exception) -> None:
        if isinstance(error, AppError):
            self.failed.append(FailedItem(item, error.code, error.message))
        else:
            self.failed.append(FailedItem(item, ErrorCode.INTERNAL_ERROR, str(error)))

    def to_dict(self) -> dict:
        return {
            "succeeded": list(self.succeeded),
            "failed": [f.to_dict() for f in self.failed],
        }
