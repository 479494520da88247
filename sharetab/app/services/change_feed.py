"""
services/change_feed.py — Table change notifications, debouncing and
balance refresh.

  ChangeFeed         subscribe(table, on_change) / publish(tables)
  track_session_changes
                     wires a SQLAlchemy session (or scoped_session) to a feed:
                     table names touched by a flush are published after the
                     transaction commits, and dropped if it rolls back.
  Debouncer          coalesces a burst of triggers into one call after a
                     quiet window. The timer is injectable.
  BalanceRefresher   subscribes to the tables balances depend on and re-runs
                     a compute function, debounced. Only the newest result is
                     kept; a computation overtaken by a later one is dropped.

Subscribers run on the thread that committed (or the debounce timer's
thread). A subscriber that raises is logged and does not stop delivery to
the others.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import event

logger = logging.getLogger(__name__)

# Tables whose changes can move a balance.
BALANCE_TABLES = (
    "friendships",
    "manual_friends",
    "groups",
    "group_members",
    "expenses",
    "expense_shares",
)

_PENDING_KEY = "sharetab.changed_tables"


class ChangeFeed:

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[[str], Any]]] = defaultdict(list)
        self._lock = threading.RLock()

    def subscribe(self, table: str, on_change: Callable[[str], Any]) -> Callable[[], None]:
        """Registers on_change(table) and returns a function that unregisters it."""
        with self._lock:
            self._subscribers[table].append(on_change)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(table, [])
                if on_change in callbacks:
                    callbacks.remove(on_change)

        return unsubscribe

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._subscribers.get(table, []))

    def publish(self, tables: Iterable[str]) -> None:
        for table in sorted(set(tables)):
            with self._lock:
                callbacks = list(self._subscribers.get(table, []))
            for callback in callbacks:
                try:
                    callback(table)
                except Exception:
                    logger.exception("Change subscriber for table %s failed", table)


def track_session_changes(session_target, feed: ChangeFeed) -> Callable[[], None]:
    """
    Publishes to `feed` the tables each committed transaction wrote to.

    session_target is anything sqlalchemy.event accepts for session events:
    a Session, a sessionmaker, or a scoped_session such as db.session.
    Returns a function that removes the listeners again.
    """

    def _pending(session) -> set[str]:
        return session.info.setdefault(_PENDING_KEY, set())

    def after_flush(session, flush_context) -> None:
        touched = _pending(session)
        for obj in list(session.new) + list(session.dirty) + list(session.deleted):
            table = getattr(obj, "__table__", None)
            if table is not None:
                touched.add(table.name)

    def do_orm_execute(orm_execute_state) -> None:
        # Bulk UPDATE / DELETE statements bypass the unit of work.
        if orm_execute_state.is_update or orm_execute_state.is_delete:
            table = getattr(orm_execute_state.statement, "table", None)
            if table is not None and getattr(table, "name", None):
                _pending(orm_execute_state.session).add(table.name)

    def after_commit(session) -> None:
        if session.in_nested_transaction():
            return  # a released SAVEPOINT; the outer transaction may still roll back
        tables = session.info.pop(_PENDING_KEY, set())
        if tables:
            logger.debug("Publishing changes to %s", ", ".join(sorted(tables)))
            feed.publish(tables)

    def after_rollback(session) -> None:
        if session.in_nested_transaction():
            return
        session.info.pop(_PENDING_KEY, None)

    listeners = [
        ("after_flush", after_flush),
        ("do_orm_execute", do_orm_execute),
        ("after_commit", after_commit),
        ("after_rollback", after_rollback),
    ]
    for name, fn in listeners:
        event.listen(session_target, name, fn)

    def detach() -> None:
        for name, fn in listeners:
            if event.contains(session_target, name, fn):
                event.remove(session_target, name, fn)

    return detach


class Debouncer:
    """
    Calls fn once, `window` seconds after the last trigger.

    A window of 0 calls fn synchronously on every trigger. timer_factory
    has threading.Timer's signature: timer_factory(interval, function).
    """

    def __init__(
            self,
            fn: Callable[[], Any],
            window: float = 0.3,
            timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self._fn = fn
        self._window = window
        self._timer_factory = timer_factory
        self._timer = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def __call__(self) -> None:
        if self._window <= 0:
            self._fn()
            return

        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self._window, self._fire)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._fn()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class BalanceRefresher:
    """
    Keeps the latest result of `compute` current as balance tables change.

    Each refresh takes a generation number. A result is stored only if no
    newer refresh started while it was computing (last write wins). A
    compute that raises leaves the previous result in place.
    """

    def __init__(
            self,
            feed: ChangeFeed,
            compute: Callable[[], Any],
            window: float = 0.3,
            timer_factory: Callable[..., Any] = threading.Timer,
            tables: Iterable[str] = BALANCE_TABLES,
    ) -> None:
        self._compute = compute
        self._lock = threading.Lock()
        self._generation = 0
        self._result: Any = None
        self._debouncer = Debouncer(self.refresh, window, timer_factory)
        self._unsubscribes = [feed.subscribe(t, self._on_change) for t in tables]

    @property
    def result(self) -> Any:
        with self._lock:
            return self._result

    def _on_change(self, table: str) -> None:
        self._debouncer()

    def refresh(self) -> bool:
        """Recomputes now. Returns True if the result was stored."""
        with self._lock:
            self._generation += 1
            generation = self._generation

        try:
            result = self._compute()
        except Exception:
            logger.exception("Balance refresh failed; keeping the previous result")
            return False

        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale balance result (generation %d)", generation)
                return False
            self._result = result
        return True

    def close(self) -> None:
        self._debouncer.cancel()
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []
