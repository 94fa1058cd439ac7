"""
Ledger Store: shared SQLite connection, serial execution, and the fact log.

Tables:
- facts: append-only, totally ordered record of every state change
- flags: administrative switches (pause state)

The asset registry and swap coordinator add their own tables on the same
connection and run every mutating call inside ``transaction()``.
"""

import sqlite3
import json
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Deque, Iterator, List, Optional, Tuple, Union

from trading.facts import Fact, FactKind, validate_fact

logger = logging.getLogger(__name__)

FactListener = Callable[[Fact], None]
CommitHook = Tuple[Callable[..., Any], tuple]


class LedgerStore:
    """
    SQLite-backed state shared by the registry and the coordinator.

    One mutating call runs at a time: ``lock`` is held for the whole call.
    The lock is re-entrant so that a transfer receiver running inside a call
    can call back into the core; the nested call runs in a SAVEPOINT and
    must observe the state the outer call has already written.

    Facts appended inside a transaction are delivered to subscribers only
    after the outermost COMMIT, strictly in ``seq`` order, even when a
    subscriber commits new facts while being notified. A rolled-back call
    delivers nothing and runs none of its ``after_commit`` hooks.
    """

    def __init__(self, db_path: Union[Path, str] = ":memory:", read_only: bool = False):
        """
        Open (and, unless read_only, initialize) a ledger database.

        Args:
            db_path: SQLite file path or ":memory:"
            read_only: Open an existing file without creating or changing anything
        """
        self.db_path = db_path
        self.read_only = read_only
        if read_only:
            uri = Path(db_path).resolve().as_uri() + "?mode=ro"
            self.conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        else:
            # Autocommit mode: BEGIN/SAVEPOINT are issued explicitly below
            self.conn = sqlite3.connect(
                str(db_path), check_same_thread=False, isolation_level=None
            )
        self.lock = threading.RLock()
        self._depth = 0
        self._undelivered: List[Fact] = []
        self._commit_hooks: List[CommitHook] = []
        self._listeners: List[FactListener] = []

        # Committed facts waiting for delivery, in seq order
        self._outbox: Deque[Fact] = deque()
        self._outbox_lock = threading.Lock()
        self._delivering = False

        if not read_only:
            self._init_schema()

    def _init_schema(self):
        """Initialize fact log and flag tables"""
        with self.transaction():
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS facts (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    subject_id INTEGER NOT NULL,
                    payload_json TEXT NOT NULL,
                    timestamp_ns INTEGER NOT NULL
                )
            """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_facts_subject ON facts(kind, subject_id)"
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS flags (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL DEFAULT 0
                )
            """
            )

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block as one all-or-nothing unit.

        The outermost block opens a transaction; nested blocks (re-entrant
        calls on the same thread) open savepoints. Any exception rolls back
        exactly the work of the block it escapes from, then propagates.
        """
        hooks: List[CommitHook] = []
        with self.lock:
            depth = self._depth
            fact_mark = len(self._undelivered)
            hook_mark = len(self._commit_hooks)
            savepoint = f"sp_{depth}"
            if depth == 0:
                self.conn.execute("BEGIN IMMEDIATE")
            else:
                self.conn.execute(f"SAVEPOINT {savepoint}")
            self._depth += 1

            try:
                yield self.conn
            except BaseException:
                self._depth -= 1
                del self._undelivered[fact_mark:]
                del self._commit_hooks[hook_mark:]
                if depth == 0:
                    self.conn.execute("ROLLBACK")
                else:
                    self.conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                    self.conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                raise

            self._depth -= 1
            if depth > 0:
                self.conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                return

            self.conn.execute("COMMIT")
            hooks, self._commit_hooks = self._commit_hooks, []
            # Queued while still holding the lock, so the outbox follows commit order
            with self._outbox_lock:
                self._outbox.extend(self._undelivered)
            self._undelivered = []

        # Outside the lock: hooks and subscribers may call back into the core
        for callback, args in hooks:
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Commit hook {callback!r} failed: {e}", exc_info=True)
        self._drain_outbox()

    def after_commit(self, callback: Callable[..., Any], *args) -> None:
        """
        Run ``callback(*args)`` once the outermost transaction commits.

        Dropped if the enclosing block (or any block around it) rolls back.
        Must run inside ``transaction()``.
        """
        if not self.in_transaction:
            raise RuntimeError("Commit hooks can only be registered inside a transaction")
        self._commit_hooks.append((callback, args))

    def append_fact(self, kind: FactKind, subject_id: int, payload: dict) -> Fact:
        """
        Append a fact to the log. Must run inside ``transaction()``.

        Raises:
            RuntimeError: If called outside a transaction
            ValueError: If the payload lacks a required field
        """
        if not self.in_transaction:
            raise RuntimeError("Facts can only be appended inside a transaction")
        validate_fact(kind, payload)

        timestamp = time.time_ns()
        cursor = self.conn.execute(
            """
            INSERT INTO facts (kind, subject_id, payload_json, timestamp_ns)
            VALUES (?, ?, ?, ?)
        """,
            (kind.value, subject_id, json.dumps(payload, sort_keys=True), timestamp),
        )
        fact = Fact(
            seq=cursor.lastrowid,
            kind=kind,
            subject_id=subject_id,
            payload=dict(payload),
            timestamp_ns=timestamp,
        )
        self._undelivered.append(fact)
        return fact

    def facts_since(self, offset: int = 0, limit: Optional[int] = None) -> List[Fact]:
        """
        Get facts with ``seq > offset``, oldest first.

        Args:
            offset: Last sequence number the caller has already seen
            limit: Maximum number of facts to return (None for all)
        """
        with self.lock:
            cursor = self.conn.execute(
                """
                SELECT seq, kind, subject_id, payload_json, timestamp_ns
                FROM facts
                WHERE seq > ?
                ORDER BY seq ASC
                LIMIT ?
            """,
                (offset, -1 if limit is None else limit),
            )
            rows = cursor.fetchall()

        return [
            Fact(
                seq=row[0],
                kind=FactKind(row[1]),
                subject_id=row[2],
                payload=json.loads(row[3]),
                timestamp_ns=row[4],
            )
            for row in rows
        ]

    def latest_seq(self) -> int:
        """Sequence number of the newest fact (0 if the log is empty)"""
        with self.lock:
            row = self.conn.execute("SELECT COALESCE(MAX(seq), 0) FROM facts").fetchone()
        return row[0]

    def has_table(self, name: str) -> bool:
        with self.lock:
            row = self.conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
            ).fetchone()
        return row is not None

    def get_flag(self, name: str) -> bool:
        with self.lock:
            row = self.conn.execute(
                "SELECT value FROM flags WHERE name = ?", (name,)
            ).fetchone()
        return bool(row[0]) if row else False

    def set_flag(self, name: str, value: bool) -> None:
        """Set a flag. Must run inside ``transaction()``."""
        if not self.in_transaction:
            raise RuntimeError("Flags can only be changed inside a transaction")
        self.conn.execute(
            "INSERT INTO flags (name, value) VALUES (?, ?) "
            "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
            (name, int(value)),
        )

    def subscribe(self, listener: FactListener) -> None:
        """Register a callback invoked with each fact after its call commits"""
        self._listeners.append(listener)

    def unsubscribe(self, listener: FactListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _drain_outbox(self) -> None:
        """
        Deliver queued facts in seq order.

        Only one caller drains at a time; facts committed meanwhile (by a
        subscriber or another thread) join the queue and are delivered by
        the active drainer after everything already queued.
        """
        with self._outbox_lock:
            if self._delivering:
                return
            self._delivering = True
        try:
            while True:
                with self._outbox_lock:
                    if not self._outbox:
                        self._delivering = False
                        return
                    fact = self._outbox.popleft()
                self._notify(fact)
        except BaseException:
            with self._outbox_lock:
                self._delivering = False
            raise

    def _notify(self, fact: Fact) -> None:
        for listener in list(self._listeners):
            try:
                listener(fact)
            except Exception as e:
                logger.error(
                    f"Fact listener failed on {fact.kind.value} #{fact.seq}: {e}",
                    exc_info=True,
                )

    def close(self) -> None:
        with self.lock:
            self.conn.close()
