"""SQLite storage driver (default persistence).

One table holds the invocation records, keyed by a unique index on `name`.
Records are insert-once; afterwards only the `state` column changes, and only
through a single conditional UPDATE statement so a transition is never
half-applied.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from errors import PolicyViolationError, StorageUnavailableError
from executor.state_machine import InvocationState, check_transition
from storage.interfaces import InvocationRecord, InvocationStore

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLiteDatabase:
    def __init__(self, path: Path, *, table: str = "ws_invocations"):
        if not _IDENTIFIER.match(table):
            raise PolicyViolationError(f"Invalid SQLite table name: {table!r}")
        self.path = path.resolve()
        self.table = table
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._migrate()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.path), timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _migrate(self) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                  version INTEGER NOT NULL
                );
                """
            )
            row = conn.execute("SELECT version FROM schema_version LIMIT 1;").fetchone()
            if row is None:
                conn.execute("INSERT INTO schema_version(version) VALUES (1);")
                version = 1
            else:
                version = int(row["version"])

            if version != 1:
                raise PolicyViolationError(f"Unsupported SQLite schema_version: {version}")

            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                  name TEXT NOT NULL,
                  username TEXT,
                  message TEXT,
                  state TEXT NOT NULL
                );
                """
            )
            conn.execute(f"CREATE UNIQUE INDEX IF NOT EXISTS IDX_WS_INVOCATION_NAME ON {self.table}(name);")


def _row_to_record(row: sqlite3.Row) -> InvocationRecord:
    return InvocationRecord(
        name=row["name"],
        username=row["username"],
        message=row["message"],
        state=InvocationState.parse(row["state"]),
    )


class SQLiteInvocationStore(InvocationStore):
    def __init__(self, db: SQLiteDatabase):
        self._db = db
        self._table = db.table

    def create(self, record: InvocationRecord) -> bool:
        try:
            with self._db.connect() as conn:
                conn.execute(
                    f"INSERT INTO {self._table}(name, username, message, state) VALUES (?, ?, ?, ?);",
                    (record.name, record.username, record.message, record.state.value),
                )
        except sqlite3.IntegrityError:
            logger.warning(
                "invocation_create_duplicate",
                extra={"event": "invocation_create_duplicate", "record_name": record.name},
            )
            return False
        except sqlite3.Error:
            logger.warning(
                "invocation_create_failed",
                extra={"event": "invocation_create_failed", "record_name": record.name},
                exc_info=True,
            )
            return False
        return True

    def find_by_name(self, name: str) -> InvocationRecord | None:
        try:
            with self._db.connect() as conn:
                row = conn.execute(
                    f"SELECT name, username, message, state FROM {self._table} WHERE name = ?;",
                    (name,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailableError("read", str(e)) from e
        if row is None:
            return None
        return _row_to_record(row)

    def set_state(self, name: str, state: InvocationState, *, expected_state: InvocationState | None = None) -> bool:
        if expected_state is not None:
            check_transition(expected_state, state)
            sql = f"UPDATE {self._table} SET state = ? WHERE name = ? AND state = ?;"
            params: tuple[str, ...] = (state.value, name, expected_state.value)
        else:
            sql = f"UPDATE {self._table} SET state = ? WHERE name = ?;"
            params = (state.value, name)
        try:
            with self._db.connect() as conn:
                cur = conn.execute(sql, params)
                applied = cur.rowcount == 1
        except sqlite3.Error as e:
            raise StorageUnavailableError("update", str(e)) from e
        logger.debug(
            "invocation_state_set applied=%s",
            applied,
            extra={"event": "invocation_state_set", "record_name": name, "state": state.value},
        )
        return applied


class SQLiteStores:
    """Convenience container for the stores backed by one SQLite file."""

    def __init__(self, sqlite_path: Path, *, table: str = "ws_invocations"):
        self.db = SQLiteDatabase(sqlite_path, table=table)
        self.invocations: InvocationStore = SQLiteInvocationStore(self.db)
