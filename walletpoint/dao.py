from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator


def get_connection(db_path: str, timeout: float = 5.0) -> sqlite3.Connection:
    # Autocommit mode: statements outside transaction() commit on their own,
    # and transaction() owns BEGIN/COMMIT explicitly.
    conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    # BEGIN IMMEDIATE takes the write lock up front so concurrent checkouts
    # serialize their stock/balance check-and-decrement.
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()


class Database:
    """Injected handle to the sqlite database.

    Connections are scoped: ``connect()`` always closes the connection on exit
    and ``transaction()`` additionally commits or rolls back.
    """

    def __init__(self, path: str, timeout: float = 5.0):
        self.path = path
        self.timeout = timeout

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = get_connection(self.path, timeout=self.timeout)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.connect() as conn, transaction(conn):
            yield conn

    def __repr__(self) -> str:
        return f"Database(path={self.path!r})"
