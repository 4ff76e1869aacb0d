"""Shared test fakes: a psycopg2-like connection, a settable clock, an in-memory queue."""

import io
from contextlib import contextmanager, redirect_stdout

from shared.offline_queue import OfflineQueue


# -----------------------------------------------------------------------------
# Database fakes
# -----------------------------------------------------------------------------


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = 0
        self._rows = []

    def execute(self, sql, args=()):
        self.conn.executed.append((" ".join(sql.split()), args))
        result = self.conn.responder(sql, args) if self.conn.responder else None
        if isinstance(result, int):
            self.rowcount = result
            self._rows = []
        elif result is None:
            self.rowcount = 1
            self._rows = []
        else:
            self._rows = [dict(r) for r in result]
            self.rowcount = len(self._rows)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConn:
    """Stand-in for a psycopg2 connection.

    responder(sql, args) returns rows (list of dicts), a rowcount (int),
    or None (rowcount 1, no rows). It may raise to simulate a DB error.
    Executed SQL is recorded whitespace-collapsed.
    """

    def __init__(self, responder=None):
        self.responder = responder
        self.executed = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True

    def statements(self, prefix):
        return [(sql, args) for sql, args in self.executed if sql.startswith(prefix)]


class FakeDB:
    """get_db replacement: hands out FakeConns sharing one responder and keeps them."""

    def __init__(self, responder=None):
        self.responder = responder
        self.conns = []

    def __call__(self):
        conn = FakeConn(self.responder)
        self.conns.append(conn)
        return conn

    def statements(self, prefix):
        return [s for c in self.conns for s in c.statements(prefix)]


def no_db():
    raise AssertionError("database must not be touched")


# -----------------------------------------------------------------------------
# Clock / local store
# -----------------------------------------------------------------------------


class Clock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, days):
        self.now += days * 24 * 60 * 60


def make_queue(clock=None) -> OfflineQueue:
    return OfflineQueue(":memory:", clock=clock or Clock())


# -----------------------------------------------------------------------------
# Output capture
# -----------------------------------------------------------------------------


@contextmanager
def capture_stdout():
    buf = io.StringIO()
    with redirect_stdout(buf):
        yield buf
