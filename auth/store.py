"""
auth/store.py -- SQLAlchemy Core persistence for patrons who logged in through the API.

Pattern: Repository + Data Mapper. PatronStore is the repository;
_row_to_record is the mapper. Route and identity code never touches SQL
directly.

The ILS stays the system of record. This table only remembers that a patron
authenticated here (first login, last login, login count, last known group),
which is what the host catalogue kept a local user row for.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Passwords are never stored.

DB path: auth/patronauth_patrons.db unless PATRON_DB_URL is set.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'patronauth_patrons.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_patrons = Table(
    "patrons",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("group_code", String(100)),
    Column("first_login", String(32), nullable=False),
    Column("last_login", String(32), nullable=False),
    Column("login_count", Integer, nullable=False, server_default="0"),
)


@dataclass
class PatronRecord:
    username: str
    first_login: str
    last_login: str
    login_count: int = 0
    group_code: str | None = None
    id: int | None = None


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode; set per-connection because PRAGMAs are not inherited."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _bump_login(conn, username: str, group_code: str | None, now: str) -> int:
    """Atomically update an existing patron row. Returns the number of rows updated."""
    values: dict = {"last_login": now, "login_count": _patrons.c.login_count + 1}
    if group_code:
        values["group_code"] = group_code
    result = conn.execute(_patrons.update().where(_patrons.c.username == username).values(**values))
    return result.rowcount


def _row_to_record(row) -> PatronRecord:
    return PatronRecord(
        id=row.id,
        username=row.username,
        group_code=row.group_code,
        first_login=row.first_login,
        last_login=row.last_login,
        login_count=row.login_count,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PatronStore:
    """Repository for PatronRecord entities.

    Usage:
        store = PatronStore()
        store.record_login("jdoe", group_code="STAFF")
        record = store.get_by_username("jdoe")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def record_login(self, username: str, group_code: str | None = None) -> None:
        """Insert the patron on first login, otherwise bump last_login and login_count.

        group_code is only overwritten when a value is given, so a login with
        an empty profile cache does not erase the last known group.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            if _bump_login(conn, username, group_code, now) == 0:
                try:
                    conn.execute(
                        _patrons.insert().values(
                            username=username,
                            group_code=group_code,
                            first_login=now,
                            last_login=now,
                            login_count=1,
                        )
                    )
                except IntegrityError:
                    # A concurrent first login inserted the row in the meantime.
                    conn.rollback()
                    _bump_login(conn, username, group_code, now)
            conn.commit()

    def get_by_username(self, username: str) -> PatronRecord | None:
        """Look up a patron by exact username. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_patrons.select().where(_patrons.c.username == username)).fetchone()
        return _row_to_record(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()
