"""
auth/store.py -- SQLAlchemy Core persistence layer for SRP credentials.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_record is the mapper. Service and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(username) is enforced by the table itself. insert() does not check
  for an existing row first -- two concurrent registrations for the same name
  race on the constraint and the loser gets UsernameTaken. A separate
  existence check would only widen the race window.

DB path: auth/srpauth_credentials.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import UsernameTaken
from auth.models import CredentialRecord
from core.config import now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "auth_users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(32), nullable=False, unique=True),
    Column("srp_salt", Text, nullable=False),
    Column("srp_verifier", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for CredentialRecord entities.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        store.insert(CredentialRecord(username="alice", salt="ab12", verifier="cd34"))
        record = store.get("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def insert(self, record: CredentialRecord) -> CredentialRecord:
        """Insert a new credential record and return it with id and created_at filled in.

        Raises UsernameTaken if the username already exists (UNIQUE violation).
        The caller is expected to have normalized the username.
        """
        record_id = record.id or str(uuid.uuid4())
        created_at = now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _credentials.insert().values(
                        id=record_id,
                        username=record.username,
                        srp_salt=record.salt,
                        srp_verifier=record.verifier,
                        created_at=created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise UsernameTaken() from exc
        return CredentialRecord(
            id=record_id,
            username=record.username,
            salt=record.salt,
            verifier=record.verifier,
            created_at=created_at,
        )

    def get(self, username: str) -> CredentialRecord | None:
        """Look up a record by exact (already normalized) username. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.username == username)).fetchone()
        return _row_to_record(row) if row is not None else None

    def get_by_id(self, user_id: str) -> CredentialRecord | None:
        """Look up a record by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.id == user_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(_credentials.select().limit(1)).fetchall()
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        username=row.username,
        salt=row.srp_salt,
        verifier=row.srp_verifier,
        created_at=row.created_at,
    )
